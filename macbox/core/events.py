"""
Event sinks for engine progress reporting.

The flow engine and swarm never print; they post small dict events to a
sink passed in by the caller:

  {"type": "log", "level": "info", "message": "..."}
  {"type": "status", "workspace": "ws-1", "status": "succeeded"}

The default sink forwards to stdlib logging.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

EventSink = Callable[[Dict[str, Any]], None]

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_event(message: str, level: str = "info", **extra: Any) -> Dict[str, Any]:
    ev: Dict[str, Any] = {"type": "log", "level": level, "message": message}
    ev.update(extra)
    return ev


def status_event(status: str, **extra: Any) -> Dict[str, Any]:
    ev: Dict[str, Any] = {"type": "status", "status": status}
    ev.update(extra)
    return ev


def logging_sink(logger: Optional[logging.Logger] = None) -> EventSink:
    """Return a sink that writes events to ``logger``."""
    log = logger or logging.getLogger("macbox")

    def _sink(ev: Dict[str, Any]) -> None:
        kind = ev.get("type")
        if kind == "log":
            log.log(_LEVELS.get(ev.get("level", "info"), logging.INFO), ev.get("message", ""))
        elif kind == "status":
            who = ev.get("workspace") or ev.get("flow") or "-"
            log.info(f"{who}: {ev.get('status')}")
        else:
            log.debug(f"event: {ev}")

    return _sink


class EventRecorder:
    """Collects events in memory; safe to share between swarm workers."""

    def __init__(self, forward: Optional[EventSink] = None):
        self._lock = threading.Lock()
        self._forward = forward
        self.events: List[Dict[str, Any]] = []

    def __call__(self, ev: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append(dict(ev))
        if self._forward is not None:
            self._forward(ev)

    def messages(self, level: Optional[str] = None) -> List[str]:
        with self._lock:
            return [
                e.get("message", "")
                for e in self.events
                if e.get("type") == "log" and (level is None or e.get("level") == level)
            ]

    def statuses(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e for e in self.events if e.get("type") == "status"]
