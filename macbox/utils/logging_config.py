"""
Logging setup for the macbox command line.

Everything goes to a log file under the base dir; only warnings and
errors reach the terminal, on stderr.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from macbox.core.paths import default_base_dir

LOG_FILENAME = "macbox.log"
CONSOLE_FORMAT = "macbox: %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
    console_level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger for one macbox invocation.

    Args:
        level: Level for the root logger and the file handler
        log_file: Log file path (default: <base dir>/macbox.log)
        format_string: Format for file records
        console_level: Level for the stderr handler (default: WARNING)

    Returns:
        The "macbox" logger
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    log_path = Path(log_file) if log_file is not None else default_base_dir() / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(getattr(logging, level.upper()))
    fh.setFormatter(logging.Formatter(format_string))
    root.addHandler(fh)

    # stdout stays clean for --json output
    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(getattr(logging, (console_level or "WARNING").upper()))
    ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(ch)

    return logging.getLogger("macbox")
