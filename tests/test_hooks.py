import pytest

from macbox.core.events import EventRecorder
from macbox.core.hooks import HOOK_NAMES, run_hook
from macbox.core.models import MacboxConfig
from macbox.core.steps import StepContext


def _config(hooks=None):
    return MacboxConfig.model_validate({"flows": {}, "hooks": hooks} if hooks is not None else {"flows": {}})


def test_no_hooks_returns_none(tmp_path):
    ctx = StepContext.for_directory(tmp_path)
    assert run_hook("onFlowComplete", None, ctx) is None
    assert run_hook("onFlowComplete", _config(), ctx) is None
    assert run_hook("onFlowComplete", _config({"onWorkspaceCreate": []}), ctx) is None


def test_hook_runs_steps(tmp_path):
    config = _config({"onWorkspaceCreate": [
        {"id": "a", "type": "steps:shell", "args": {"cmd": "echo created"}},
    ]})
    result = run_hook("onWorkspaceCreate", config, StepContext.for_directory(tmp_path), events=EventRecorder())
    assert result.flow_name == "hook:onWorkspaceCreate"
    assert result.ok is True
    assert result.steps[0].outputs["result"] == "created"


def test_unknown_hook_name(tmp_path):
    with pytest.raises(ValueError):
        run_hook("onSomething", None, StepContext.for_directory(tmp_path))


def test_hook_names():
    assert HOOK_NAMES == ("onWorkspaceCreate", "onWorkspaceRestore", "onFlowComplete")


def test_hook_names_shared_with_models():
    from macbox.core import models
    assert HOOK_NAMES is models.HOOK_NAMES
