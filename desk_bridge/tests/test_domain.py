from types import SimpleNamespace

import pytest

from desk_bridge.domain.exceptions import (
    AuthenticationError,
    BackendStartupError,
    ErrorKind,
    ProcessLaunchError,
    classify_error,
)
from desk_bridge.domain.models import BackendReply, ChatMessage, PromptRequest


def test_models_exist():
    cm = ChatMessage(role="user", content="hi")
    assert cm.speaker == "User"
    assert ChatMessage(role="assistant", content="x").speaker == "Assistant"
    with pytest.raises(AttributeError):
        cm.content = "changed"


def test_prompt_request_copies_history():
    history = [ChatMessage(role="user", content="a")]
    req = PromptRequest.build("q", recent_messages=history)
    history.append(ChatMessage(role="assistant", content="b"))
    assert len(req.recent_messages) == 1
    assert PromptRequest.build("q").recent_messages == ()


def test_backend_reply_from_event():
    assert BackendReply.from_event(SimpleNamespace(data=SimpleNamespace(content="hi"))).content == "hi"
    assert BackendReply.from_event(SimpleNamespace(data=SimpleNamespace(content=42))).content is None
    assert BackendReply.from_event(None).content is None


def test_classify_typed_errors():
    assert classify_error(BackendStartupError(code="X", message="Failed to start")) is ErrorKind.STARTUP
    assert classify_error(AuthenticationError(code="X", message="denied")) is ErrorKind.AUTHENTICATION
    assert classify_error(ProcessLaunchError(code="X", message="auth missing")) is ErrorKind.LAUNCH_FAILURE


def test_classify_opaque_errors():
    assert classify_error(TimeoutError()) is ErrorKind.TIMEOUT
    assert classify_error(RuntimeError("Please LOGIN again")) is ErrorKind.AUTHENTICATION
    assert classify_error(RuntimeError("Unauthorized")) is ErrorKind.AUTHENTICATION
    assert classify_error(RuntimeError("disk full")) is ErrorKind.GENERIC


def test_business_error_fields():
    err = BackendStartupError(code="BACKEND_STARTUP_FAILED", message="boom", provider="copilot")
    assert str(err) == "boom"
    assert err.extra == {"provider": "copilot"}
