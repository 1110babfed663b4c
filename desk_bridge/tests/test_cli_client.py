import asyncio
import os
import sys
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from desk_bridge.domain.exceptions import ErrorKind, ProcessLaunchError, UnsupportedProviderError
from desk_bridge.domain.models import ChatMessage, PromptRequest
from desk_bridge.providers import cli_client
from desk_bridge.providers.cli_client import CliClient, scoped_process


class SettingsStub:
    request_timeout = 300.0
    cli_history_window = 6
    claude_command = "claude"
    opencode_command = "opencode"


class ShortTimeoutSettings(SettingsStub):
    request_timeout = 0.05


class FakeProcess:
    def __init__(self, stdout=b"", stderr=b"", exit_code=0, hang=False):
        self.pid = 424242
        self.returncode = None
        self.killed = False
        self._stdout = stdout
        self._stderr = stderr
        self._exit_code = exit_code
        self._hang = hang

    async def communicate(self):
        if self._hang:
            await asyncio.sleep(3600)
        self.returncode = self._exit_code
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


def _install(monkeypatch, process=None, error=None):
    calls = []

    async def fake_exec(*argv, **kwargs):
        calls.append((argv, kwargs))
        if error is not None:
            raise error
        return process

    monkeypatch.setattr(cli_client.asyncio, "create_subprocess_exec", fake_exec)
    async def fake_kill(p):
        p.kill()

    monkeypatch.setattr(cli_client, "_kill_process_tree", fake_kill)
    return calls


def _run(client, req, cancel_event=None):
    return asyncio.run(client.get_response(req, cancel_event=cancel_event))


def test_claude_argv_and_trimmed_stdout(monkeypatch):
    calls = _install(monkeypatch, FakeProcess(stdout=b"  hello there \n"))
    res = _run(CliClient("claude", SettingsStub()), PromptRequest.build("hi", context="C:/proj"))
    assert res == "hello there"
    argv, kwargs = calls[0]
    assert argv == ("claude", "-p", "Context:\nC:/proj\n\nQuestion:\nhi")
    assert kwargs["stdout"] == asyncio.subprocess.PIPE
    assert kwargs["stderr"] == asyncio.subprocess.PIPE
    assert "shell" not in kwargs


def test_opencode_argv_with_history(monkeypatch):
    calls = _install(monkeypatch, FakeProcess(stdout=b"ok"))
    history = [ChatMessage(role="user", content="a"), ChatMessage(role="assistant", content="b")]
    _run(CliClient("opencode", SettingsStub()), PromptRequest.build("c", recent_messages=history))
    argv, _ = calls[0]
    assert argv == ("opencode", "run", "Recent conversation:\nUser: a\nAssistant: b\n\nc")


def test_executable_override(monkeypatch):
    class Custom(SettingsStub):
        claude_command = "/opt/bin/claude"

    calls = _install(monkeypatch, FakeProcess(stdout=b"ok"))
    _run(CliClient("claude", Custom()), PromptRequest.build("hi"))
    assert calls[0][0][0] == "/opt/bin/claude"


def test_nonzero_exit_reports_stderr(monkeypatch, caplog):
    _install(monkeypatch, FakeProcess(stdout=b"partial", stderr=b"boom\n", exit_code=1))
    with caplog.at_level("INFO", logger="desk_bridge"):
        res = _run(CliClient("claude", SettingsStub()), PromptRequest.build("hi"))
    assert res == "Error from claude: boom"
    exits = [r for r in caplog.records if r.getMessage() == "cli.exit"]
    assert exits[-1].extra["kind"] == ErrorKind.PROCESS_FAILURE.value
    assert exits[-1].extra["exit_code"] == 1


def test_empty_output_without_stderr(monkeypatch):
    _install(monkeypatch, FakeProcess(stdout=b"   ", exit_code=0))
    res = _run(CliClient("opencode", SettingsStub()), PromptRequest.build("hi"))
    assert res == "No response received from opencode."


def test_timeout_kills_process(monkeypatch):
    proc = FakeProcess(hang=True)
    _install(monkeypatch, proc)
    res = _run(CliClient("claude", ShortTimeoutSettings()), PromptRequest.build("hi"))
    assert proc.killed
    assert res == "Request timed out after 0 seconds while waiting for claude."


def test_cancel_event_kills_process(monkeypatch):
    proc = FakeProcess(hang=True)
    _install(monkeypatch, proc)

    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        return await CliClient("claude", SettingsStub()).get_response(PromptRequest.build("hi"), cancel_event=cancel)

    res = asyncio.run(scenario())
    assert proc.killed
    assert res == "Request timed out after 300 seconds while waiting for claude."


def test_launch_failure(monkeypatch):
    _install(monkeypatch, error=FileNotFoundError("claude"))
    res = _run(CliClient("claude", SettingsStub()), PromptRequest.build("hi"))
    assert res == "Failed to start claude."


def test_unsupported_provider(monkeypatch):
    calls = _install(monkeypatch, FakeProcess(stdout=b"ok"))
    res = _run(CliClient("gemini", SettingsStub()), PromptRequest.build("hi"))
    assert res == "Unsupported CLI provider: gemini"
    assert calls == []


def test_build_argv_rejects_unknown_provider():
    with pytest.raises(UnsupportedProviderError) as exc_info:
        CliClient("gemini", SettingsStub()).build_argv("hi")
    assert exc_info.value.kind is ErrorKind.UNSUPPORTED_PROVIDER
    assert exc_info.value.message == "Unsupported CLI provider: gemini"


def test_image_is_not_forwarded(monkeypatch):
    calls = _install(monkeypatch, FakeProcess(stdout=b"ok"))
    _run(CliClient("claude", SettingsStub()), PromptRequest.build("hi", image_base64="QUJD"))
    assert calls[0][0] == ("claude", "-p", "hi")


def test_is_ready_is_always_true():
    assert asyncio.run(CliClient("claude", SettingsStub()).is_ready()) is True


@pytest.mark.skipif(os.name == "nt", reason="POSIX process groups")
def test_scoped_process_kills_running_child():
    async def scenario():
        async with scoped_process([sys.executable, "-c", "import time; time.sleep(30)"]) as process:
            assert process.returncode is None
        return process.returncode

    assert asyncio.run(scenario()) is not None


def test_scoped_process_missing_executable():
    async def scenario():
        async with scoped_process(["desk-bridge-missing-executable-xyz"]):
            pass

    with pytest.raises(ProcessLaunchError):
        asyncio.run(scenario())


def _alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    try:
        # 已退出但尚未被回收的僵尸进程视为已结束
        state = Path(f"/proc/{pid}/stat").read_text().rsplit(")", 1)[-1].split()[0]
    except OSError:
        return True
    return state != "Z"


def _wait_gone(pid, deadline=5.0):
    end = time.monotonic() + deadline
    while time.monotonic() < end:
        if not _alive(pid):
            return True
        time.sleep(0.1)
    return not _alive(pid)


@pytest.mark.skipif(os.name == "nt", reason="POSIX process groups")
def test_timeout_kills_grandchild_processes(tmp_path):
    pid_file = tmp_path / "grandchild.pid"
    script = tmp_path / "fake-claude.sh"
    script.write_text(f'#!/bin/sh\nsleep 60 &\necho $! > "{pid_file}"\nwait\n')
    script.chmod(0o755)

    class ScriptSettings(SettingsStub):
        claude_command = str(script)
        request_timeout = 1.0

    res = _run(CliClient("claude", ScriptSettings()), PromptRequest.build("hi"))
    assert res == "Request timed out after 1 seconds while waiting for claude."
    grandchild = int(pid_file.read_text().strip())
    assert _wait_gone(grandchild)


def test_windows_tree_kill_uses_async_taskkill(monkeypatch):
    calls = []

    class FakeKiller:
        async def wait(self):
            return 0

    async def fake_exec(*argv, **kwargs):
        calls.append(argv)
        return FakeKiller()

    monkeypatch.setattr(cli_client, "os", SimpleNamespace(name="nt", killpg=os.killpg))
    monkeypatch.setattr(cli_client.subprocess, "CREATE_NO_WINDOW", 0x08000000, raising=False)
    monkeypatch.setattr(cli_client.asyncio, "create_subprocess_exec", fake_exec)

    def blocking_run(*args, **kwargs):
        raise AssertionError("blocking subprocess.run used inside the event loop")

    monkeypatch.setattr(cli_client.subprocess, "run", blocking_run)
    proc = FakeProcess()
    asyncio.run(cli_client._kill_process_tree(proc))
    assert calls == [("taskkill", "/F", "/T", "/PID", "424242")]
    assert not proc.killed
