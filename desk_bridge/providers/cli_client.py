"""外部 CLI 后端适配器（claude / opencode）。

每个请求启动一个一次性子进程：

1. 组合 CLI 提示词，按后端的参数约定构造 argv（不经过 shell）。
2. 捕获 stdout/stderr；Windows 下不弹出控制台窗口，POSIX 下放进独立进程组。
3. 等待退出，上限为 request_timeout，并响应调用方的取消信号。
4. 超时或取消时连同子进程树一起强制结束，返回固定的超时提示。
5. 根据退出码与输出决定返回 stdout、stderr 错误提示或"无应答"提示。
"""

import asyncio
import contextlib
import os
import signal
import subprocess
from typing import AsyncIterator, List, Optional

from desk_bridge.config.settings import settings
from desk_bridge.domain.exceptions import (
    ErrorKind,
    ProcessLaunchError,
    RequestCancelledError,
    RequestTimeoutError,
    UnsupportedProviderError,
)
from desk_bridge.domain.models import PromptRequest
from desk_bridge.infrastructure.logging.logger import logger, preview
from desk_bridge.prompts.composer import compose_cli_prompt
from desk_bridge.providers.cancellation import run_cancellable
from desk_bridge.providers.registry import get_cli_config, resolve_executable


def _spawn_options() -> dict:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


async def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """强制结束子进程及其后代进程。"""

    try:
        if os.name == "nt":
            killer = await asyncio.create_subprocess_exec(
                "taskkill", "/F", "/T", "/PID", str(process.pid),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                creationflags=subprocess.CREATE_NO_WINDOW,
            )
            await killer.wait()
        else:
            os.killpg(process.pid, signal.SIGKILL)
    except OSError as e:
        logger.warning("cli.kill_tree.failed", extra={"extra": {"pid": process.pid, "error": str(e)}})
        with contextlib.suppress(ProcessLookupError):
            process.kill()


@contextlib.asynccontextmanager
async def scoped_process(argv: List[str]) -> AsyncIterator[asyncio.subprocess.Process]:
    """启动子进程，离开作用域时若进程仍在运行则结束整棵进程树。

    Raises:
        ProcessLaunchError: 可执行文件不存在或无法启动。
    """

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **_spawn_options(),
        )
    except OSError as e:
        raise ProcessLaunchError(code="PROCESS_LAUNCH_FAILED", message=str(e), executable=argv[0]) from e
    try:
        yield process
    finally:
        if process.returncode is None:
            await _kill_process_tree(process)
            await process.wait()


class CliClient:
    """一次性 CLI 后端客户端实现。"""

    def __init__(self, name: str, cfg=settings):
        self.name = name
        self._settings = cfg

    @property
    def timeout(self) -> float:
        return float(getattr(self._settings, "request_timeout", None) or 300.0)

    async def is_ready(self) -> bool:
        # 外部 CLI 自行处理认证
        return True

    async def aclose(self) -> None:
        return None

    def build_argv(self, full_prompt: str) -> List[str]:
        """按后端参数约定构造 argv。

        Raises:
            UnsupportedProviderError: 该名称没有 CLI 配置。
        """

        try:
            cli_cfg = get_cli_config(self.name)
        except KeyError as e:
            raise UnsupportedProviderError(
                code="UNSUPPORTED_PROVIDER",
                message=f"Unsupported CLI provider: {self.name}",
                provider=self.name,
            ) from e
        return cli_cfg.build_argv(full_prompt, resolve_executable(cli_cfg, self._settings))

    async def get_response(
        self,
        req: PromptRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        full_prompt = compose_cli_prompt(
            req.prompt,
            context=req.context,
            recent_messages=req.recent_messages,
            history_window=getattr(self._settings, "cli_history_window", 6),
        )
        if req.image_base64:
            logger.info("cli.prompt.image_dropped", extra={"extra": {"provider": self.name}})

        try:
            argv = self.build_argv(full_prompt)
        except UnsupportedProviderError as e:
            logger.warning(
                "cli.unsupported_provider",
                extra={"extra": {"provider": self.name, "kind": e.kind.value}},
            )
            return e.message

        log_ctx = {"provider": self.name, "executable": argv[0]}
        logger.debug(
            "cli.prompt",
            extra={"extra": {**log_ctx, "chars": len(full_prompt), "prompt": preview(full_prompt, 4000)}},
        )
        try:
            async with scoped_process(argv) as process:
                try:
                    stdout, stderr = await run_cancellable(process.communicate(), cancel_event, self.timeout)
                except (RequestTimeoutError, RequestCancelledError) as e:
                    logger.warning(
                        "cli.timeout",
                        extra={"extra": {**log_ctx, "kind": e.kind.value, "timeout": self.timeout}},
                    )
                    return f"Request timed out after {self.timeout:.0f} seconds while waiting for {self.name}."
                exit_code = process.returncode
        except ProcessLaunchError as e:
            logger.error("cli.launch.failed", extra={"extra": {**log_ctx, "error": e.message}})
            return f"Failed to start {self.name}."

        output = _decode(stdout).strip()
        error = _decode(stderr).strip()
        exit_ctx = {**log_ctx, "exit_code": exit_code, "stdout_chars": len(output), "stderr_chars": len(error)}
        if exit_code == 0 and output:
            logger.info("cli.exit", extra={"extra": exit_ctx})
            return output
        logger.warning("cli.exit", extra={"extra": {**exit_ctx, "kind": ErrorKind.PROCESS_FAILURE.value}})
        if error:
            return f"Error from {self.name}: {error}"
        return f"No response received from {self.name}."


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")
