"""GitHub Copilot SDK 后端适配器。

本模块负责：

1. 管理 SDK 长连接：第一次使用前启动一次，之后复用。
2. 每个请求创建一个独立会话，发送组合提示词并等待应答事件。
3. 无论成功与否都断开会话（disconnect）。
4. 把失败归类（超时 / 认证 / 取消 / 其他）并转换为给用户看的文本。

SDK 的会话与事件对象形状不稳定，这里只依赖 base.SessionHandle 中的
send_and_wait / disconnect，以及 BackendReply.from_event 的取值方式。
"""

import asyncio
import time
from typing import Optional

from copilot import CopilotClient, PermissionHandler

from desk_bridge.config.settings import settings
from desk_bridge.domain.exceptions import BackendStartupError, ErrorKind, classify_error
from desk_bridge.domain.models import BackendReply, PromptRequest
from desk_bridge.infrastructure.logging.logger import logger, preview
from desk_bridge.prompts.composer import compose_copilot_prompt
from desk_bridge.providers.base import SessionFactory, SessionHandle
from desk_bridge.providers.cancellation import run_cancellable
from desk_bridge.providers.registry import COPILOT_CONFIG


AUTH_REQUIRED_MESSAGE = (
    "Authentication required.\n\n"
    "Please authenticate with GitHub:\n"
    "Run: gh auth login\n"
    "Or visit: https://docs.github.com/en/copilot/cli\n\n"
    "Then restart this application."
)
NO_RESPONSE_MESSAGE = f"No response received from {COPILOT_CONFIG.display_name}."


class CopilotSdkClient:
    """Copilot 主后端客户端实现。

    - name: 后端名称（供日志/调试使用）。
    - get_response: 对外统一调用入口，始终返回文本。
    """

    name = COPILOT_CONFIG.name

    def __init__(self, cfg=settings, client: Optional[SessionFactory] = None):
        self._settings = cfg
        # 只构造客户端对象，真正的启动推迟到 ensure_started
        self._client = client if client is not None else CopilotClient()
        self._session: Optional[SessionHandle] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def timeout(self) -> float:
        return float(getattr(self._settings, "request_timeout", None) or 300.0)

    # ---- 生命周期 ----

    async def ensure_started(self) -> None:
        """确保 SDK 长连接已启动；失败时抛出 BackendStartupError。"""

        if self._started:
            logger.debug("copilot.start.reuse")
            return
        logger.info("copilot.start.begin")
        started_at = time.monotonic()
        try:
            await self._client.start()
        except Exception as e:
            logger.error("copilot.start.failed", extra={"extra": {"error": str(e)}})
            raise BackendStartupError(
                code="BACKEND_STARTUP_FAILED",
                message=f"Failed to start Copilot. Ensure you're authenticated with GitHub.\n\nDetails: {e}",
                provider=self.name,
            ) from e
        self._started = True
        logger.info(
            "copilot.start.ok",
            extra={"extra": {"elapsed": round(time.monotonic() - started_at, 2)}},
        )

    async def is_ready(self) -> bool:
        """检查 Copilot 是否已就绪并通过认证，不抛异常。"""

        try:
            await self.ensure_started()
        except BackendStartupError:
            return False
        return True

    async def aclose(self) -> None:
        """释放未完成的会话并停止长连接；可以重复调用。"""

        session, self._session = self._session, None
        if session is not None:
            await self._release(session)
        if self._started:
            self._started = False
            await self._client.stop()
            logger.info("copilot.stop")

    # ---- 请求 ----

    async def get_response(
        self,
        req: PromptRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """执行一次请求。

        步骤：
        1. 确保长连接已启动。
        2. 为本次请求创建会话（模型与流式选项来自配置）。
        3. 发送组合提示词，最多等待 request_timeout 秒，同时响应取消信号。
        4. 取出文本；没有文本时返回固定提示，而不是错误。
        """

        method_start = time.monotonic()
        log_ctx = {"provider": self.name, "has_image": bool(req.image_base64)}
        try:
            stage_start = time.monotonic()
            await self.ensure_started()
            self._log_stage("start", stage_start, log_ctx)

            stage_start = time.monotonic()
            session = await self._client.create_session(**self._session_options())
            self._session = session
            self._log_stage("session", stage_start, log_ctx)
            try:
                full_prompt = compose_copilot_prompt(
                    req.prompt,
                    context=req.context,
                    recent_messages=req.recent_messages,
                    image_base64=req.image_base64,
                    history_window=getattr(self._settings, "primary_history_window", 10),
                )
                if req.image_base64:
                    logger.info(
                        "copilot.prompt.image",
                        extra={"extra": {"chars": len(req.image_base64), "kb": len(req.image_base64) // 1024}},
                    )
                logger.debug(
                    "copilot.prompt",
                    extra={"extra": {**log_ctx, "chars": len(full_prompt), "prompt": preview(full_prompt, 4000)}},
                )

                stage_start = time.monotonic()
                event = await run_cancellable(
                    session.send_and_wait(full_prompt, timeout=self.timeout),
                    cancel_event,
                )
                self._log_stage("send", stage_start, log_ctx)

                reply = BackendReply.from_event(event)
                if reply.content is None:
                    logger.warning("copilot.response.empty", extra={"extra": log_ctx})
                    return NO_RESPONSE_MESSAGE
                logger.debug(
                    "copilot.response",
                    extra={"extra": {
                        **log_ctx,
                        "chars": len(reply.content),
                        "response": preview(reply.content, 4000),
                        "total": round(time.monotonic() - method_start, 2),
                    }},
                )
                return reply.content
            finally:
                if self._session is session:
                    self._session = None
                await self._release(session)
        except Exception as e:
            return self._describe_failure(e, time.monotonic() - method_start, log_ctx)

    # ---- 辅助方法 ----

    def _session_options(self) -> dict:
        options = COPILOT_CONFIG.session_options(
            model=getattr(self._settings, "copilot_model", None),
            streaming=getattr(self._settings, "copilot_streaming", None),
        )
        # 未设置处理器时权限请求会一直挂起，直到 send_and_wait 超时
        options["on_permission_request"] = PermissionHandler.approve_all
        return options

    async def _release(self, session: SessionHandle) -> None:
        disconnect = getattr(session, "disconnect", None)
        if disconnect is None:
            logger.warning(
                "copilot.session.release_unsupported",
                extra={"extra": {"session_type": type(session).__name__}},
            )
            return
        try:
            await disconnect()
        except Exception as e:
            # 断开失败只记录，不覆盖已经拿到的应答
            logger.warning("copilot.session.disconnect_failed", extra={"extra": {"error": str(e)}})

    def _describe_failure(self, exc: Exception, elapsed: float, log_ctx: dict) -> str:
        """把异常转换为给用户看的文本。"""

        kind = classify_error(exc)
        logger.error(
            "copilot.request.failed",
            extra={"extra": {
                **log_ctx,
                "kind": kind.value,
                "error_type": type(exc).__name__,
                "error": str(exc),
                "elapsed": round(elapsed, 2),
            }},
        )
        if kind is ErrorKind.TIMEOUT:
            return (
                f"Request timed out after {elapsed:.0f} seconds. "
                "This usually means the Copilot CLI is not responding. "
                "Check if 'copilot' command works in your terminal."
            )
        if kind in (ErrorKind.AUTHENTICATION, ErrorKind.STARTUP):
            return AUTH_REQUIRED_MESSAGE
        return f"Error: {exc}"

    @staticmethod
    def _log_stage(stage: str, started_at: float, log_ctx: dict) -> None:
        logger.info(
            f"copilot.stage.{stage}",
            extra={"extra": {**log_ctx, "elapsed": round(time.monotonic() - started_at, 2)}},
        )
