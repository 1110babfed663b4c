"""统一业务异常模型。

所有后端抛出的业务级错误都应该继承自 BusinessError，
调度层据此把失败归类为 ErrorKind，再转成给用户看的提示文本。
"""

from enum import Enum
from typing import Iterable


class ErrorKind(str, Enum):
    """失败类别。"""

    STARTUP = "startup"
    AUTHENTICATION = "authentication"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    LAUNCH_FAILURE = "launch_failure"
    PROCESS_FAILURE = "process_failure"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    GENERIC = "generic"


# 不透明的第三方异常只能靠错误文本判断是否为认证问题
AUTH_KEYWORDS = ("auth", "login", "unauthorized")


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "BACKEND_STARTUP_FAILED"）。
        message: 用户可读错误信息。
        extra: 其他补充字段（例如 provider、elapsed 等）。
    """

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(self, code: str, message: str, **extra):
        self.code = code
        self.message = message
        self.extra = extra
        super().__init__(message)


class BackendStartupError(BusinessError):
    """主后端长连接启动失败，通常意味着未认证或 CLI 不可用。"""

    kind = ErrorKind.STARTUP


class AuthenticationError(BusinessError):
    """后端明确返回了认证失败。"""

    kind = ErrorKind.AUTHENTICATION


class RequestTimeoutError(BusinessError):
    """等待应答或子进程退出超时。"""

    kind = ErrorKind.TIMEOUT


class RequestCancelledError(BusinessError):
    """调用方通过取消信号中止了请求。"""

    kind = ErrorKind.CANCELLED


class ProcessLaunchError(BusinessError):
    """外部 CLI 可执行文件不存在或无法启动。"""

    kind = ErrorKind.LAUNCH_FAILURE


class UnsupportedProviderError(BusinessError):
    """没有对应 CLI 配置的后端名称。"""

    kind = ErrorKind.UNSUPPORTED_PROVIDER


def matches_keywords(message: str, keywords: Iterable[str] = AUTH_KEYWORDS) -> bool:
    """大小写不敏感的子串匹配。"""

    lowered = (message or "").lower()
    return any(k in lowered for k in keywords)


def classify_error(exc: BaseException) -> ErrorKind:
    """把异常归类为 ErrorKind。

    顺序：业务异常自带的 kind -> 超时类型 -> 认证关键字匹配 -> GENERIC。
    """

    if isinstance(exc, BusinessError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if matches_keywords(str(exc)):
        return ErrorKind.AUTHENTICATION
    return ErrorKind.GENERIC
