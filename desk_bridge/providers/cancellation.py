"""请求等待与取消。

调用方通过 asyncio.Event 传入取消信号，内部再叠加一个超时，
二者谁先到就以谁为准；被放弃的等待任务会被取消并回收。
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from desk_bridge.domain.exceptions import RequestCancelledError, RequestTimeoutError


T = TypeVar("T")


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel_event: Optional[asyncio.Event] = None,
    timeout: Optional[float] = None,
) -> T:
    """等待 awaitable 完成。

    Raises:
        RequestCancelledError: cancel_event 先被触发。
        RequestTimeoutError: timeout 先到。
        以及 awaitable 自身抛出的异常。
    """

    task = asyncio.ensure_future(awaitable)
    waiters = {task}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_waiter is not None and not cancel_waiter.done():
            cancel_waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})

    if task in done:
        return task.result()
    if cancel_event is not None and cancel_event.is_set():
        raise RequestCancelledError(code="REQUEST_CANCELLED", message="Request was cancelled.")
    raise RequestTimeoutError(
        code="REQUEST_TIMEOUT",
        message=f"Request timed out after {timeout} seconds.",
        timeout=timeout,
    )
