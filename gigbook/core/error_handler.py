"""Background task resilience and shutdown helpers."""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def setup_global_exception_handler() -> None:
    """Log exceptions that escape asyncio tasks instead of dropping them."""

    def handle_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exception = context.get("exception")
        message = context.get("message", "Unhandled exception in async task")
        if exception:
            logger.error("Asyncio exception handler caught: %s", message, exc_info=exception)
        else:
            logger.error("Asyncio exception handler caught: %s (context: %s)", message, context)

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running loop to install exception handler yet")
        return
    loop.set_exception_handler(handle_exception)
    logger.info("Global asyncio exception handler installed")


def resilient_task(
    *,
    task_name: str,
    retry_on_error: bool = True,
    retry_delay: float = 5.0,
    max_retries: Optional[int] = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Restart a long-running coroutine after unexpected errors.

    Example:
        @resilient_task(task_name="ttl_store_sweeper")
        async def sweep_forever():
            while True:
                store.cleanup()
                await asyncio.sleep(60)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    logger.info("%s cancelled, shutting down gracefully", task_name)
                    raise
                except Exception as exc:
                    attempt += 1
                    logger.error(
                        "%s failed (attempt %d): %s",
                        task_name,
                        attempt,
                        exc,
                        exc_info=True,
                    )
                    if not retry_on_error or (max_retries and attempt >= max_retries):
                        logger.critical(
                            "%s permanently failed after %d attempts, not retrying",
                            task_name,
                            attempt,
                        )
                        raise
                    await asyncio.sleep(retry_delay)

        return wrapper

    return decorator


def safe_background_task(task_name: str, task_coro: Awaitable[Any]) -> asyncio.Task:
    """Schedule a coroutine whose cancellation is quiet and whose failure is logged."""

    async def wrapped() -> Any:
        try:
            return await task_coro
        except asyncio.CancelledError:
            logger.info("Background task '%s' cancelled", task_name)
        except Exception:
            logger.exception("Background task '%s' failed with unhandled exception", task_name)
            raise

    return asyncio.create_task(wrapped(), name=task_name)


class GracefulShutdown:
    """Cancel tracked background tasks and wait for them, bounded by a timeout."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self.tasks: list[asyncio.Task] = []

    def add_task(self, task: Optional[asyncio.Task]) -> None:
        if task is not None:
            self.tasks.append(task)

    async def shutdown(self) -> None:
        if not self.tasks:
            return

        logger.info("Gracefully shutting down %d background tasks...", len(self.tasks))
        for task in self.tasks:
            if not task.done():
                task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*self.tasks, return_exceptions=True),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Timeout waiting for background tasks to shut down after %.1fs",
                self.timeout,
            )
        self.tasks.clear()


__all__ = [
    "GracefulShutdown",
    "resilient_task",
    "safe_background_task",
    "setup_global_exception_handler",
]
