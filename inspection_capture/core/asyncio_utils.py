"""Asyncio helpers for fire-and-forget work and scheduled transitions."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def _task_label(task: asyncio.Task[Any], context: Optional[str]) -> str:
    if context:
        return context
    name = task.get_name()
    return name or "background task"


def add_task_exception_logger(
    task: asyncio.Task[Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
) -> asyncio.Task[Any]:
    """Ensure task exceptions are retrieved and logged.

    Uploads dispatched from a capture session outlive the session itself;
    without this, a failure there would only surface as "Task exception was
    never retrieved" at interpreter shutdown.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")

    def _done(done_task: asyncio.Task[Any]) -> None:
        try:
            done_task.result()
        except asyncio.CancelledError:
            return
        except Exception:
            task_logger.exception("Unhandled exception in %s", _task_label(done_task, context))

    task.add_done_callback(_done)
    return task


def create_logged_task(
    coro: Awaitable[Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    """Create a task that won't lose exceptions, optionally tracking it."""
    loop = asyncio.get_running_loop()
    task = loop.create_task(coro)
    if context:
        task.set_name(context)

    add_task_exception_logger(task, logger=logger, context=context)

    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)

    return task


async def cancel_task_safely(
    task: Optional[asyncio.Task[Any]],
    task_name: str = "task",
    timeout: float = 5.0,
    logger: LoggerLike = None,
) -> bool:
    """Cancel ``task`` and wait for it to unwind. Returns False on timeout."""
    log = ensure_structured_logger(logger, fallback_name="asyncio")
    if task is None or task.done():
        return True
    task.cancel()
    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.CancelledError:
        log.debug("%s: cancelled", task_name)
        return True
    except asyncio.TimeoutError:
        log.warning("%s: cancellation timeout after %.1fs", task_name, timeout)
        return False
    except Exception as exc:
        log.warning("%s: exception during cancellation: %s", task_name, exc)
        return False
    return True


async def drain_pending(pending: set[asyncio.Task[Any]]) -> None:
    """Wait for every tracked task, including ones added while waiting."""
    while pending:
        await asyncio.gather(*list(pending), return_exceptions=True)


__all__ = [
    "add_task_exception_logger",
    "cancel_task_safely",
    "create_logged_task",
    "drain_pending",
]
