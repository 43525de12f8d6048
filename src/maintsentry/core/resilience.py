"""Resilience patterns for graceful degradation.

This module provides utilities to ensure a maintenance session keeps
running even when individual tasks misbehave. Key principles:

1. No single task failure should crash the entire session
2. Errors are captured and recorded, not propagated
3. Each task has a time budget; overrunning it fails the task, not the session
4. Cancellation is cooperative and only observed between tasks

Usage:
    token = CancellationToken()
    detections = call_with_timeout(task.detect, 30.0, ctx, name=task.name)
"""
from __future__ import annotations

import functools
import logging
import threading
import traceback
from typing import Any, Callable, Dict, Optional, TypeVar

from .errors import TaskTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Session-scoped cancellation flag.

    Setting the flag never interrupts a running task; the pipeline checks it
    at task boundaries only.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            logger.warning("Cancellation requested: %s", reason)
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason


def call_with_timeout(
    func: Callable[..., T],
    timeout: Optional[float],
    *args: Any,
    name: str = "",
    stop: Optional[threading.Event] = None,
    **kwargs: Any,
) -> T:
    """Run ``func`` with a time budget.

    Uses a daemon worker thread (signal-based timeouts don't work off the
    main thread, and a hung command must not keep the process alive at
    exit). On timeout the worker is abandoned, ``stop`` is set so a
    cooperative ``func`` can return early, and TaskTimeoutError is raised.
    Exceptions raised by ``func`` propagate unchanged. A ``timeout`` of None
    or <= 0 disables the budget.
    """
    if timeout is None or timeout <= 0:
        return func(*args, **kwargs)

    label = name or getattr(func, "__name__", "task")
    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = func(*args, **kwargs)
        except BaseException as exc:  # noqa: BLE001 - re-raised in the caller
            outcome["error"] = exc

    worker = threading.Thread(target=target, name=f"task-{label}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        if stop is not None:
            stop.set()
        logger.warning("Task %s timed out after %.1fs", label, timeout)
        raise TaskTimeoutError(label, timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def with_graceful_degradation(
    default_return: T,
    log_errors: bool = True,
    error_message: str = "Operation failed",
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for graceful degradation on errors.

    Wraps a function to catch all exceptions and return a default
    value instead of propagating the error.

    Args:
        default_return: Value to return on error
        log_errors: Whether to log caught errors
        error_message: Message to log with errors

    Returns:
        Decorated function that won't raise exceptions
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                if log_errors:
                    logger.error(
                        "%s: %s - %s",
                        error_message,
                        type(exc).__name__,
                        str(exc),
                    )
                    logger.debug("Traceback: %s", traceback.format_exc())
                return default_return

        return wrapper

    return decorator
