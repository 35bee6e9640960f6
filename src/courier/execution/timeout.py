"""Per-call timeout enforcement.

External calls are blocking I/O. ``run_with_timeout`` runs the call on a
helper thread and stops waiting once the deadline passes. The call itself
is abandoned, not cancelled: Python cannot interrupt a thread that is
blocked in a socket read, so the helper thread finishes in the background
and its result is discarded.

Example:
    >>> result = run_with_timeout(fetch_events, 30.0, operation="calendar.fetch_events", args=(user_id,))
"""

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any

from courier.core.errors import CallTimeoutError


def run_with_timeout[T](
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout using a helper thread.

    Args:
        func: Callable to execute
        timeout_seconds: Maximum time to wait for the result
        operation: Name for error messages
        args: Positional arguments for func
        kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Raises:
        CallTimeoutError: If execution exceeds timeout
        Exception: Any exception raised by func
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="courier-call")
    future = executor.submit(func, *(args or ()), **(kwargs or {}))
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        raise CallTimeoutError(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation or getattr(func, "__name__", "unknown"),
        ) from None
    finally:
        # Never block on an abandoned call
        executor.shutdown(wait=False)
