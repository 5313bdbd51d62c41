# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import functools
import time
from typing import Callable, TypeVar

from ..errors import RetryError

T = TypeVar("T")


def retry_call(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """
    Call `operation` up to `max_attempts` times, sleeping `delay` seconds
    between attempts. Exceptions outside `retry_on` propagate immediately.
    Raises RetryError (chained to the last failure) once attempts run out.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_exc = None
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except retry_on as exc:
            last_exc = exc
            if on_retry:
                on_retry(attempt, exc)
            if attempt == max_attempts:
                break
            (sleep or time.sleep)(delay)
    name = getattr(operation, "__name__", "operation")
    raise RetryError(f"{name} failed after {max_attempts} attempts: {last_exc}") from last_exc


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry
    on_retry: callback(attempt, exception)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            call = functools.wraps(fn)(lambda: fn(*args, **kwargs))
            return retry_call(
                call,
                max_attempts=retries,
                delay=delay,
                retry_on=retry_on,
                on_retry=on_retry,
            )
        return wrapper
    return decorator
