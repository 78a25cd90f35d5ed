"""Timing decorators shared by the resolver layer."""

import functools
import time
from typing import Callable, Optional

from core.utils.logging import get_logger

logger = get_logger(__name__)


def log_time(func: Optional[Callable] = None, *, label: Optional[str] = None) -> Callable:
    """
    Log how long a call took, including calls that raise.

    Usage:
        @log_time
        def validate_all(): ...

        @log_time(label="provider validation")
        def validate_all(): ...
    """

    def decorator(inner: Callable) -> Callable:
        name = label or inner.__name__

        @functools.wraps(inner)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = inner(*args, **kwargs)
            except Exception:
                logger.info(f"{name} failed after {time.perf_counter() - start:.3f}s")
                raise
            logger.info(f"{name} completed in {time.perf_counter() - start:.3f}s")
            return result

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
