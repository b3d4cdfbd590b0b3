"""
Logging utilities for torchxmatch.

Provides the package logger and the decorators used by the public
matching and k-d tree entry points.
"""

import logging
import sys
import time
from contextlib import contextmanager
from functools import wraps
from typing import Optional

logger = logging.getLogger("torchxmatch")
logger.setLevel(logging.INFO)

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_errors(func):
    """Decorator to log exceptions before re-raising."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {str(e)}")
            raise

    return wrapper


@contextmanager
def log_timing(operation: str, threshold_ms: Optional[float] = None):
    """
    Time a block and report it on the torchxmatch logger.

    The elapsed time is always logged at debug level, failures included.
    When ``threshold_ms`` is given and exceeded, a warning is emitted as well.
    Errors are left to :func:`log_errors` at the public entry points.
    """
    start_time = time.perf_counter()
    try:
        yield
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"{operation} failed after {elapsed_ms:.2f}ms: {str(e)}")
        raise
    elapsed_ms = (time.perf_counter() - start_time) * 1000
    logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
    if threshold_ms is not None:
        log_performance_warning(operation, elapsed_ms, threshold_ms)


def log_performance(func):
    """Decorator form of :func:`log_timing`."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        with log_timing(func.__name__):
            return func(*args, **kwargs)

    return wrapper


def set_log_level(level: str):
    """Set logging level for torchxmatch."""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    logger.setLevel(level_map.get(level.upper(), logging.INFO))


def log_match_summary(method: str, size_a: int, size_b: int, nummatched: int):
    """Log the outcome of one match call."""
    logger.debug(
        f"{method} match: {nummatched} pairs between {size_a} and {size_b} rows"
    )


def log_performance_warning(operation: str, time_ms: float, threshold_ms: float = 1000):
    """Log performance warnings for slow operations."""
    if time_ms > threshold_ms:
        logger.warning(
            f"Slow operation detected: {operation} took {time_ms:.2f}ms (threshold: {threshold_ms}ms)"
        )
