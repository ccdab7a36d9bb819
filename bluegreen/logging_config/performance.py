"""Performance Logging.

Decorator and context manager for timing probes and pipeline phases
and flagging slow ones.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional

from bluegreen.logging_config.config import DEFAULT_LOGGING_CONFIG

logger = logging.getLogger(__name__)


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
) -> Callable:
    """Decorator that logs function execution time.

    Logs all calls at DEBUG level and slow calls (above threshold) at WARNING.

    Example:
        @log_performance(threshold_ms=2000)
        def probe(self, slot):
            ...
    """
    if threshold_ms is None:
        threshold_ms = DEFAULT_LOGGING_CONFIG.slow_threshold_ms

    def decorator(func: Callable) -> Callable:
        _logger = logging.getLogger(logger_name or func.__module__)
        func_name = func.__qualname__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                duration_ms = (time.perf_counter() - start) * 1000
                _logger.error(
                    "%s failed after %.1fms: %s",
                    func_name,
                    duration_ms,
                    type(exc).__name__,
                    extra={"duration_ms": round(duration_ms, 2)},
                )
                raise
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                extra = {"duration_ms": round(duration_ms, 2)}
                if duration_ms >= threshold_ms:
                    _logger.warning(
                        "Slow operation: %s took %.1fms", func_name, duration_ms, extra=extra
                    )
                else:
                    _logger.debug(
                        "%s completed in %.1fms", func_name, duration_ms, extra=extra
                    )

        return wrapper

    return decorator


class PerformanceTimer:
    """Context manager for timing code blocks.

    Example:
        with PerformanceTimer("build green") as timer:
            builder.build(slot, version)
        print(f"Build took {timer.duration_ms:.1f}ms")
    """

    def __init__(self, operation_name: str, threshold_ms: Optional[float] = None):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms or DEFAULT_LOGGING_CONFIG.slow_threshold_ms
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {"duration_ms": round(self.duration_ms, 2)}

        if exc_type is not None:
            logger.error(
                "%s failed after %.1fms: %s",
                self.operation_name,
                self.duration_ms,
                exc_type.__name__,
                extra=extra,
            )
        elif self.duration_ms >= self.threshold_ms:
            logger.info(
                "%s took %.1fms", self.operation_name, self.duration_ms, extra=extra
            )
        else:
            logger.debug(
                "%s completed in %.1fms", self.operation_name, self.duration_ms, extra=extra
            )
