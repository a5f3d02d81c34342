import functools
import inspect
from datetime import datetime, timezone

from loguru import logger


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_ms(moment: datetime | None = None) -> int:
    """Milliseconds since the epoch for ``moment`` (default: now)."""
    return int((moment or utcnow()).timestamp() * 1000)


def log_job(func):
    """
    A decorator for scheduled coroutines that logs entry, exit, and exceptions.

    Features:
    - Logs job name and bound parameters before execution
    - Logs and re-raises any exception so the scheduler records the failure
    - Logs a success message with the returned value
    - Preserves function metadata and return values
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__

        sig = inspect.signature(func)
        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()
        params = {k: v for k, v in bound_args.arguments.items() if k != "self"}

        logger.debug(f"Entering job {func_name} with params: {params}")

        try:
            result = await func(*args, **kwargs)
            logger.debug(f"Job {func_name} finished: {result}")
            return result
        except Exception as e:
            logger.error(f"Job {func_name} failed: {type(e).__name__}: {e}")
            raise

    return wrapper
