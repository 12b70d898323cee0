import functools
import inspect
import json
from typing import Any

from loguru import logger


def stable_serialize(value: Any) -> str:
    """Canonical JSON: sorted keys, compact separators, str() for the rest."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def safe_func_wrapper(func):
    """
    A decorator that logs function entry, exit, and exceptions.

    Features:
    - Logs function name and parameters before execution
    - Catches exceptions, logs error info, and re-raises
    - Logs a success message after successful execution
    - Works on plain and coroutine functions
    """

    def _entry(args, kwargs) -> str:
        sig = inspect.signature(func)
        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()
        params = {k: v for k, v in bound_args.arguments.items() if k != "self"}
        return f"Entering {func.__name__} with params: {params}"

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger.debug(_entry(args, kwargs))
            try:
                result = await func(*args, **kwargs)
                logger.debug(f"{func.__name__} succeeded")
                return result
            except Exception as e:
                logger.error(f"{func.__name__} raised {type(e).__name__}: {e}")
                raise

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(_entry(args, kwargs))
        try:
            result = func(*args, **kwargs)
            logger.debug(f"{func.__name__} succeeded")
            return result
        except Exception as e:
            logger.error(f"{func.__name__} raised {type(e).__name__}: {e}")
            raise

    return wrapper
