"""
Retry wrapper for calls that reach the record store.

Only PersistenceError is retried. Wrap a whole remember/recall/forget
call; index operations themselves are in-memory and never retried.
"""

import logging
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agent_memory.config.settings import RetryCfg
from agent_memory.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_policy(cfg: Optional[RetryCfg] = None) -> Retrying:
    """Build a tenacity policy for transient persistence failures."""
    cfg = cfg or RetryCfg()
    return Retrying(
        retry=retry_if_exception_type(PersistenceError),
        stop=stop_after_attempt(cfg.max_attempts),
        wait=wait_exponential(multiplier=cfg.multiplier, min=cfg.wait_min, max=cfg.wait_max),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def call_with_retry(fn: Callable[..., T], *args: Any, policy: Optional[RetryCfg] = None, **kwargs: Any) -> T:
    """
    Call `fn`, retrying on PersistenceError with exponential backoff.

    Args:
        fn: Callable to invoke (e.g. service.remember)
        *args: Positional arguments for fn
        policy: Retry configuration
        **kwargs: Keyword arguments for fn

    Returns:
        Whatever fn returns

    Raises:
        PersistenceError: When all attempts fail
    """
    return retry_policy(policy)(fn, *args, **kwargs)
