from __future__ import annotations
"""Exponential backoff around single S3 calls."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import classify_error, is_retryable

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """``max_retries`` extra attempts after the first, ``base_delay`` in seconds."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy | None = None,
    context: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` and retry classified transient failures.

    botocore errors are converted into :mod:`s3_tree.errors` types. Only
    rate-limit, 5xx and network errors are retried, waiting
    ``base_delay * 2**attempt`` between attempts; the last classified error is
    raised once the attempt budget is spent.
    """

    policy = policy or RetryPolicy()

    def attempt() -> T:
        try:
            return operation()
        except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as exc:
            raise classify_error(exc, context) from exc

    retrying = Retrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_exponential(multiplier=policy.base_delay),
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    return retrying(attempt)
