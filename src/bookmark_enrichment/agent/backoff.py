"""Retry/backoff policy for stage calls, built on tenacity."""

import logging
import random
import threading
import time
from typing import Callable, Optional

from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from ..config.loader import RetryPolicy
from ..tools.errors import RETRYABLE_ERRORS, RateLimitError

logger = logging.getLogger(__name__)


class wait_tool_backoff(wait_base):
    """
    Exponential backoff: base * factor ** (attempt - 1), capped at max_delay.
    Rate limits wait `rate_limit_multiplier` times longer. A provider's
    retry-after hint is a floor and is not subject to the cap.
    """

    def __init__(self, policy: RetryPolicy):
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        policy = self.policy
        delay = policy.base_delay_seconds * policy.factor ** (retry_state.attempt_number - 1)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError):
            delay = min(delay * policy.rate_limit_multiplier, policy.max_delay_seconds)
            if exc.retry_after is not None:
                delay = max(delay, exc.retry_after)
        else:
            delay = min(delay, policy.max_delay_seconds)
        if policy.jitter_seconds:
            delay += random.uniform(0, policy.jitter_seconds)
        return delay


def build_retrying(
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    cancel_event: Optional[threading.Event] = None,
) -> Retrying:
    """
    Retrying controller for one stage call; re-raises the last error.
    Once `cancel_event` is set a failed attempt is not retried.
    """

    def should_retry(exc: BaseException) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return False
        return isinstance(exc, RETRYABLE_ERRORS)

    return Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_tool_backoff(policy),
        retry=retry_if_exception(should_retry),
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
