import threading

import pytest

from bookmark_enrichment.agent.backoff import build_retrying
from bookmark_enrichment.config.loader import RetryPolicy
from bookmark_enrichment.tools.errors import RateLimitError, TransientNetworkError, ValidationError


def failing(*errors):
    """Callable raising each error in turn, then returning 'ok'."""
    remaining = list(errors)
    calls = []

    def fn():
        calls.append(1)
        if remaining:
            raise remaining.pop(0)
        return "ok"

    fn.calls = calls
    return fn


def test_exponential_backoff_then_success() -> None:
    sleeps: list[float] = []
    fn = failing(TransientNetworkError("down"), TransientNetworkError("down"))
    result = build_retrying(RetryPolicy(max_attempts=3, base_delay_seconds=0.5, factor=2), sleep=sleeps.append)(fn)
    assert result == "ok"
    assert sleeps == [0.5, 1.0]
    assert len(fn.calls) == 3


def test_gives_up_after_max_attempts() -> None:
    sleeps: list[float] = []
    fn = failing(*[TransientNetworkError("down")] * 5)
    with pytest.raises(TransientNetworkError):
        build_retrying(RetryPolicy(max_attempts=3), sleep=sleeps.append)(fn)
    assert len(fn.calls) == 3
    assert len(sleeps) == 2


def test_rate_limit_waits_longer_and_honors_retry_after() -> None:
    policy = RetryPolicy(base_delay_seconds=0.5, factor=2, rate_limit_multiplier=4, max_delay_seconds=30)

    sleeps: list[float] = []
    build_retrying(policy, sleep=sleeps.append)(failing(RateLimitError("slow down")))
    assert sleeps == [2.0]

    sleeps = []
    build_retrying(policy, sleep=sleeps.append)(failing(RateLimitError("slow down", retry_after=7)))
    assert sleeps == [7.0]


def test_delay_is_capped() -> None:
    sleeps: list[float] = []
    policy = RetryPolicy(base_delay_seconds=10, factor=10, max_attempts=3, max_delay_seconds=15)
    build_retrying(policy, sleep=sleeps.append)(
        failing(TransientNetworkError("a"), TransientNetworkError("b"))
    )
    assert sleeps == [10.0, 15.0]


def test_validation_error_is_not_retried() -> None:
    sleeps: list[float] = []
    fn = failing(ValidationError("bad shape"))
    with pytest.raises(ValidationError):
        build_retrying(RetryPolicy(), sleep=sleeps.append)(fn)
    assert len(fn.calls) == 1
    assert sleeps == []


def test_retry_after_above_cap_is_honored() -> None:
    sleeps: list[float] = []
    build_retrying(RetryPolicy(), sleep=sleeps.append)(failing(RateLimitError("slow down", retry_after=60)))
    assert sleeps == [60.0]


def test_no_retry_once_cancelled() -> None:
    sleeps: list[float] = []
    cancel = threading.Event()

    def fn():
        fn.calls.append(1)
        cancel.set()
        raise TransientNetworkError("down")

    fn.calls = []
    with pytest.raises(TransientNetworkError):
        build_retrying(RetryPolicy(), sleep=sleeps.append, cancel_event=cancel)(fn)
    assert len(fn.calls) == 1
    assert sleeps == []
