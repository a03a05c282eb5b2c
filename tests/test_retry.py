"""Retry wrapper: backoff only for rate-limit signatures."""

import asyncio

import pytest

from errors import is_rate_limit_error
from services.retry import with_retry
from tests.fakes import RecordingSleep


class _FlakyCall:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_retries_rate_limited_call_with_doubling_delay():
    sleep = RecordingSleep()
    call = _FlakyCall([RuntimeError("429 Too Many Requests"), RuntimeError("RESOURCE_EXHAUSTED")])

    result = asyncio.run(with_retry(call, sleep=sleep))

    assert result == "ok"
    assert call.calls == 3
    assert sleep.delays == [2.0, 4.0]


def test_non_rate_limit_error_fails_on_first_attempt():
    sleep = RecordingSleep()
    call = _FlakyCall([ValueError("bad request")] * 5)

    with pytest.raises(ValueError, match="bad request"):
        asyncio.run(with_retry(call, sleep=sleep))

    assert call.calls == 1
    assert sleep.delays == []


def test_exhausted_budget_surfaces_last_error():
    sleep = RecordingSleep()
    errors = [RuntimeError(f"Quota exceeded ({i})") for i in range(4)]
    call = _FlakyCall(errors + [RuntimeError("never reached")])

    with pytest.raises(RuntimeError, match=r"Quota exceeded \(3\)"):
        asyncio.run(with_retry(call, retries=3, delay=2.0, sleep=sleep))

    assert call.calls == 4
    assert sleep.delays == [2.0, 4.0, 8.0]


def test_zero_budget_does_not_retry():
    sleep = RecordingSleep()
    call = _FlakyCall([RuntimeError("429")])

    with pytest.raises(RuntimeError):
        asyncio.run(with_retry(call, retries=0, sleep=sleep))

    assert call.calls == 1


@pytest.mark.parametrize(
    "text, expected",
    [
        ("429 Too Many Requests", True),
        ("google.api_core.exceptions.ResourceExhausted: RESOURCE_EXHAUSTED", True),
        ("Quota Exceeded for model", True),
        ("500 Internal error", False),
        ("", False),
    ],
)
def test_rate_limit_signature_detection(text, expected):
    assert is_rate_limit_error(RuntimeError(text)) is expected
    assert is_rate_limit_error(text) is expected
