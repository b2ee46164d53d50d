"""Unit tests for the bounded exponential-backoff helper."""

import pytest

from adsync.errors import InvalidCredentials, RemoteApiFailure
from adsync.services.retry import call_with_retries


class _Flaky:
    def __init__(self, failures: int, result="ok"):
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise RemoteApiFailure(f"boom {self.calls}", "ga4", status_code=503)
        return self.result


def test_returns_after_two_failures_with_doubling_sleeps():
    sleeps = []
    flaky = _Flaky(failures=2, result={"rows": 3})

    result = call_with_retries(flaky, sleep=sleeps.append)

    assert result == {"rows": 3}
    assert flaky.calls == 3
    assert sleeps == [2.0, 4.0]


def test_first_success_does_not_sleep():
    sleeps = []

    assert call_with_retries(_Flaky(failures=0), sleep=sleeps.append) == "ok"
    assert sleeps == []


def test_raises_after_max_attempts_with_last_message():
    sleeps = []
    flaky = _Flaky(failures=10)

    with pytest.raises(RemoteApiFailure) as exc:
        call_with_retries(flaky, sleep=sleeps.append, platform="ga4")

    assert flaky.calls == 3
    assert sleeps == [2.0, 4.0]
    assert exc.value.message == "Failed after 3 attempts: boom 3"
    assert exc.value.platform == "ga4"
    assert exc.value.status_code == 503


def test_non_retryable_errors_propagate_immediately():
    sleeps = []
    calls = []

    def rejected():
        calls.append(1)
        raise InvalidCredentials("Invalid credentials", "ga4")

    with pytest.raises(InvalidCredentials):
        call_with_retries(rejected, sleep=sleeps.append)

    assert len(calls) == 1
    assert sleeps == []


def test_passes_arguments_through():
    def fetch(credentials, window, *, page):
        return (credentials["token"], window, page)

    assert call_with_retries(fetch, {"token": "t"}, "w", page=2, sleep=lambda s: None) == ("t", "w", 2)


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        call_with_retries(lambda: None, max_attempts=0)
