import pytest

from conftest import FakeClock
from provisioning.errors import IssuanceDeadlineExceeded
from provisioning.retry import Deadline, RetryPolicy, poll


def test_poll_succeeds_without_sleeping_after_success():
    clock = FakeClock()
    results = iter([False, True])

    assert poll(lambda: next(results), RetryPolicy(attempts=3, delay=2), clock)
    assert clock.sleeps == [2]


def test_poll_exhausts_budget_without_trailing_sleep():
    clock = FakeClock()
    calls = []

    def check():
        calls.append(1)
        return False

    assert not poll(check, RetryPolicy(attempts=4, delay=1.5), clock)
    assert len(calls) == 4
    assert clock.sleeps == [1.5, 1.5, 1.5]


def test_poll_treats_listed_exceptions_as_failed_attempts():
    clock = FakeClock()
    outcomes = iter([ConnectionError("down"), True])

    def check():
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert poll(check, RetryPolicy(attempts=2, delay=1), clock, retry_on=(ConnectionError,))


def test_poll_propagates_unlisted_exceptions():
    def check():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        poll(check, RetryPolicy(attempts=3, delay=1), FakeClock())


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(attempts=5, delay=1, backoff=2, max_delay=5)
    assert [policy.delay_after(n) for n in range(1, 5)] == [1, 2, 4, 5]


@pytest.mark.parametrize(
    "kwargs", [{"attempts": 0}, {"delay": -1}, {"backoff": 0.5}]
)
def test_retry_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_deadline_stops_polling():
    clock = FakeClock()
    deadline = Deadline(clock, 3)

    with pytest.raises(IssuanceDeadlineExceeded):
        poll(lambda: False, RetryPolicy(attempts=10, delay=2), clock, deadline=deadline)
    # Never sleeps past the deadline
    assert sum(clock.sleeps) == 3


def test_deadline_without_limit_never_expires():
    clock = FakeClock()
    deadline = Deadline(clock, None)
    clock.sleep(10_000)

    assert deadline.remaining() is None
    assert not deadline.expired()
    deadline.check("anything")
