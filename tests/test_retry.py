import pytest

from bucketstore import BackOffPolicy, RateLimitedException, RetriesExhaustedException, STOP, execute_with_retry
from bucketstore.error import ApiException, is_rate_limited


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_backoff_grows_and_caps():
    policy = BackOffPolicy(initial_interval=1.0, multiplier=2.0, randomization_factor=0, max_interval=5.0)
    backoff = policy.new_backoff(FakeClock())

    assert [backoff.next_backoff() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_randomization_stays_within_bounds():
    policy = BackOffPolicy(initial_interval=2.0, randomization_factor=0.5)
    backoff = policy.new_backoff(FakeClock())

    assert 1.0 <= backoff.next_backoff() <= 3.0


def test_backoff_stops_after_max_attempts_and_resets():
    policy = BackOffPolicy(initial_interval=1.0, randomization_factor=0, max_attempts=3)
    backoff = policy.new_backoff(FakeClock())

    assert backoff.next_backoff() == 1.0
    assert backoff.next_backoff() == 1.5
    assert backoff.next_backoff() is STOP

    backoff.reset()
    assert backoff.next_backoff() == 1.0


def test_backoff_stops_after_max_elapsed_time():
    clock = FakeClock()
    backoff = BackOffPolicy(max_elapsed_time=10.0).new_backoff(clock)

    assert backoff.next_backoff() is not STOP
    clock.now = 11.0
    assert backoff.next_backoff() is STOP


@pytest.mark.parametrize("policy", [
    BackOffPolicy(initial_interval=-1),
    BackOffPolicy(multiplier=0.5),
    BackOffPolicy(randomization_factor=1.0),
    BackOffPolicy(max_attempts=0),
])
def test_invalid_policies_rejected(policy):
    with pytest.raises(ValueError):
        policy.validate()


@pytest.mark.asyncio
async def test_execute_with_retry_retries_classified_failures():
    delays = []
    calls = []

    async def sleep(delay):
        delays.append(delay)

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise RateLimitedException("slow down")
        return "created"

    result = await execute_with_retry(operation, is_rate_limited, BackOffPolicy(max_attempts=5), sleep)

    assert result == "created"
    assert len(calls) == 3
    assert len(delays) == 2


@pytest.mark.asyncio
async def test_execute_with_retry_propagates_unclassified_failures():
    async def sleep(delay):
        raise AssertionError("must not sleep")

    async def operation():
        raise ApiException("forbidden", 403, "forbidden")

    with pytest.raises(ApiException):
        await execute_with_retry(operation, is_rate_limited, BackOffPolicy(), sleep)


@pytest.mark.asyncio
async def test_execute_with_retry_exhaustion_is_terminal():
    async def sleep(delay):
        pass

    async def operation():
        raise RateLimitedException("slow down")

    with pytest.raises(RetriesExhaustedException, match="bucket create") as excinfo:
        await execute_with_retry(
            operation, is_rate_limited, BackOffPolicy(max_attempts=3), sleep, description="bucket create"
        )
    assert isinstance(excinfo.value.__cause__, RateLimitedException)
