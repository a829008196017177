import pytest

from infinite_heroes.common import (
    CancelToken,
    CredentialError,
    NetworkError,
    OperationCancelledError,
    RetryPolicy,
    retry_with_backoff,
)

NO_WAIT = RetryPolicy(max_retries=3, initial_delay=0.0, max_delay=0.0)


class Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


def test_delay_grows_exponentially_and_is_capped():
    policy = RetryPolicy(initial_delay=1.0, factor=2.0, max_delay=5.0)

    assert [policy.delay_for(attempt) for attempt in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_policy_from_mapping():
    policy = RetryPolicy.from_mapping({"max_retries": 5, "initial_delay": "0.5"})

    assert policy.max_retries == 5
    assert policy.initial_delay == 0.5
    assert policy.max_delay == RetryPolicy().max_delay


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    operation = Flaky([NetworkError("blip"), ConnectionError("reset")])
    retries = []

    result = await retry_with_backoff(
        operation,
        policy=NO_WAIT,
        token=CancelToken(),
        on_retry=lambda attempt, error, delay: retries.append((attempt, type(error).__name__)),
    )

    assert result == "ok"
    assert operation.calls == 3
    assert retries == [(1, "NetworkError"), (2, "NetworkError")]


@pytest.mark.asyncio
async def test_credential_errors_are_never_retried():
    operation = Flaky([CredentialError("API_KEY_INVALID")])

    with pytest.raises(CredentialError):
        await retry_with_backoff(operation, policy=NO_WAIT, token=CancelToken())
    assert operation.calls == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    operation = Flaky([NetworkError("down")] * 10)

    with pytest.raises(NetworkError):
        await retry_with_backoff(operation, policy=NO_WAIT, token=CancelToken())
    assert operation.calls == NO_WAIT.max_retries + 1


@pytest.mark.asyncio
async def test_cancelled_token_stops_retrying():
    token = CancelToken()
    token.cancel()
    operation = Flaky([])

    with pytest.raises(OperationCancelledError):
        await retry_with_backoff(operation, policy=NO_WAIT, token=token)
    assert operation.calls == 0
