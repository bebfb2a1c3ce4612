from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from resgrid.shared.core.exceptions import TransportError
from resgrid.shared.core.retry import RetryPolicy, call_with_retry, is_retryable


@pytest.mark.asyncio
async def test_backoff_delays_double_and_cap():
    func = AsyncMock(side_effect=TransportError("reset", code="network_error"))
    sleep = AsyncMock()
    policy = RetryPolicy(retries=5, backoff_base=1.0, backoff_max=10.0)

    with pytest.raises(TransportError):
        await call_with_retry(func, policy, operation="load_page", sleep=sleep)

    assert policy.attempts == 6
    assert func.await_count == 6
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_policy_rejects_bad_values():
    with pytest.raises(ValueError):
        RetryPolicy(retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_base=5.0, backoff_max=1.0)


def test_policy_from_settings():
    settings = MagicMock(
        PAGE_LOAD_RETRIES=4,
        PAGE_LOAD_BACKOFF_BASE_SECONDS=0.5,
        PAGE_LOAD_BACKOFF_MAX_SECONDS=3.0,
    )

    policy = RetryPolicy.from_settings(settings)

    assert policy == RetryPolicy(retries=4, backoff_base=0.5, backoff_max=3.0)


def test_is_retryable_only_for_transient_transport_errors():
    assert is_retryable(TransportError("x", code="network_error"))
    assert is_retryable(TransportError("x", code="http_error", upstream_status=503))
    assert not is_retryable(TransportError("x", code="http_error", upstream_status=403))
    assert not is_retryable(ValueError("x"))


@pytest.mark.asyncio
async def test_call_with_retry_succeeds_after_retries():
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise TransportError("reset", code="network_error")
        return "ok"

    sleep = AsyncMock()
    result = await call_with_retry(flaky, RetryPolicy(retries=2), operation="load_page", sleep=sleep)

    assert result == "ok"
    assert attempts == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_call_with_retry_raises_after_exhaustion():
    func = AsyncMock(side_effect=TransportError("down", code="http_error", upstream_status=502))
    sleep = AsyncMock()

    with patch("resgrid.shared.core.retry.logger") as mock_logger:
        with pytest.raises(TransportError, match="down"):
            await call_with_retry(func, RetryPolicy(retries=2), operation="load_page", sleep=sleep)

    assert func.await_count == 3
    assert sleep.await_count == 2
    mock_logger.error.assert_called_once()
    assert mock_logger.error.call_args.args[0] == "operation_failed_all_retries_exhausted"


@pytest.mark.asyncio
async def test_call_with_retry_does_not_retry_client_errors():
    func = AsyncMock(side_effect=TransportError("forbidden", code="http_error", upstream_status=403))
    sleep = AsyncMock()

    with pytest.raises(TransportError):
        await call_with_retry(func, RetryPolicy(retries=3), operation="load_page", sleep=sleep)

    assert func.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_call_with_retry_propagates_non_transport_errors_immediately():
    func = AsyncMock(side_effect=KeyError("bug"))

    with pytest.raises(KeyError):
        await call_with_retry(func, RetryPolicy(retries=3), operation="load_page", sleep=AsyncMock())

    assert func.await_count == 1


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt():
    func = AsyncMock(side_effect=TransportError("reset", code="network_error"))

    with pytest.raises(TransportError):
        await call_with_retry(func, RetryPolicy(retries=0), operation="load_page", sleep=AsyncMock())

    assert func.await_count == 1
