"""
Test Suite for Retry / Backoff Helper

Covers:
1. Exponential delay growth and capping
2. Retry exhaustion and non-retryable short-circuit
3. Error classification (kinds, status codes, message patterns)
4. Category presets
5. Parallel retries and the circuit breaker wrapper
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from utils.circuit_breaker import CircuitBreakerConfig, CircuitState
from utils.exceptions import (
    APIError,
    APITimeoutError,
    CircuitOpenError,
    ConfigurationError,
    DataValidationError,
    NetworkError,
    PairFilteredError,
    RateLimitError,
    ServerError,
)
from utils.retry_helper import (
    ExponentialBackoff,
    RetryOptions,
    calculate_delay,
    create_circuit_breaker,
    get_api_retry_options,
    is_retryable_error,
    is_transport_error,
    with_retry,
    with_retry_parallel,
)


def failing_then(successes_after: int, error: Exception, value='ok'):
    """AsyncMock failing successes_after times, then returning value"""
    return AsyncMock(side_effect=[error] * successes_after + [value])


class TestCalculateDelay:
    """Backoff growth"""

    def test_doubling_without_jitter(self):
        options = RetryOptions(base_delay_ms=100, max_delay_ms=10000, backoff_multiplier=2, jitter=False)
        assert [calculate_delay(n, options) for n in range(5)] == [100, 200, 400, 800, 1600]

    def test_capped_at_max_delay(self):
        options = RetryOptions(base_delay_ms=100, max_delay_ms=500, backoff_multiplier=2, jitter=False)
        assert [calculate_delay(n, options) for n in range(6)] == [100, 200, 400, 500, 500, 500]

    def test_jitter_stays_within_ten_percent(self):
        options = RetryOptions(base_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=True)
        for _ in range(200):
            assert 900 <= calculate_delay(0, options) <= 1100

    def test_jitter_uses_uniform_spread(self):
        options = RetryOptions(base_delay_ms=1000, jitter=True)
        with patch('utils.retry_helper.random.uniform', return_value=0.1):
            assert calculate_delay(0, options) == 1100


class TestWithRetry:
    """Retry loop behavior"""

    @pytest.mark.asyncio
    async def test_econnreset_twice_then_success(self, no_sleep):
        """Fails twice with ECONNRESET, succeeds on the third attempt"""
        operation = failing_then(2, Exception("ECONNRESET"), value='success')

        result = await with_retry(operation, RetryOptions(max_retries=3))

        assert result == 'success'
        assert operation.await_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_exhaustion_rethrows_final_error_unchanged(self, no_sleep):
        errors = [NetworkError(f"connection reset {i}") for i in range(4)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(NetworkError) as exc_info:
            await with_retry(operation, RetryOptions(max_retries=3))

        assert exc_info.value is errors[-1]
        assert operation.await_count == 4

    @pytest.mark.asyncio
    async def test_zero_retries_invokes_once(self, no_sleep):
        operation = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await with_retry(operation, RetryOptions(max_retries=0))

        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_retryable_condition_short_circuits(self, no_sleep):
        operation = AsyncMock(side_effect=NetworkError("down"))
        options = RetryOptions(max_retries=5, retry_condition=lambda e: False)

        with pytest.raises(NetworkError):
            await with_retry(operation, options)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_validation_error_is_not_retried(self, no_sleep):
        operation = AsyncMock(side_effect=DataValidationError("Invalid token format"))

        with pytest.raises(DataValidationError):
            await with_retry(operation, RetryOptions(max_retries=3))

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_sleeps_follow_backoff_schedule(self, no_sleep):
        operation = AsyncMock(side_effect=[NetworkError("x")] * 3 + ['done'])
        options = RetryOptions(max_retries=3, base_delay_ms=100, backoff_multiplier=2, jitter=False)

        await with_retry(operation, options)

        assert [c.args[0] for c in no_sleep.await_args_list] == [100, 200, 400]


class TestIsRetryableError:
    """Error classification"""

    @pytest.mark.parametrize('error', [
        NetworkError("socket closed"),
        APITimeoutError("timed out"),
        RateLimitError("slow down", status_code=429),
        ServerError("bad gateway", status_code=502),
        ConnectionResetError("reset"),
        asyncio.TimeoutError(),
        Exception("ECONNRESET"),
        Exception("Service Unavailable"),
    ])
    def test_transient_errors_are_retryable(self, error):
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize('error', [
        DataValidationError("bad amount"),
        CircuitOpenError('quote', retry_after_ms=1000),
        PairFilteredError('A$Unit$none$none', 'B$Unit$none$none'),
        APIError("bad request", status_code=400),
        Exception("insufficient liquidity for swap"),
        Exception("Invalid signature"),
        Exception("something unexpected"),
    ])
    def test_permanent_errors_are_not_retryable(self, error):
        assert is_retryable_error(error) is False

    def test_status_attribute_on_foreign_error(self):
        class HttpFailure(Exception):
            def __init__(self, status):
                super().__init__(f"HTTP {status}")
                self.status = status

        assert is_retryable_error(HttpFailure(503)) is True
        assert is_retryable_error(HttpFailure(404)) is False

    def test_non_retryable_pattern_wins_over_transport_type(self):
        assert is_retryable_error(ConnectionError("insufficient balance")) is False

    @pytest.mark.parametrize('error', [
        ServerError("Server error on SWAP: Insufficient balance for GALA", status_code=500),
        ServerError("Server error on QUOTE: No pools found", status_code=502),
        RateLimitError("Rate limited on BUNDLE: invalid signature", status_code=429),
    ])
    def test_domain_message_wins_over_retryable_status(self, error):
        assert is_retryable_error(error) is False

    @pytest.mark.asyncio
    async def test_server_error_with_domain_message_not_retried(self, no_sleep):
        operation = AsyncMock(side_effect=ServerError("insufficient balance", status_code=500))

        with pytest.raises(ServerError):
            await with_retry(operation, RetryOptions(max_retries=3))

        assert operation.await_count == 1
        no_sleep.assert_not_awaited()


class TestCategoryPresets:
    """get_api_retry_options"""

    @pytest.mark.parametrize('category,expected', [
        ('fast', (2, 500, 5000)),
        ('standard', (3, 1000, 10000)),
        ('slow', (4, 2000, 20000)),
        ('transaction', (5, 3000, 30000)),
    ])
    def test_preset_values(self, category, expected):
        options = get_api_retry_options(category)
        assert (options.max_retries, options.base_delay_ms, options.max_delay_ms) == expected

    def test_unknown_category_raises(self):
        with pytest.raises(ConfigurationError):
            get_api_retry_options('turbo')

    def test_transaction_preset_retries_transport_only(self):
        options = get_api_retry_options('transaction')
        assert options.retry_condition is is_transport_error
        assert options.retry_condition(NetworkError("reset")) is True
        assert options.retry_condition(ServerError("unavailable", status_code=503)) is True
        assert options.retry_condition(ServerError("internal", status_code=500)) is False
        assert options.retry_condition(RateLimitError("slow", status_code=429)) is False


class TestWithRetryParallel:
    """Concurrent retried operations"""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, no_sleep):
        ops = [AsyncMock(return_value=i) for i in range(3)]
        assert await with_retry_parallel(ops, RetryOptions(max_retries=1)) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_all_operations_complete_before_raising(self, no_sleep):
        failing = AsyncMock(side_effect=DataValidationError("bad"))
        slow_ok = AsyncMock(return_value='ok')

        with pytest.raises(DataValidationError):
            await with_retry_parallel([failing, slow_ok], RetryOptions(max_retries=2))

        assert slow_ok.await_count == 1

    @pytest.mark.asyncio
    async def test_each_operation_retried_independently(self, no_sleep):
        flaky = failing_then(1, NetworkError("reset"), value='a')
        steady = AsyncMock(return_value='b')

        assert await with_retry_parallel([flaky, steady], RetryOptions(max_retries=2)) == ['a', 'b']
        assert flaky.await_count == 2


class TestExponentialBackoff:
    def test_sequence_and_reset(self):
        backoff = ExponentialBackoff(base_delay_ms=100, max_delay_ms=1000, multiplier=2, jitter=False)

        assert [backoff.get_next_delay() for _ in range(5)] == [100, 200, 400, 800, 1000]
        assert backoff.current_attempt == 5

        backoff.reset()
        assert backoff.current_attempt == 0
        assert backoff.get_next_delay() == 100


class TestCreateCircuitBreaker:
    @pytest.mark.asyncio
    async def test_wrapper_opens_after_threshold(self):
        operation = AsyncMock(side_effect=NetworkError("down"))
        guarded = create_circuit_breaker(operation, CircuitBreakerConfig(failure_threshold=2), name='poll')

        for _ in range(2):
            with pytest.raises(NetworkError):
                await guarded('tx-1')

        with pytest.raises(CircuitOpenError):
            await guarded('tx-1')

        assert operation.await_count == 2
        assert guarded.breaker.state == CircuitState.OPEN
        operation.assert_awaited_with('tx-1')
