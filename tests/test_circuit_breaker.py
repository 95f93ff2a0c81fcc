"""
Test Suite for Circuit Breaker

Covers:
1. CLOSED -> OPEN after consecutive failures
2. Rejection without invoking the operation while OPEN
3. HALF_OPEN single trial call and its outcomes
4. Monitor window expiry
5. Manager presets and health summary
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitState,
    preset_config,
)
from utils.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ErrorKind,
    InsufficientLiquidityError,
    NetworkError,
    ServerError,
)


async def fail(breaker, times=1):
    for _ in range(times):
        with pytest.raises(NetworkError):
            await breaker.call(AsyncMock(side_effect=NetworkError("down")))


@pytest.fixture
def breaker(fake_clock):
    return CircuitBreaker(
        CircuitBreakerConfig(failure_threshold=2, reset_timeout_ms=1000, monitor_window_ms=5000),
        name='quote',
        clock=fake_clock
    )


class TestOpening:
    """Failure threshold"""

    @pytest.mark.asyncio
    async def test_two_failures_open_circuit(self, breaker):
        await fail(breaker, 2)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_invoking(self, breaker):
        await fail(breaker, 2)
        operation = AsyncMock(return_value='never')

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(operation)

        operation.assert_not_awaited()
        assert exc_info.value.kind == ErrorKind.CIRCUIT_OPEN
        assert exc_info.value.breaker_name == 'quote'
        assert 0 < exc_info.value.retry_after_ms <= 1000
        assert breaker.total_rejections == 1

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_count(self, breaker):
        await fail(breaker, 1)
        await breaker.call(AsyncMock(return_value='ok'))
        await fail(breaker, 1)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1


class TestFailureClassification:
    """Only dependency failures count toward the threshold"""

    @pytest.mark.asyncio
    async def test_validation_answers_never_open(self, breaker):
        for _ in range(5):
            with pytest.raises(InsufficientLiquidityError):
                await breaker.call(AsyncMock(side_effect=InsufficientLiquidityError("no pools found")))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.total_failures == 0

    @pytest.mark.asyncio
    async def test_validation_answer_breaks_failure_streak(self, breaker):
        await fail(breaker, 1)
        with pytest.raises(InsufficientLiquidityError):
            await breaker.call(AsyncMock(side_effect=InsufficientLiquidityError("no pools found")))
        await fail(breaker, 1)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_server_errors_count(self, breaker):
        for _ in range(2):
            with pytest.raises(ServerError):
                await breaker.call(AsyncMock(side_effect=ServerError("internal", status_code=500)))

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_custom_predicate(self, fake_clock):
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=1),
            name='strict',
            clock=fake_clock,
            failure_predicate=lambda error: True
        )
        with pytest.raises(ValueError):
            await breaker.call(AsyncMock(side_effect=ValueError("bad")))

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_failures_outside_monitor_window_do_not_accumulate(self, breaker, fake_clock):
        await fail(breaker, 1)
        fake_clock.advance(6)
        await fail(breaker, 1)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_result_passes_through(self, breaker):
        assert await breaker.call(AsyncMock(return_value=42)) == 42
        assert breaker.total_calls == 1


class TestHalfOpen:
    """Recovery probing after reset_timeout_ms"""

    @pytest.mark.asyncio
    async def test_trial_call_attempted_after_timeout(self, breaker, fake_clock):
        await fail(breaker, 2)
        fake_clock.advance_ms(1000)

        operation = AsyncMock(return_value='recovered')
        assert await breaker.call(operation) == 'recovered'
        operation.assert_awaited_once()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_trial_call_reopens(self, breaker, fake_clock):
        await fail(breaker, 2)
        fake_clock.advance_ms(1000)

        await fail(breaker, 1)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(AsyncMock())
        assert exc_info.value.retry_after_ms == 1000

    @pytest.mark.asyncio
    async def test_only_one_trial_call_in_flight(self, breaker, fake_clock):
        await fail(breaker, 2)
        fake_clock.advance_ms(1000)

        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return 'trial'

        trial_task = asyncio.create_task(breaker.call(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        concurrent = AsyncMock()
        with pytest.raises(CircuitOpenError):
            await breaker.call(concurrent)
        concurrent.assert_not_awaited()

        release.set()
        assert await trial_task == 'trial'
        assert breaker.state == CircuitState.CLOSED


class TestInspection:
    @pytest.mark.asyncio
    async def test_can_execute_is_non_mutating(self, breaker, fake_clock):
        await fail(breaker, 2)
        assert breaker.can_execute() is False

        fake_clock.advance_ms(1000)
        assert breaker.can_execute() is True
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_status_snapshot(self, breaker):
        await fail(breaker, 2)
        status = breaker.get_status()
        assert status['name'] == 'quote'
        assert status['state'] == 'OPEN'
        assert status['total_failures'] == 2
        assert status['retry_after_ms'] == 1000

    @pytest.mark.asyncio
    async def test_force_state_and_reset(self, breaker):
        breaker.force_state(CircuitState.OPEN)
        assert breaker.can_execute() is False

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_execute() is True


class TestCircuitBreakerManager:
    """Registry keyed by operation name"""

    def test_presets_applied_by_name(self):
        manager = CircuitBreakerManager()
        assert manager.get_or_create('swap').config == preset_config('swap')
        assert manager.get_or_create('swap').config.failure_threshold == 2

    def test_unknown_name_uses_default(self):
        default = CircuitBreakerConfig(failure_threshold=9)
        manager = CircuitBreakerManager(default)
        assert manager.get_or_create('custom').config.failure_threshold == 9

    def test_same_name_same_instance(self):
        manager = CircuitBreakerManager()
        assert manager.get_or_create('quote') is manager.get_or_create('quote')

    def test_unknown_preset_raises(self):
        with pytest.raises(ConfigurationError):
            preset_config('nonexistent')

    def test_health_summary(self):
        manager = CircuitBreakerManager()
        manager.get_or_create('quote')
        manager.get_or_create('swap').force_state(CircuitState.OPEN)

        summary = manager.get_health_summary()
        assert summary['total'] == 2
        assert summary['open'] == 1
        assert summary['healthy'] is False
        assert summary['degraded'] is True
        assert summary['critical'] is True

    def test_empty_manager_is_healthy(self):
        summary = CircuitBreakerManager().get_health_summary()
        assert summary['healthy'] is True
        assert summary['critical'] is False

    def test_reset_all_and_dispose(self):
        manager = CircuitBreakerManager()
        manager.get_or_create('quote').force_state(CircuitState.OPEN)
        manager.reset_all()
        assert manager.get('quote').state == CircuitState.CLOSED

        manager.dispose()
        assert manager.get('quote') is None
