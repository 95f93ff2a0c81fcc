"""
Circuit Breaker - Per-Operation Fault Isolation

States:
    CLOSED     normal operation, failures are counted
    OPEN       every call is rejected with CircuitOpenError, nothing is invoked
    HALF_OPEN  a single trial call is let through after reset_timeout_ms

Transitions:
    CLOSED -> OPEN        failure_count >= failure_threshold
    OPEN -> HALF_OPEN     reset_timeout_ms elapsed since opening
    HALF_OPEN -> CLOSED   trial call succeeds (failure count reset)
    HALF_OPEN -> OPEN     trial call fails (timer restarts)

Failures further apart than monitor_window_ms do not accumulate: the count
restarts at 1 when the previous failure is older than the window. A success
while CLOSED also clears the count, so the threshold counts consecutive
failures.

Only dependency failures are counted: by default errors classified as
transport, rate-limited or server. Anything else (validation answers such as
"insufficient liquidity", filtered pairs) propagates unchanged and counts as
a healthy response.
"""

import math
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from config.constants import CIRCUIT_BREAKER_PRESETS
from utils.exceptions import CircuitOpenError, ConfigurationError, ErrorKind, classify_error
from utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar('T')

_DEPENDENCY_FAILURE_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.RATE_LIMITED, ErrorKind.SERVER})


def is_dependency_failure(error: BaseException) -> bool:
    return classify_error(error) in _DEPENDENCY_FAILURE_KINDS


class CircuitState(str, Enum):
    CLOSED = 'CLOSED'
    OPEN = 'OPEN'
    HALF_OPEN = 'HALF_OPEN'


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=30000, gt=0)
    monitor_window_ms: int = Field(default=60000, gt=0)


class CircuitBreaker:
    """
    Circuit breaker around async operations.

    Usage:
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3), name='quote')
        result = await breaker.call(lambda: client.fetch_quote(...))
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        name: str = 'default',
        clock: Callable[[], float] = time.monotonic,
        failure_predicate: Callable[[BaseException], bool] = is_dependency_failure
    ):
        self.config = config
        self.name = name
        self._clock = clock
        self._is_failure = failure_predicate

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.opened_at: Optional[float] = None
        self._trial_in_flight = False

        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0

    def _retry_after_ms(self, now: float) -> int:
        if self.opened_at is None:
            return 0
        remaining = self.opened_at + self.config.reset_timeout_ms / 1000.0 - now
        return max(0, math.ceil(remaining * 1000))

    def _admit(self) -> bool:
        """
        Decide whether a call may run, moving OPEN -> HALF_OPEN when due.

        Returns True when the admitted call is the HALF_OPEN trial call.
        """
        now = self._clock()

        if self.state == CircuitState.OPEN:
            if self._retry_after_ms(now) > 0:
                self.total_rejections += 1
                raise CircuitOpenError(self.name, retry_after_ms=self._retry_after_ms(now))
            self._transition(CircuitState.HALF_OPEN)

        if self.state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self.total_rejections += 1
                raise CircuitOpenError(self.name, retry_after_ms=0)
            self._trial_in_flight = True
            return True

        return False

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation through the breaker.

        Raises:
            CircuitOpenError: If the circuit is OPEN (operation not invoked)
        """
        is_trial = self._admit()
        self.total_calls += 1
        try:
            result = await operation()
        except BaseException as e:
            if is_trial:
                self._trial_in_flight = False
            if not isinstance(e, Exception):
                raise
            if self._is_failure(e):
                self.record_failure()
            else:
                self.record_success()
            raise
        if is_trial:
            self._trial_in_flight = False
        self.record_success()
        return result

    execute = call

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED)
        self.failure_count = 0

    def record_failure(self) -> None:
        now = self._clock()
        self.total_failures += 1

        if self.state == CircuitState.HALF_OPEN:
            self.last_failure_time = now
            self._transition(CircuitState.OPEN)
            return

        window_sec = self.config.monitor_window_ms / 1000.0
        if self.last_failure_time is not None and now - self.last_failure_time > window_sec:
            self.failure_count = 0

        self.failure_count += 1
        self.last_failure_time = now

        if self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        self.state = new_state

        if new_state == CircuitState.OPEN:
            self.opened_at = self._clock()
            logger.warning(
                f"[CIRCUIT] {self.name}: {old_state.value} -> OPEN "
                f"({self.failure_count} failures, cooldown {self.config.reset_timeout_ms}ms)"
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"[CIRCUIT] {self.name}: OPEN -> HALF_OPEN, allowing trial call")
        else:
            self.opened_at = None
            self.failure_count = 0
            logger.info(f"[CIRCUIT] {self.name}: {old_state.value} -> CLOSED")

    def can_execute(self) -> bool:
        """Non-mutating check: would a call be admitted right now?"""
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.HALF_OPEN:
            return not self._trial_in_flight
        return self._retry_after_ms(self._clock()) == 0

    def get_status(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            'name': self.name,
            'state': self.state.value,
            'failure_count': self.failure_count,
            'failure_threshold': self.config.failure_threshold,
            'retry_after_ms': self._retry_after_ms(now) if self.state == CircuitState.OPEN else 0,
            'total_calls': self.total_calls,
            'total_failures': self.total_failures,
            'total_rejections': self.total_rejections,
        }

    def force_state(self, state: CircuitState) -> None:
        """Manual override (e.g. operator kill-switch)"""
        logger.warning(f"[CIRCUIT] {self.name}: forced to {state.value}")
        self._trial_in_flight = False
        self._transition(state)

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        self.opened_at = None
        self._trial_in_flight = False


def preset_config(name: str) -> CircuitBreakerConfig:
    """Preset breaker parameters for a known operation name"""
    try:
        threshold, reset_ms, window_ms = CIRCUIT_BREAKER_PRESETS[name]
    except KeyError:
        raise ConfigurationError(
            f"No circuit breaker preset named '{name}'",
            error_code='UNKNOWN_BREAKER_PRESET',
            details={'available': sorted(CIRCUIT_BREAKER_PRESETS)}
        )
    return CircuitBreakerConfig(
        failure_threshold=threshold,
        reset_timeout_ms=reset_ms,
        monitor_window_ms=window_ms
    )


class CircuitBreakerManager:
    """
    Registry of breakers keyed by logical operation name.

    get_or_create() uses, in order: an explicit config, the named preset,
    then the manager's default config.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        self._breakers[breaker.name] = breaker
        return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def get_or_create(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None
    ) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is not None:
            return breaker

        if config is None:
            config = preset_config(name) if name in CIRCUIT_BREAKER_PRESETS else self.default_config
        return self.register(CircuitBreaker(config, name=name, clock=self._clock))

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def get_health_summary(self) -> Dict[str, Any]:
        """
        Aggregate breaker states.

        healthy: no breaker OPEN
        degraded: any breaker OPEN or HALF_OPEN
        critical: at least half of the breakers OPEN
        """
        states = [b.state for b in self._breakers.values()]
        total = len(states)
        half_open = states.count(CircuitState.HALF_OPEN)
        open_count = states.count(CircuitState.OPEN)

        return {
            'total': total,
            'closed': total - open_count - half_open,
            'half_open': half_open,
            'open': open_count,
            'healthy': open_count == 0,
            'degraded': half_open > 0 or open_count > 0,
            'critical': total > 0 and open_count >= total / 2,
        }

    def dispose(self) -> None:
        self._breakers.clear()
