"""
Circuit breakers for the engine's HTTP collaborators.

The client scoring service and the notification webhook are wrapped so a
degraded collaborator is skipped quickly instead of adding its timeout to
every booking. Both collaborators fail open: callers catch
pybreaker.CircuitBreakerError and continue without them.

Usage:
    from shared.circuit_breaker import call_with_breaker, payment_validation_breaker

    try:
        payload = await call_with_breaker(payment_validation_breaker, fetch, email)
    except pybreaker.CircuitBreakerError:
        return PaymentDecision.allow_all(degraded=True)
"""

import asyncio
import logging
import time
from typing import Any, Callable

import pybreaker

logger = logging.getLogger(__name__)


class CircuitBreakerLogger(pybreaker.CircuitBreakerListener):
    """Log circuit breaker state changes."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        if new_state.name == pybreaker.STATE_OPEN:
            logger.warning(
                f"Circuit breaker '{cb.name}' OPENED - "
                f"skipping calls for {cb.reset_timeout}s"
            )
        elif new_state.name == pybreaker.STATE_CLOSED:
            logger.info(f"Circuit breaker '{cb.name}' CLOSED - collaborator recovered")
        else:
            logger.info(
                f"Circuit breaker '{cb.name}' state: {old_state.name} -> {new_state.name}"
            )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}
_consecutive_failures: dict[str, int] = {}
_opened_at: dict[str, float] = {}
_logger_instance = CircuitBreakerLogger()


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 30,
    exclude: list[type] | None = None,
) -> pybreaker.CircuitBreaker:
    """
    Get or create a named circuit breaker.

    Args:
        name: Unique identifier for the circuit breaker
        fail_max: Consecutive failures before opening the circuit
        reset_timeout: Seconds the circuit stays open before a trial call
        exclude: Exception types that do not count as failures

    Returns:
        CircuitBreaker instance (singleton per name)
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=exclude or [],
            listeners=[_logger_instance],
        )
        logger.info(
            f"Created circuit breaker '{name}' | "
            f"fail_max={fail_max} | reset_timeout={reset_timeout}s"
        )
    return _breakers[name]


# Client scoring service, consulted on every booking
payment_validation_breaker = get_circuit_breaker(
    name="payment_validation",
    fail_max=5,
    reset_timeout=30,
)

# Notification webhook, drained by the notification worker
notification_breaker = get_circuit_breaker(
    name="notification_webhook",
    fail_max=5,
    reset_timeout=60,
)


def _open(breaker: pybreaker.CircuitBreaker) -> None:
    _opened_at[breaker.name] = time.monotonic()
    breaker.open()


def _record_failure(breaker: pybreaker.CircuitBreaker, exc: Exception) -> None:
    failures = _consecutive_failures.get(breaker.name, 0) + 1
    _consecutive_failures[breaker.name] = failures
    logger.warning(
        f"Circuit breaker '{breaker.name}' recorded failure {failures}/{breaker.fail_max}: "
        f"{type(exc).__name__}: {exc}"
    )
    if breaker.current_state == pybreaker.STATE_HALF_OPEN or failures >= breaker.fail_max:
        _open(breaker)


def _record_success(breaker: pybreaker.CircuitBreaker) -> None:
    _consecutive_failures.pop(breaker.name, None)
    if breaker.current_state != pybreaker.STATE_CLOSED:
        _opened_at.pop(breaker.name, None)
        breaker.close()


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable,
    *args,
    **kwargs,
) -> Any:
    """
    Await func under the breaker.

    pybreaker's call_async() requires Tornado, so the state machine is driven
    here: consecutive failures open the circuit, and once reset_timeout has
    elapsed one trial call runs half-open and either closes or reopens it.
    A call cancelled by an enclosing timeout counts as a failure.

    Raises:
        pybreaker.CircuitBreakerError: If circuit is open
        Exception: Any exception raised by func
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        opened_at = _opened_at.get(breaker.name, 0.0)
        if time.monotonic() - opened_at < breaker.reset_timeout:
            logger.debug(f"Circuit breaker '{breaker.name}' is OPEN, failing fast")
            raise pybreaker.CircuitBreakerError(f"Circuit breaker '{breaker.name}' is open")
        breaker.half_open()

    try:
        result = await func(*args, **kwargs)
    except pybreaker.CircuitBreakerError:
        raise
    except asyncio.CancelledError:
        # asyncio.timeout() around the call lands here, not as TimeoutError
        _record_failure(breaker, TimeoutError("call cancelled before completing"))
        raise
    except Exception as e:
        if breaker.is_system_error(e):
            _record_failure(breaker, e)
        raise

    _record_success(breaker)
    return result


def reset_breakers() -> None:
    """Close every breaker and forget failure history."""
    _consecutive_failures.clear()
    _opened_at.clear()
    for breaker in _breakers.values():
        if breaker.current_state != pybreaker.STATE_CLOSED:
            breaker.close()


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """Status of all circuit breakers for health checks."""
    return {
        name: {
            "state": breaker.current_state,
            "consecutive_failures": _consecutive_failures.get(name, 0),
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }
