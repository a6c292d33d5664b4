# src/waypoint/engine/retry.py
"""RetryManager: retry logic for work unit calls with tenacity.

Provides:
- Exponential backoff with jitter
- Configurable max attempts
- Retryable error filtering (only UnitProcessingError.retryable by default)
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from waypoint.contracts.errors import UnitProcessingError

if TYPE_CHECKING:
    from waypoint.core.config import RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


def is_retryable_unit_error(error: BaseException) -> bool:
    """Default retry filter: transient UnitProcessingErrors only."""
    return isinstance(error, UnitProcessingError) and error.retryable


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def immediate(cls, max_attempts: int) -> "RetryConfig":
        """Factory for retries without backoff delay (tests, local providers)."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        """Factory from RetrySettings config model."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=1.0,  # Fixed jitter, not exposed in settings
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs an operation with retries.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))

        result = manager.execute_with_retry(
            operation=lambda: processor.process(unit, context),
            is_retryable=is_retryable_unit_error,
            on_retry=lambda attempt, error: logger.warning("unit_retry", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool] = is_retryable_unit_error,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Optional callback on retry (attempt, error)

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        attempt = 0
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._config.base_delay,
                    max=self._config.max_delay,
                    exp_base=self._config.exponential_base,
                    jitter=self._config.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                reraise=False,  # RetryError is converted to MaxRetriesExceeded below
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        # Only report attempts that will actually be retried
                        if is_retryable(e) and on_retry and attempt < self._config.max_attempts:
                            on_retry(attempt, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
