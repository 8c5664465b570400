"""Retry handling with exponential backoff and key rotation.

Each failure is translated into an ApiError and mapped to a RetryDecision:

- FAIL: not retryable, re-raised immediately.
- RETRY: wait ``base_delay * backoff_multiplier ** attempt`` and try again.
- ROTATE_AND_RETRY: advance to the next API key first, then wait and retry.

After ``max_retries + 1`` failed attempts a RetryExhaustedError wrapping the
last failure is raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from forge_cli.errors import ApiError, ForgeError, RetryExhaustedError
from forge_cli.llm.keys import KeyRotationManager
from forge_cli.logging import Loggers

if TYPE_CHECKING:
    from forge_cli.config import ForgeSettings

logger = Loggers.llm()

T = TypeVar("T")


class RetryDecision(str, Enum):
    """What to do after a failed attempt."""

    FAIL = "fail"
    RETRY = "retry"
    ROTATE_AND_RETRY = "rotate_and_retry"


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, in seconds
        backoff_multiplier: Factor applied to the delay per attempt
        max_delay: Upper bound for a single delay, in seconds
    """

    max_retries: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 60.0

    @classmethod
    def from_settings(cls, settings: "ForgeSettings") -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
            max_delay=settings.retry_max_delay,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (0-indexed)."""
        return min(self.base_delay * (self.backoff_multiplier**attempt), self.max_delay)


def decide(error: ApiError, can_rotate: bool) -> RetryDecision:
    """Map a classified failure to a retry decision.

    Args:
        error: The classified failure
        can_rotate: Whether more than one key is available

    Returns:
        The decision for this failure
    """
    if not error.retryable:
        return RetryDecision.FAIL
    if error.rotate_key and can_rotate:
        return RetryDecision.ROTATE_AND_RETRY
    return RetryDecision.RETRY


class RetryHandler:
    """Runs an async operation with retry, backoff and key rotation.

    The operation is called again from scratch on every attempt; it should
    read the current key from the rotation manager each time.

    Example:
        handler = RetryHandler(RetryPolicy(max_retries=3), keys)

        async def call():
            return await client_for(keys.current_key).generate(...)

        text = await handler.execute(call)
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        keys: KeyRotationManager | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize retry handler.

        Args:
            policy: Retry configuration (uses defaults if not provided)
            keys: Key rotation manager; without one no rotation happens
            sleep: Coroutine used for backoff waits
        """
        self.policy = policy or RetryPolicy()
        self.keys = keys
        self._sleep = sleep

    @property
    def can_rotate(self) -> bool:
        return self.keys is not None and self.keys.key_count > 1

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, float, ApiError], Awaitable[None]] | None = None,
    ) -> T:
        """Execute an operation with retry logic.

        Args:
            operation: Factory returning a fresh awaitable per attempt
            on_retry: Optional callback invoked before each wait with
                (attempt, delay, error) arguments

        Returns:
            The operation's result

        Raises:
            ApiError: If a failure is not retryable
            RetryExhaustedError: If every attempt failed
            ForgeError: Other project errors propagate unchanged
        """
        last_error: ApiError | None = None
        max_attempts = self.policy.max_attempts

        for attempt in range(max_attempts):
            try:
                return await operation()
            except ForgeError as e:
                if not isinstance(e, ApiError):
                    raise
                error = e
            except Exception as e:
                error = ApiError.from_exception(e)
                error.__cause__ = e

            last_error = error
            decision = decide(error, self.can_rotate)

            if decision is RetryDecision.FAIL:
                logger.error(
                    "request_failed_not_retryable",
                    attempt=attempt + 1,
                    error_code=error.error_code,
                    error=error.message,
                )
                raise error

            if decision is RetryDecision.ROTATE_AND_RETRY:
                assert self.keys is not None
                self.keys.rotate()

            if attempt + 1 >= max_attempts:
                break

            delay = self.policy.delay_for(attempt)
            logger.warning(
                "retrying_after_error",
                attempt=attempt + 1,
                max_retries=self.policy.max_retries,
                delay=delay,
                decision=decision.value,
                error_code=error.error_code,
                error=error.message,
            )

            if on_retry:
                await on_retry(attempt, delay, error)

            await self._sleep(delay)

        assert last_error is not None
        logger.error(
            "retry_exhausted",
            attempts=max_attempts,
            max_retries=self.policy.max_retries,
            error=last_error.message,
        )
        raise RetryExhaustedError(max_attempts, last_error) from last_error
