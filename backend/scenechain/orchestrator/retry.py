"""Bounded retry with exponential backoff for collaborator calls.

Wraps tenacity's AsyncRetrying with the pipeline's error taxonomy:
raw failures are classified before the retry decision, validation and
authentication errors are never retried, and each attempt emits an
AttemptOutcome event for observability.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from scenechain.config import RetryPolicyConfig
from scenechain.orchestrator.errors import (
    NEVER_RETRY_KINDS,
    PipelineCancelled,
    PipelineError,
    classify_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _default_is_retryable(error: PipelineError) -> bool:
    return error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for one collaborator.

    Delay before attempt n+1 is min(base_delay * backoff_multiplier^(n-1),
    max_delay), scaled by a uniform jitter factor in [1, 1 + jitter].
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.3
    is_retryable: Callable[[PipelineError], bool] = field(
        default=_default_is_retryable, compare=False
    )

    @classmethod
    def from_config(cls, cfg: RetryPolicyConfig, **overrides: Any) -> "RetryPolicy":
        values = cfg.model_dump()
        values.update(overrides)
        return cls(**values)

    def delay_for(
        self,
        attempt: int,
        retry_after: Optional[float] = None,
        rand: float = 0.0,
    ) -> float:
        """Sleep before retrying after the given (1-based) failed attempt."""
        delay = min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)
        delay *= 1.0 + rand * self.jitter
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.max_delay))
        return delay


DEFAULT_POLICY = RetryPolicy()


@dataclass(frozen=True)
class AttemptOutcome:
    """Outcome of one attempt, emitted to the on_attempt callback."""

    context: dict
    attempt: int
    max_attempts: int
    succeeded: bool
    error_kind: Optional[str] = None
    error: Optional[str] = None
    will_retry: bool = False
    delay: Optional[float] = None


class CancellationToken:
    """Cooperative cancellation flag checked at suspension points."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, context: Optional[dict] = None) -> None:
        if self._cancelled:
            raise PipelineCancelled(context=context)


class RetryExecutor:
    """Run async operations under a RetryPolicy.

    Args:
        on_attempt: Optional callback receiving an AttemptOutcome per try
        sleep: Async sleep function (injectable for tests)
        rng: Random source for jitter
    """

    def __init__(
        self,
        on_attempt: Optional[Callable[[AttemptOutcome], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._on_attempt = on_attempt
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _emit(self, outcome: AttemptOutcome) -> None:
        if outcome.succeeded:
            if outcome.attempt > 1:
                logger.info(
                    f"Operation succeeded after retry (attempt {outcome.attempt}/"
                    f"{outcome.max_attempts}) {outcome.context}"
                )
        elif outcome.will_retry:
            logger.warning(
                f"Operation failed (attempt {outcome.attempt}/{outcome.max_attempts}, "
                f"{outcome.error_kind}), retrying in {outcome.delay:.2f}s: {outcome.error} "
                f"{outcome.context}"
            )
        else:
            logger.error(
                f"Operation failed (attempt {outcome.attempt}/{outcome.max_attempts}, "
                f"{outcome.error_kind}), giving up: {outcome.error} {outcome.context}"
            )
        if self._on_attempt is not None:
            self._on_attempt(outcome)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        context: Optional[dict] = None,
        token: Optional[CancellationToken] = None,
    ) -> T:
        """Invoke operation until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine function
            policy: Retry policy (defaults to 3 attempts, 1s base, x2, 30s cap)
            context: Context attached to classified errors and events
            token: Optional cancellation token checked before each attempt

        Returns:
            The operation's result

        Raises:
            PipelineError: The last classified error once retries stop
        """
        policy = policy or DEFAULT_POLICY
        ctx = dict(context or {})

        def should_retry(exc: BaseException) -> bool:
            if not isinstance(exc, PipelineError) or isinstance(exc, PipelineCancelled):
                return False
            if exc.kind in NEVER_RETRY_KINDS:
                return False
            return bool(policy.is_retryable(exc))

        def wait(retry_state: RetryCallState) -> float:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            return policy.delay_for(
                retry_state.attempt_number,
                retry_after=getattr(exc, "retry_after", None),
                rand=self._rng.random(),
            )

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            self._emit(AttemptOutcome(
                context=ctx,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                succeeded=False,
                error_kind=exc.kind.value,
                error=str(exc),
                will_retry=True,
                delay=retry_state.next_action.sleep,
            ))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if token is not None:
                    token.raise_if_cancelled(ctx)
                try:
                    result = await operation()
                except Exception as exc:
                    error = classify_error(exc, ctx)
                    error.context["attempts"] = attempt_number
                    if not (should_retry(error) and attempt_number < policy.max_attempts):
                        self._emit(AttemptOutcome(
                            context=ctx,
                            attempt=attempt_number,
                            max_attempts=policy.max_attempts,
                            succeeded=False,
                            error_kind=error.kind.value,
                            error=str(error),
                        ))
                    if error is exc:
                        raise
                    raise error from exc
                self._emit(AttemptOutcome(
                    context=ctx,
                    attempt=attempt_number,
                    max_attempts=policy.max_attempts,
                    succeeded=True,
                ))
        return result
