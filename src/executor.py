"""
Retry Executor - drives a remote call under an exponential backoff schedule.

Each attempt is classified independently. Transient outcomes are retried
until the policy's budget runs out; every other outcome ends the call.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from classifier import DEFAULT_TRANSIENT_SIGNATURES, classify
from clock import AsyncioClock, Clock, wait
from outcomes import ClassifiedOutcome, RemoteCallResult

Operation = Callable[[], Awaitable[RemoteCallResult]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff configuration for one call site."""

    initial_interval: float = 0.5  # seconds
    max_interval: float = 60.0  # seconds
    multiplier: float = 1.5
    randomization_factor: float = 0.5  # ±50% jitter
    max_attempts: Optional[int] = 10  # total attempts, None = unbounded
    max_elapsed: Optional[float] = 900.0  # seconds, None = unbounded

    def __post_init__(self):
        if self.initial_interval < 0:
            raise ValueError("initial_interval must be >= 0")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if not 0 <= self.randomization_factor < 1:
            raise ValueError("randomization_factor must be in [0, 1)")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_attempts is None and self.max_elapsed is None:
            raise ValueError("max_attempts and max_elapsed cannot both be unbounded")

    def next_interval(self, interval: float) -> float:
        return min(interval * self.multiplier, self.max_interval)


DEFAULT_POLICY = BackoffPolicy()
ONBOARDING_POLICY = BackoffPolicy(max_attempts=8)
METRICS_POLICY = BackoffPolicy(max_attempts=30)
SINGLE_ATTEMPT = BackoffPolicy(max_attempts=1)

# Retry budget per call site
PRESETS: Dict[str, BackoffPolicy] = {
    "default": DEFAULT_POLICY,
    "onboarding": ONBOARDING_POLICY,
    "metrics": METRICS_POLICY,
    "single": SINGLE_ATTEMPT,
}


class RetryExecutor:
    """
    Runs an operation until it succeeds, fails permanently or exhausts
    its retry budget.

    Sleeps go through the injected clock so they only suspend the calling
    coroutine.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self.clock = clock or AsyncioClock()
        self.rng = rng or random.Random()

    def _jitter(self, interval: float, factor: float) -> float:
        if factor == 0 or interval == 0:
            return interval
        delta = factor * interval
        return self.rng.uniform(interval - delta, interval + delta)

    async def _attempt(
        self,
        operation: Operation,
        retry_on_network_error: bool,
        transient_signatures: Sequence[str],
    ) -> ClassifiedOutcome:
        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return classify(
                RemoteCallResult(),
                prior_error=e,
                retry_on_network_error=retry_on_network_error,
                transient_signatures=transient_signatures,
            )
        return classify(
            result,
            retry_on_network_error=retry_on_network_error,
            transient_signatures=transient_signatures,
        )

    async def execute(
        self,
        operation: Operation,
        policy: BackoffPolicy = DEFAULT_POLICY,
        *,
        operation_name: str = "",
        resource_id: Optional[str] = None,
        retry_on_network_error: bool = False,
        transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES,
        deadline: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> ClassifiedOutcome:
        """
        Execute an operation with retries.

        Args:
            operation: Async callable performing one remote call
            policy: Backoff schedule and retry budget
            operation_name: Name used in the outcome for diagnostics
            resource_id: Resource identifier used in the outcome
            retry_on_network_error: Retry calls that got no response at all
            transient_signatures: Substrings that mark a 400 as transient
            deadline: Overall budget in seconds from the first attempt
            stop_event: Interrupts backoff sleeps when set

        Returns:
            The outcome of the final attempt, a TIMED_OUT outcome when the
            deadline expired, or a CANCELLED outcome when stop_event was set.
        """
        start = self.clock.monotonic()
        interval = policy.initial_interval
        attempts = 0

        while True:
            attempts += 1
            outcome = (
                await self._attempt(
                    operation, retry_on_network_error, transient_signatures
                )
            ).with_context(
                operation=operation_name, resource_id=resource_id, attempts=attempts
            )

            if not outcome.retryable:
                return outcome
            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                return outcome

            delay = self._jitter(interval, policy.randomization_factor)
            elapsed = self.clock.monotonic() - start

            if policy.max_elapsed is not None and elapsed + delay > policy.max_elapsed:
                return outcome

            if deadline is not None and elapsed + delay >= deadline:
                if not await wait(self.clock, max(0.0, deadline - elapsed), stop_event):
                    return self._cancelled(outcome)
                return ClassifiedOutcome.timed_out(
                    f"deadline of {deadline}s exceeded, last error: {outcome.cause}",
                    status_code=outcome.status_code,
                    operation=operation_name,
                    resource_id=resource_id,
                    attempts=attempts,
                )

            if not await wait(self.clock, delay, stop_event):
                return self._cancelled(outcome)

            interval = policy.next_interval(interval)

    @staticmethod
    def _cancelled(last: ClassifiedOutcome) -> ClassifiedOutcome:
        return ClassifiedOutcome.cancelled(
            f"cancelled while retrying, last error: {last.cause}",
            status_code=last.status_code,
            operation=last.operation,
            resource_id=last.resource_id,
            attempts=last.attempts,
        )
