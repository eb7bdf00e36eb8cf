"""
Long-Running-Operation Poller.

Turns a remote operation that answers "accepted, still running" into a
wait-until-terminal-state call. The caller supplies a status check that
returns the raw result plus the state label it found in the response.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional, Sequence

from classifier import DEFAULT_TRANSIENT_SIGNATURES, classify
from clock import AsyncioClock, Clock, wait
from outcomes import ClassifiedOutcome, RemoteCallResult

UNKNOWN_LABEL_POLICIES = ("fail", "pending")


@dataclass(frozen=True)
class PollObservation:
    """Result of one status check."""

    result: RemoteCallResult
    label: Optional[str] = None


StatusCheck = Callable[[], Awaitable[PollObservation]]


@dataclass(frozen=True)
class PollSpec:
    """Configuration for one long-running operation wait."""

    pending: FrozenSet[str]
    target: FrozenSet[str]
    poll_interval: float = 3.0  # seconds between checks
    min_poll_interval: float = 3.0  # floor for poll_interval
    initial_delay: float = 10.0  # seconds before the first check
    timeout: float = 1200.0  # seconds from poll start
    in_progress_status_codes: FrozenSet[int] = field(
        default_factory=lambda: frozenset({202})
    )
    unknown_label_policy: str = "fail"

    def __post_init__(self):
        object.__setattr__(self, "pending", frozenset(self.pending))
        object.__setattr__(self, "target", frozenset(self.target))
        object.__setattr__(
            self, "in_progress_status_codes", frozenset(self.in_progress_status_codes)
        )
        if not self.target:
            raise ValueError("target labels cannot be empty")
        overlap = self.pending & self.target
        if overlap:
            raise ValueError(
                f"pending and target labels must be disjoint, both contain: "
                f"{', '.join(sorted(overlap))}"
            )
        if self.unknown_label_policy not in UNKNOWN_LABEL_POLICIES:
            raise ValueError(
                f"unknown_label_policy must be one of {UNKNOWN_LABEL_POLICIES}"
            )
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if min(self.poll_interval, self.min_poll_interval, self.initial_delay) < 0:
            raise ValueError("poll delays must be >= 0")

    @property
    def cadence(self) -> float:
        """Effective delay between consecutive checks."""
        return max(self.poll_interval, self.min_poll_interval)


PURGE_POLL_SPEC = PollSpec(
    pending=frozenset({"PURGING"}),
    target=frozenset({"SUCCESS"}),
    poll_interval=3.0,
    min_poll_interval=3.0,
    initial_delay=10.0,
    timeout=1200.0,
)


class Poller:
    """Polls a status check on a fixed cadence until a terminal state."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or AsyncioClock()

    async def _observe(self, check: StatusCheck) -> PollObservation:
        try:
            return await check()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return PollObservation(RemoteCallResult(error_message=str(e)))

    async def poll(
        self,
        check: StatusCheck,
        spec: PollSpec,
        *,
        operation_name: str = "",
        resource_id: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
        transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES,
    ) -> ClassifiedOutcome:
        """
        Wait for a long-running operation to reach a target label.

        Returns:
            SUCCESS with the target label as payload, TIMED_OUT when
            spec.timeout elapsed first, CANCELLED when stop_event was set,
            or the failing outcome of the check.
        """
        context = {"operation": operation_name, "resource_id": resource_id}
        deadline = self.clock.monotonic() + spec.timeout
        delay = spec.initial_delay
        checks = 0
        last_label: Optional[str] = None
        last_status: Optional[int] = None

        while True:
            remaining = deadline - self.clock.monotonic()
            if delay >= remaining:
                if not await wait(self.clock, max(0.0, remaining), stop_event):
                    return ClassifiedOutcome.cancelled(attempts=checks, **context)
                return ClassifiedOutcome.timed_out(
                    f"timeout while waiting for state to become "
                    f"{_labels(spec.target)} (last state: {last_label!r}, "
                    f"timeout: {spec.timeout}s)",
                    status_code=last_status,
                    attempts=checks,
                    **context,
                )

            if not await wait(self.clock, delay, stop_event):
                return ClassifiedOutcome.cancelled(attempts=checks, **context)
            delay = spec.cadence

            observation = await self._observe(check)
            checks += 1
            result = observation.result
            last_status = result.status_code

            if (
                observation.label is None
                and result.status_code in spec.in_progress_status_codes
            ):
                continue

            outcome = classify(result, transient_signatures=transient_signatures)
            if outcome.retryable:
                continue
            if not outcome.ok:
                return outcome.with_context(attempts=checks, **context)

            label = observation.label
            last_label = label
            if label in spec.target:
                return ClassifiedOutcome.success(
                    label,
                    status_code=result.status_code,
                    headers=dict(result.headers),
                    attempts=checks,
                    **context,
                )
            if label in spec.pending:
                continue
            if spec.unknown_label_policy == "pending":
                continue
            return ClassifiedOutcome.permanent(
                f"unexpected status label {label!r}, expected one of "
                f"{_labels(spec.pending | spec.target)}",
                status_code=result.status_code,
                attempts=checks,
                **context,
            )


def _labels(labels: FrozenSet[str]) -> str:
    return "[" + ", ".join(sorted(labels)) + "]"
