"""
Resource Reconciler - idempotent Create/Read/Update/Delete for one resource.

Drives a ResourceAdapter through the Retry Executor, the State Differ and
the Long-Running-Operation Poller. Every operation returns a
ReconcileResult; the reconciler never raises for remote failures and never
logs, leaving reporting to its caller.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from classifier import parse_payload
from differ import Patch, diff
from executor import PRESETS, SINGLE_ATTEMPT, BackoffPolicy, RetryExecutor
from outcomes import ClassifiedOutcome, OutcomeKind, RemoteCallResult
from poller import PURGE_POLL_SPEC, PollObservation, Poller, PollSpec
from resources.base import RequestSpec, ResourceAdapter


class RemoteCaller(Protocol):
    """Transport used by the reconciler."""

    async def call(
        self, method: str, path: str, body: Any = None
    ) -> RemoteCallResult: ...


@dataclass
class ReconcileResult:
    """Result of one reconciliation operation."""

    success: bool = False
    action: str = ""
    identifier: Optional[str] = None
    state: Any = None
    outcome: Optional[ClassifiedOutcome] = None
    changed_fields: List[str] = field(default_factory=list)
    patch: Optional[Patch] = None

    @property
    def message(self) -> str:
        if self.success:
            return self.action
        return str(self.outcome) if self.outcome else "reconciliation failed"


class IdentifierLocks:
    """
    Per-identifier mutual exclusion.

    Only needed when callers cannot guarantee that two reconciliations of the
    same identifier never run at once. Locks are dropped once released.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: Optional[str]) -> AsyncIterator[None]:
        if key is None:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class ResourceReconciler:
    """
    Reconciles instances of one resource type against the remote API.

    All collaborators are injected: the transport, the adapter, and
    optionally the executor, poller, lock hook, purge poll spec and the
    retry policies by call site (defaults to executor.PRESETS).
    """

    def __init__(
        self,
        client: RemoteCaller,
        adapter: ResourceAdapter,
        *,
        executor: Optional[RetryExecutor] = None,
        poller: Optional[Poller] = None,
        locks: Optional[IdentifierLocks] = None,
        poll_spec: Optional[PollSpec] = None,
        policies: Optional[Dict[str, BackoffPolicy]] = None,
        transient_signatures: Optional[Sequence[str]] = None,
        deadline: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.adapter = adapter
        self.executor = executor or RetryExecutor()
        self.poller = poller or Poller(self.executor.clock)
        self.locks = locks
        self.poll_spec = poll_spec or PURGE_POLL_SPEC
        policies = {**PRESETS, **(policies or {})}
        self.create_policy = policies[adapter.create_call_site]
        self.update_policy = policies[adapter.update_call_site]
        self.read_policy = policies[adapter.read_call_site]
        self.transient_signatures = (
            transient_signatures
            if transient_signatures is not None
            else adapter.transient_signatures
        )
        self.deadline = deadline
        self.stop_event = stop_event

    @property
    def kind(self) -> str:
        return self.adapter.kind

    # Public operations

    async def create(
        self, desired: Any, existing_identifier: Optional[str] = None
    ) -> ReconcileResult:
        """
        Create the resource, adopting it if it already exists remotely.

        Args:
            desired: Desired state (typed model or raw spec dict)
            existing_identifier: Known remote identifier; skips to update

        Returns:
            ReconcileResult with the assigned identifier on success
        """
        desired = self._desired(desired)
        if existing_identifier:
            return await self.update(desired, existing_identifier)

        key = self.adapter.natural_key(desired)
        async with self._hold(key):
            lookup = self.adapter.lookup_request(desired)
            if lookup is not None:
                found = await self._once(lookup, f"lookup {self.kind}", key)
                identifier = (
                    self.adapter.identifier_from(found.payload, desired)
                    if found.ok
                    else None
                )
                if identifier:
                    result = await self._update(desired, identifier)
                    if result.success:
                        result.action = "adopted"
                    return result

            return await self._create(desired, key)

    async def read(self, identifier: str) -> ReconcileResult:
        """Fetch the resource. A missing resource clears the identifier."""
        async with self._hold(identifier):
            operation = f"read {self.kind}"
            outcome = await self._execute(
                self.adapter.read_request(identifier),
                operation,
                identifier,
                self.read_policy,
                retry_on_network_error=self.adapter.retry_on_network_error,
            )
            if outcome.kind is OutcomeKind.NOT_FOUND:
                return ReconcileResult(success=True, action="absent", outcome=outcome)
            if not outcome.ok:
                return self._failed(outcome, identifier)

            state, error = self._decode(outcome, identifier)
            if error is not None:
                return self._failed(error, identifier)
            return ReconcileResult(
                success=True,
                action="read",
                identifier=identifier,
                state=state,
                outcome=outcome,
            )

    async def update(self, desired: Any, identifier: str) -> ReconcileResult:
        """Patch only the fields whose desired value differs from remote."""
        desired = self._desired(desired)
        async with self._hold(identifier):
            return await self._update(desired, identifier)

    async def delete(self, identifier: str, purge: bool = False) -> ReconcileResult:
        """
        Delete the resource.

        Args:
            identifier: Remote identifier
            purge: Purge all data and wait for the asynchronous purge to finish
                instead of a soft delete
        """
        async with self._hold(identifier):
            if purge:
                return await self._purge(identifier)

            operation = f"delete {self.kind}"
            if self.adapter.fetch_before_delete:
                fetched = await self._once(
                    self.adapter.read_request(identifier), operation, identifier
                )
                if fetched.kind is OutcomeKind.NOT_FOUND:
                    return ReconcileResult(
                        success=True, action="deleted", outcome=fetched
                    )
                if not fetched.ok:
                    return self._failed(fetched, identifier)

            outcome = await self._once(
                self.adapter.delete_request(identifier),
                operation,
                identifier,
            )
            if outcome.ok or outcome.kind is OutcomeKind.NOT_FOUND:
                return ReconcileResult(success=True, action="deleted", outcome=outcome)
            return self._failed(outcome, identifier)

    # Internals

    def _desired(self, desired: Any) -> Any:
        if isinstance(desired, dict):
            return self.adapter.parse_desired(desired)
        return desired

    def _hold(self, key: Optional[str]):
        if self.locks is None or key is None:
            return _no_lock()
        return self.locks.hold(f"{self.kind}/{key}")

    async def _call(self, request: RequestSpec) -> RemoteCallResult:
        return await self.client.call(request.method, request.path, request.body)

    async def _execute(
        self,
        request: RequestSpec,
        operation: str,
        resource_id: Optional[str],
        policy: BackoffPolicy,
        retry_on_network_error: bool = False,
    ) -> ClassifiedOutcome:
        return await self.executor.execute(
            lambda: self._call(request),
            policy,
            operation_name=operation,
            resource_id=resource_id,
            retry_on_network_error=retry_on_network_error,
            transient_signatures=self.transient_signatures,
            deadline=self.deadline,
            stop_event=self.stop_event,
        )

    async def _once(
        self, request: RequestSpec, operation: str, resource_id: Optional[str]
    ) -> ClassifiedOutcome:
        return await self._execute(request, operation, resource_id, SINGLE_ATTEMPT)

    def _decode(self, outcome: ClassifiedOutcome, identifier: Optional[str]):
        try:
            return self.adapter.decode(outcome.payload, identifier), None
        except ValueError as e:
            return None, ClassifiedOutcome.permanent(
                f"invalid response: {e}",
                status_code=outcome.status_code,
                operation=outcome.operation,
                resource_id=identifier,
                attempts=outcome.attempts,
            )

    def _failed(
        self, outcome: ClassifiedOutcome, identifier: Optional[str]
    ) -> ReconcileResult:
        return ReconcileResult(success=False, identifier=identifier, outcome=outcome)

    async def _create(self, desired: Any, key: Optional[str]) -> ReconcileResult:
        outcome = await self._execute(
            self.adapter.create_request(desired),
            f"create {self.kind}",
            key,
            self.create_policy,
            retry_on_network_error=self.adapter.retry_on_network_error,
        )
        if not outcome.ok:
            return self._failed(outcome, None)

        identifier = self.adapter.identifier_from(outcome.payload, desired)
        if not identifier:
            return self._failed(
                replace(
                    outcome,
                    kind=OutcomeKind.PERMANENT,
                    payload=None,
                    cause="invalid response: no identifier in create response",
                ),
                None,
            )

        state, error = self._decode(outcome, identifier)
        return ReconcileResult(
            success=True,
            action="created",
            identifier=identifier,
            state=desired if error is not None else state,
            outcome=outcome,
        )

    async def _update(self, desired: Any, identifier: str) -> ReconcileResult:
        operation = f"update {self.kind}"
        fetched = await self._once(
            self.adapter.read_request(identifier), operation, identifier
        )
        if not fetched.ok:
            return self._failed(fetched, identifier)

        current, error = self._decode(fetched, identifier)
        if error is not None:
            return self._failed(error, identifier)

        updated, changed = self.adapter.merge(current, desired)
        serializer = self.adapter.serializer
        patch = diff(serializer.dumps(current), serializer.dumps(updated))
        if patch.is_empty:
            return ReconcileResult(
                success=True,
                action="unchanged",
                identifier=identifier,
                state=current,
                outcome=fetched,
                patch=patch,
            )

        outcome = await self._execute(
            self.adapter.update_request(identifier, current, updated, patch),
            operation,
            identifier,
            self.update_policy,
            retry_on_network_error=self.adapter.retry_on_network_error,
        )
        if not outcome.ok:
            return self._failed(outcome, identifier)

        state = updated
        if isinstance(outcome.payload, dict):
            decoded, error = self._decode(outcome, identifier)
            if error is None:
                state = decoded
        return ReconcileResult(
            success=True,
            action="updated",
            identifier=identifier,
            state=state,
            outcome=outcome,
            changed_fields=changed,
            patch=patch,
        )

    async def _purge(self, identifier: str) -> ReconcileResult:
        operation = f"purge {self.kind}"
        if not self.adapter.supports_purge:
            return self._failed(
                ClassifiedOutcome.permanent(
                    f"{self.kind} does not support purge delete",
                    operation=operation,
                    resource_id=identifier,
                ),
                identifier,
            )

        submitted = await self._once(
            self.adapter.purge_request(identifier), operation, identifier
        )
        if submitted.kind is OutcomeKind.NOT_FOUND:
            return ReconcileResult(success=True, action="purged", outcome=submitted)
        if not submitted.ok:
            return self._failed(submitted, identifier)
        if submitted.status_code != 202:
            return self._failed(
                replace(
                    submitted,
                    kind=OutcomeKind.PERMANENT,
                    payload=None,
                    cause=f"purge returned unexpected status {submitted.status_code}",
                ),
                identifier,
            )

        location = submitted.header("Location")
        if not location:
            return self._failed(
                replace(
                    submitted,
                    kind=OutcomeKind.PERMANENT,
                    payload=None,
                    cause="purge response has no Location header",
                ),
                identifier,
            )

        async def check() -> PollObservation:
            result = await self.client.call("GET", location)
            label = None
            if result.status_code == 200:
                label = self.adapter.purge_status_label(parse_payload(result))
            return PollObservation(result, label)

        outcome = await self.poller.poll(
            check,
            self.poll_spec,
            operation_name=operation,
            resource_id=identifier,
            stop_event=self.stop_event,
            transient_signatures=self.transient_signatures,
        )
        if not outcome.ok:
            return self._failed(
                replace(outcome, cause=f"error waiting for purge: {outcome.cause}"),
                identifier,
            )
        return ReconcileResult(success=True, action="purged", outcome=outcome)


@asynccontextmanager
async def _no_lock() -> AsyncIterator[None]:
    yield
