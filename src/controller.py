"""
Controller - batch reconciliation of declared resources.

Takes a manifest of resource entries and reconciles each one through the
reconciler for its kind, a bounded number at a time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import yaml

from config import Config, ControllerConfig
from executor import RetryExecutor
from outcomes import ClassifiedOutcome
from poller import Poller
from reconciler import IdentifierLocks, ReconcileResult, RemoteCaller, ResourceReconciler
from resources import ADAPTERS

logger = logging.getLogger(__name__)


@dataclass
class ManifestEntry:
    """One declared resource in a manifest."""

    kind: str
    spec: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None  # remote identifier, when already known
    name: Optional[str] = None  # display name

    @property
    def display_name(self) -> str:
        for candidate in (self.name, self.id, self.spec.get("name"), self.spec.get("id")):
            if candidate:
                return str(candidate)
        return "<unnamed>"

    @classmethod
    def from_dict(cls, data: Any) -> "ManifestEntry":
        """
        Build an entry from a decoded manifest item.

        Raises:
            ValueError: If the item is not a mapping with a kind and a spec mapping
        """
        if not isinstance(data, dict):
            raise ValueError(f"Manifest entry must be a mapping, got {type(data).__name__}")
        kind = data.get("kind")
        if not kind or not isinstance(kind, str):
            raise ValueError("Manifest entry is missing 'kind'")
        spec = data.get("spec") or {}
        if not isinstance(spec, dict):
            raise ValueError(f"Manifest entry {kind}: 'spec' must be a mapping")
        return cls(
            kind=kind,
            spec=spec,
            id=str(data["id"]) if data.get("id") else None,
            name=data.get("name"),
        )


@dataclass
class EntryResult:
    """Reconciliation result for one manifest entry."""

    entry: ManifestEntry
    result: ReconcileResult
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.result.success


def load_manifest(path: Union[str, Path]) -> List[ManifestEntry]:
    """
    Load manifest entries from a YAML or JSON file.

    The document is either a list of entries or a mapping with a
    'resources' list.

    Raises:
        ValueError: If the document has the wrong shape
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("resources")
    if not isinstance(data, list):
        raise ValueError(
            f"{path}: manifest must be a list of resources or contain a 'resources' list"
        )
    return [ManifestEntry.from_dict(item) for item in data]


def build_reconcilers(
    client: RemoteCaller,
    config: Optional[Config] = None,
    *,
    executor: Optional[RetryExecutor] = None,
    poller: Optional[Poller] = None,
    locks: Optional[IdentifierLocks] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> Dict[str, ResourceReconciler]:
    """Create a reconciler for every supported resource kind."""
    config = config or Config.default()
    executor = executor or RetryExecutor()
    poller = poller or Poller(executor.clock)
    policies = config.retry.policies()
    poll_spec = config.poll.purge_spec()

    return {
        kind: ResourceReconciler(
            client,
            adapter_class(),
            executor=executor,
            poller=poller,
            locks=locks,
            poll_spec=poll_spec,
            policies=policies,
            transient_signatures=config.retry.transient_signatures,
            stop_event=stop_event,
        )
        for kind, adapter_class in ADAPTERS.items()
    }


Operation = Callable[[ResourceReconciler], Awaitable[ReconcileResult]]


class Controller:
    """
    Reconciles batches of manifest entries.

    Entries are reconciled concurrently, limited by
    max_concurrent_reconciles. Results come back in input order.
    """

    def __init__(
        self,
        reconcilers: Dict[str, ResourceReconciler],
        config: Optional[ControllerConfig] = None,
    ):
        self.reconcilers = reconcilers
        self.config = config or ControllerConfig()
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)

    async def apply(self, entries: List[ManifestEntry]) -> List[EntryResult]:
        """Create or update every entry."""
        return await self._run_batch(entries, "apply", self._apply_one)

    async def read(self, entries: List[ManifestEntry]) -> List[EntryResult]:
        """Fetch the current remote state of every entry."""

        def operation(entry: ManifestEntry) -> Operation:
            async def run(reconciler: ResourceReconciler) -> ReconcileResult:
                return await reconciler.read(self._identifier(entry, reconciler))

            return run

        return await self._run_batch(entries, "read", operation)

    async def delete(
        self, entries: List[ManifestEntry], purge: bool = False
    ) -> List[EntryResult]:
        """Delete every entry, purging its data when purge is set."""

        def operation(entry: ManifestEntry) -> Operation:
            async def run(reconciler: ResourceReconciler) -> ReconcileResult:
                return await reconciler.delete(
                    self._identifier(entry, reconciler), purge=purge
                )

            return run

        return await self._run_batch(entries, "purge" if purge else "delete", operation)

    def _apply_one(self, entry: ManifestEntry) -> Operation:
        async def run(reconciler: ResourceReconciler) -> ReconcileResult:
            return await reconciler.create(entry.spec, existing_identifier=entry.id)

        return run

    def _identifier(self, entry: ManifestEntry, reconciler: ResourceReconciler) -> str:
        """
        Resolve the remote identifier of an entry.

        Falls back to the natural key of the declared spec.

        Raises:
            ValueError: If no identifier can be determined
        """
        if entry.id:
            return entry.id
        adapter = reconciler.adapter
        identifier = adapter.natural_key(adapter.parse_desired(entry.spec))
        if not identifier:
            raise ValueError(f"{entry.kind} entries need an 'id' for this operation")
        return identifier

    async def _run_batch(
        self,
        entries: List[ManifestEntry],
        action: str,
        operation: Callable[[ManifestEntry], Operation],
    ) -> List[EntryResult]:
        if not entries:
            return []
        logger.info(f"Reconciling {len(entries)} resources ({action})")
        return list(
            await asyncio.gather(
                *(self._reconcile(entry, action, operation(entry)) for entry in entries)
            )
        )

    async def _reconcile(
        self, entry: ManifestEntry, action: str, operation: Operation
    ) -> EntryResult:
        """Reconcile a single entry, converting any error into a failed result."""
        async with self.semaphore:
            resource_name = f"{entry.kind}/{entry.display_name}"
            start_time = time.monotonic()

            reconciler = self.reconcilers.get(entry.kind)
            if reconciler is None:
                result = self._error_result(
                    entry,
                    action,
                    f"Unknown resource kind: {entry.kind} "
                    f"(supported: {', '.join(sorted(self.reconcilers))})",
                )
            else:
                try:
                    result = await operation(reconciler)
                except ValueError as e:
                    result = self._error_result(entry, action, f"invalid spec: {e}")
                except Exception as e:
                    logger.error(
                        f"Unexpected error reconciling {resource_name}: {e}",
                        exc_info=True,
                    )
                    result = self._error_result(entry, action, str(e))

            duration_seconds = time.monotonic() - start_time
            if result.success:
                logger.info(
                    f"Successfully reconciled {resource_name}: {result.action} "
                    f"({duration_seconds:.2f}s)"
                )
            else:
                logger.error(
                    f"Failed to reconcile {resource_name}: {result.message} "
                    f"({duration_seconds:.2f}s)"
                )
            return EntryResult(entry, result, duration_seconds)

    @staticmethod
    def _error_result(entry: ManifestEntry, action: str, cause: str) -> ReconcileResult:
        return ReconcileResult(
            success=False,
            identifier=entry.id,
            outcome=ClassifiedOutcome.permanent(
                cause, operation=f"{action} {entry.kind}", resource_id=entry.id
            ),
        )
