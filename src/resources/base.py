"""
Resource Adapter Base - Abstract interface for resource types.

An adapter is the CRUD-mapping layer for one remote resource type. It
knows the API paths, how to decode payloads into a typed model and which
retry policy each call site uses. The reconciler drives it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict

from classifier import DEFAULT_TRANSIENT_SIGNATURES
from differ import Patch


class ResourceModel(BaseModel):
    """Base for resource models: accepts field or wire names, ignores extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self, **kwargs) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, **kwargs)


@dataclass(frozen=True)
class RequestSpec:
    """A remote call to make: method, path and optional body."""

    method: str
    path: str
    body: Any = None


class Serializer(Protocol):
    """Turns a resource model into a snapshot and back."""

    def dumps(self, instance: Any) -> bytes: ...

    def loads(self, snapshot: bytes) -> Any: ...


class PydanticSerializer:
    """Serializer for pydantic models using their wire (alias) names."""

    def __init__(self, model: Type[BaseModel]):
        self.model = model

    def dumps(self, instance: BaseModel) -> bytes:
        return instance.model_dump_json(by_alias=True, exclude_none=True).encode(
            "utf-8"
        )

    def loads(self, snapshot: bytes) -> BaseModel:
        return self.model.model_validate_json(snapshot)


class ResourceAdapter(ABC):
    """
    Abstract base class for resource adapters.

    Subclasses declare the typed model, the request for each operation and
    how to find the identifier in API responses. Call-site retry behavior is
    configured through the class attributes.
    """

    # Fields the reconciler may change in place on update
    mutable_fields: Tuple[str, ...] = ()

    # Retry budget (executor.PRESETS key) used by each operation
    create_call_site: str = "default"
    update_call_site: str = "default"
    read_call_site: str = "single"

    # Retry create, read and update calls that got no response at all
    retry_on_network_error: bool = False
    transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES

    supports_purge: bool = False
    # Fetch the resource before a soft delete; a missing one is already gone
    fetch_before_delete: bool = False

    @property
    @abstractmethod
    def kind(self) -> str:
        """Resource kind name used in manifests (e.g., 'CDROrganization')."""
        pass

    @property
    @abstractmethod
    def model(self) -> Type[BaseModel]:
        """Pydantic model describing the resource."""
        pass

    @property
    def serializer(self) -> Serializer:
        return PydanticSerializer(self.model)

    def parse_desired(self, spec: Dict[str, Any]) -> BaseModel:
        """
        Decode a declared spec into the typed model.

        Raises:
            pydantic.ValidationError: If the spec does not match the model
        """
        return self.model.model_validate(spec)

    def decode(self, payload: Any, identifier: Optional[str] = None) -> BaseModel:
        """
        Decode an API payload into the typed model.

        Raises:
            pydantic.ValidationError: If the payload does not match the model
        """
        return self.model.model_validate(payload)

    def natural_key(self, desired: BaseModel) -> Optional[str]:
        """Key identifying the resource before it has a remote identifier."""
        return None

    def lookup_request(self, desired: BaseModel) -> Optional[RequestSpec]:
        """Request that finds an existing resource by natural key, if any."""
        return None

    @abstractmethod
    def create_request(self, desired: BaseModel) -> RequestSpec:
        pass

    @abstractmethod
    def read_request(self, identifier: str) -> RequestSpec:
        pass

    def update_request(
        self,
        identifier: str,
        current: BaseModel,
        updated: BaseModel,
        patch: Patch,
    ) -> RequestSpec:
        """Request applying an update. Sends the JSON Patch by default."""
        return RequestSpec("PATCH", self.read_request(identifier).path, patch)

    @abstractmethod
    def delete_request(self, identifier: str) -> RequestSpec:
        pass

    def purge_request(self, identifier: str) -> RequestSpec:
        raise NotImplementedError(f"{self.kind} does not support purge delete")

    def purge_status_label(self, payload: Any) -> Optional[str]:
        """Extract the purge state label from a status-check payload."""
        return None

    @abstractmethod
    def identifier_from(
        self, payload: Any, desired: Optional[BaseModel] = None
    ) -> Optional[str]:
        """Extract the remote identifier from a create/lookup response."""
        pass

    def merge(
        self, current: BaseModel, desired: BaseModel
    ) -> Tuple[BaseModel, List[str]]:
        """
        Apply the desired values of mutable fields that differ from current.

        Returns:
            Tuple of (updated model, names of changed fields)
        """
        changed = [
            name
            for name in self.mutable_fields
            if getattr(desired, name) != getattr(current, name)
        ]
        if not changed:
            return current, []
        updated = current.model_copy(
            update={name: getattr(desired, name) for name in changed}
        )
        return updated, changed
