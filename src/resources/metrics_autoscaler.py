"""
Metrics Autoscaler - application autoscaler of a metrics instance.

The autoscaler API is an upsert: create and update both PUT the complete
application document. There is no real delete, the autoscaler is disabled
instead.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)

from resources.base import RequestSpec, ResourceAdapter, ResourceModel

ThresholdName = Literal["cpu", "memory", "http-rate", "http-latency"]

# name -> (default min, default max, lower bound, upper bound)
THRESHOLD_LIMITS: Dict[str, Tuple[float, float, float, float]] = {
    "cpu": (5, 100, 0, 100),
    "memory": (20, 100, 0, 100),
    "http-rate": (300, 6000000, 1, 6000000),
    "http-latency": (10, 10000, 1, 1000000),
}


class Threshold(ResourceModel):
    """Scaling threshold for one metric."""

    name: ThresholdName
    enabled: bool = False
    min: float
    max: float

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("name") in THRESHOLD_LIMITS:
            default_min, default_max, _, _ = THRESHOLD_LIMITS[data["name"]]
            data = dict(data)
            data.setdefault("min", default_min)
            data.setdefault("max", default_max)
        return data

    @model_validator(mode="after")
    def check_range(self) -> "Threshold":
        _, _, lower, upper = THRESHOLD_LIMITS[self.name]
        for field_name in ("min", "max"):
            value = getattr(self, field_name)
            if not lower <= value <= upper:
                raise ValueError(
                    f"threshold {self.name}: {field_name} must be between "
                    f"{lower:g} and {upper:g}, got {value:g}"
                )
        if self.min > self.max:
            raise ValueError(f"threshold {self.name}: min cannot exceed max")
        return self


class Autoscaler(ResourceModel):
    """Autoscaler settings of one application."""

    instance_id: Optional[str] = Field(
        None,
        exclude=True,
        validation_alias=AliasChoices("instance_id", "metrics_instance_id"),
    )
    name: str = Field(validation_alias=AliasChoices("name", "app_name"))
    enabled: bool = False
    min_instances: int = Field(
        1,
        ge=0,
        le=1000000000,
        alias="minInstances",
        validation_alias=AliasChoices("minInstances", "min_instances"),
    )
    max_instances: int = Field(
        10,
        ge=0,
        le=1000000000,
        alias="maxInstances",
        validation_alias=AliasChoices("maxInstances", "max_instances"),
    )
    thresholds: List[Threshold] = Field(default_factory=list)

    @field_validator("thresholds")
    @classmethod
    def sort_thresholds(cls, v: List[Threshold]) -> List[Threshold]:
        names = [threshold.name for threshold in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate thresholds: {', '.join(duplicates)}")
        return sorted(v, key=lambda threshold: threshold.name)


def split_identifier(identifier: str) -> Tuple[str, str]:
    """Split '<instance>:<app name>' into its parts."""
    instance_id, sep, name = identifier.partition(":")
    if not sep or not instance_id or not name:
        raise ValueError(
            f"invalid autoscaler identifier {identifier!r}, "
            f"expected '<instance>:<app name>'"
        )
    return instance_id, name


class MetricsAutoscalerAdapter(ResourceAdapter):
    """Adapter for metrics application autoscalers."""

    mutable_fields = ("enabled", "min_instances", "max_instances", "thresholds")
    create_call_site = "metrics"
    update_call_site = "metrics"
    read_call_site = "metrics"
    # Upserts by app name can be replayed
    retry_on_network_error = True

    @property
    def kind(self) -> str:
        return "MetricsAutoscaler"

    @property
    def model(self):
        return Autoscaler

    def parse_desired(self, spec: Dict[str, Any]) -> BaseModel:
        desired = super().parse_desired(spec)
        if not desired.instance_id:
            raise ValueError("metrics_instance_id is required")
        return desired

    def decode(self, payload: Any, identifier: Optional[str] = None) -> BaseModel:
        autoscaler = super().decode(payload, identifier)
        if identifier:
            instance_id, _ = split_identifier(identifier)
            autoscaler = autoscaler.model_copy(update={"instance_id": instance_id})
        return autoscaler

    def natural_key(self, desired: BaseModel) -> Optional[str]:
        return f"{desired.instance_id}:{desired.name}"

    def _collection(self, instance_id: str) -> str:
        return f"v3/metrics/{instance_id}/autoscalers"

    def create_request(self, desired: BaseModel) -> RequestSpec:
        return RequestSpec("PUT", self._collection(desired.instance_id), desired.to_wire())

    def read_request(self, identifier: str) -> RequestSpec:
        instance_id, name = split_identifier(identifier)
        return RequestSpec("GET", f"{self._collection(instance_id)}/{name}")

    def update_request(self, identifier, current, updated, patch) -> RequestSpec:
        instance_id, _ = split_identifier(identifier)
        return RequestSpec("PUT", self._collection(instance_id), updated.to_wire())

    def delete_request(self, identifier: str) -> RequestSpec:
        instance_id, name = split_identifier(identifier)
        return RequestSpec(
            "PUT", self._collection(instance_id), {"name": name, "enabled": False}
        )

    def identifier_from(
        self, payload: Any, desired: Optional[BaseModel] = None
    ) -> Optional[str]:
        if desired is None or not isinstance(payload, dict) or not payload.get("name"):
            return None
        return f"{desired.instance_id}:{payload['name']}"
