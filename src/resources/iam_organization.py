"""
IAM Organization - SCIM organization in the identity and access service.

The name is fixed at creation; renaming an organization means deleting and
recreating it. The service marks an organization active on its own, so
`active` is read back but never sent.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from resources.base import RequestSpec, ResourceAdapter, ResourceModel

ORGANIZATION_SCHEMA = "urn:ietf:params:scim:schemas:core:philips:hsdp:2.0:Organization"

READ_ONLY_FIELDS = {"id", "active", "meta"}


class ParentReference(ResourceModel):
    value: str


class IAMOrganization(ResourceModel):
    """SCIM organization."""

    schemas: List[str] = Field(default_factory=lambda: [ORGANIZATION_SCHEMA])
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    type: Optional[str] = None
    external_id: Optional[str] = Field(None, alias="externalId")
    parent: Optional[ParentReference] = Field(
        None, validation_alias=AliasChoices("parent", "parent_org_id")
    )
    active: Optional[bool] = None
    # Carries the version the service expects back on a full PUT
    meta: Optional[Dict[str, Any]] = None

    @field_validator("parent", mode="before")
    @classmethod
    def parse_parent(cls, v: Any) -> Any:
        if v == "":
            return None
        if isinstance(v, str):
            return {"value": v}
        return v

    @property
    def parent_org_id(self) -> Optional[str]:
        return self.parent.value if self.parent else None


class IAMOrganizationAdapter(ResourceAdapter):
    """Adapter for IAM organizations."""

    mutable_fields = ("description", "type", "external_id", "display_name")
    fetch_before_delete = True

    @property
    def kind(self) -> str:
        return "IAMOrganization"

    @property
    def model(self):
        return IAMOrganization

    def parse_desired(self, spec: Dict[str, Any]) -> BaseModel:
        desired = super().parse_desired(spec)
        if not desired.name:
            raise ValueError("name is required")
        return desired

    def create_request(self, desired: BaseModel) -> RequestSpec:
        return RequestSpec(
            "POST", "Organizations", desired.to_wire(exclude=READ_ONLY_FIELDS)
        )

    def read_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("GET", f"Organizations/{identifier}")

    def update_request(self, identifier, current, updated, patch) -> RequestSpec:
        return RequestSpec(
            "PUT", f"Organizations/{identifier}", updated.to_wire(exclude={"active"})
        )

    def delete_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("DELETE", f"Organizations/{identifier}")

    def identifier_from(
        self, payload: Any, desired: Optional[BaseModel] = None
    ) -> Optional[str]:
        if isinstance(payload, dict) and payload.get("id"):
            return payload["id"]
        return None
