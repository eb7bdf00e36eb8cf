"""
CDR Organization - FHIR STU3 Organization onboarding in a clinical data
repository.

Onboarding is idempotent: an organization that already exists is adopted.
Deletion is either a soft delete or a $purge of all organization data,
which runs asynchronously and is polled through its status endpoint.
"""

from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from resources.base import RequestSpec, ResourceAdapter, ResourceModel


class Reference(ResourceModel):
    """FHIR reference to another organization."""

    reference: str


class CDROrganization(ResourceModel):
    """FHIR STU3 Organization as stored in the CDR."""

    resource_type: Literal["Organization"] = Field(
        "Organization", alias="resourceType"
    )
    id: str = Field(validation_alias=AliasChoices("id", "org_id"))
    name: str
    part_of: Optional[Reference] = Field(
        None, alias="partOf", validation_alias=AliasChoices("partOf", "part_of")
    )

    @field_validator("part_of", mode="before")
    @classmethod
    def parse_part_of(cls, v: Any) -> Any:
        if v == "":
            return None
        if isinstance(v, str):
            reference = v if v.startswith("Organization/") else f"Organization/{v}"
            return {"reference": reference}
        return v


class CDROrganizationAdapter(ResourceAdapter):
    """Adapter for FHIR STU3 organizations."""

    mutable_fields = ("name", "part_of")
    create_call_site = "onboarding"
    # Onboarding is a PUT on the organization ID, so replaying it is safe
    retry_on_network_error = True
    supports_purge = True

    @property
    def kind(self) -> str:
        return "CDROrganization"

    @property
    def model(self):
        return CDROrganization

    def natural_key(self, desired: BaseModel) -> Optional[str]:
        return desired.id

    def lookup_request(self, desired: BaseModel) -> Optional[RequestSpec]:
        return self.read_request(desired.id)

    def create_request(self, desired: BaseModel) -> RequestSpec:
        return RequestSpec("PUT", f"Organization/{desired.id}", desired.to_wire())

    def read_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("GET", f"Organization/{identifier}")

    def delete_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("DELETE", f"Organization/{identifier}")

    def purge_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("POST", f"/store/fhir/{identifier}/$purge", b"")

    def purge_status_label(self, payload: Any) -> Optional[str]:
        """Read the 'status' parameter of a FHIR Parameters resource."""
        if not isinstance(payload, dict):
            return None
        for parameter in payload.get("parameter", []):
            if isinstance(parameter, dict) and parameter.get("name") == "status":
                value = parameter.get("valueString")
                return value if isinstance(value, str) else None
        return None

    def identifier_from(
        self, payload: Any, desired: Optional[BaseModel] = None
    ) -> Optional[str]:
        if isinstance(payload, dict) and payload.get("id"):
            return str(payload["id"])
        return None
