"""
Export Route - CDL route exporting data objects between research studies.

Routes are immutable once created: there are no mutable fields, so an
update never sends anything.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from resources.base import RequestSpec, ResourceAdapter, ResourceModel

READ_ONLY_FIELDS = {"id", "created_by", "created_on", "updated_by", "updated_on"}


class ExportLabel(ResourceModel):
    name: str
    approval_required: bool = Field(False, alias="approvalRequired")


class ExportDataObject(ResourceModel):
    type: str
    export_label: List[ExportLabel] = Field(default_factory=list, alias="exportLabel")


class AllowedDataObjects(ResourceModel):
    data_object: List[ExportDataObject] = Field(
        default_factory=list, alias="dataObject"
    )


class SourceStudy(ResourceModel):
    endpoint: str
    allowed: Optional[AllowedDataObjects] = None


class Source(ResourceModel):
    cdl_research_study: SourceStudy = Field(alias="cdlResearchStudy")


class DestinationStudy(ResourceModel):
    endpoint: str


class Destination(ResourceModel):
    cdl_research_study: DestinationStudy = Field(alias="cdlResearchStudy")


class ServiceAccountDetails(ResourceModel):
    service_id: str = Field(alias="serviceId")
    private_key: str = Field(alias="privateKey", repr=False)
    access_token_endpoint: str = Field(alias="accessTokenEndPoint")
    token_endpoint: str = Field(alias="tokenEndPoint")


class ServiceAccount(ResourceModel):
    cdl_service_account: ServiceAccountDetails = Field(alias="cdlServiceAccount")


class ExportRoute(ResourceModel):
    """CDL export route."""

    id: Optional[str] = None
    name: str
    display_name: str = Field(alias="displayName")
    description: Optional[str] = None
    auto_export: bool = Field(False, alias="autoExport")
    source: Source
    destination: Destination
    # Not returned by every read
    service_account: Optional[ServiceAccount] = Field(None, alias="serviceAccount")
    created_by: Optional[str] = Field(None, alias="createdBy")
    created_on: Optional[str] = Field(None, alias="createdOn")
    updated_by: Optional[str] = Field(None, alias="updatedBy")
    updated_on: Optional[str] = Field(None, alias="updatedOn")


class ExportRouteAdapter(ResourceAdapter):
    """Adapter for CDL export routes."""

    @property
    def kind(self) -> str:
        return "ExportRoute"

    @property
    def model(self):
        return ExportRoute

    def parse_desired(self, spec: Dict[str, Any]) -> BaseModel:
        desired = super().parse_desired(spec)
        if desired.service_account is None:
            raise ValueError("service_account is required")
        return desired

    def create_request(self, desired: BaseModel) -> RequestSpec:
        return RequestSpec(
            "POST", "Export/Route", desired.to_wire(exclude=READ_ONLY_FIELDS)
        )

    def read_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("GET", f"Export/Route/{identifier}")

    def delete_request(self, identifier: str) -> RequestSpec:
        return RequestSpec("DELETE", f"Export/Route/{identifier}")

    def identifier_from(
        self, payload: Any, desired: Optional[BaseModel] = None
    ) -> Optional[str]:
        if isinstance(payload, dict) and payload.get("id"):
            return str(payload["id"])
        return None
