"""
Resource adapters.

This package maps each supported resource kind to its adapter.
"""

from typing import Dict, Type

from resources.base import RequestSpec, ResourceAdapter, ResourceModel
from resources.cdr_organization import CDROrganizationAdapter
from resources.export_route import ExportRouteAdapter
from resources.iam_organization import IAMOrganizationAdapter
from resources.metrics_autoscaler import MetricsAutoscalerAdapter

ADAPTERS: Dict[str, Type[ResourceAdapter]] = {
    "CDROrganization": CDROrganizationAdapter,
    "ExportRoute": ExportRouteAdapter,
    "IAMOrganization": IAMOrganizationAdapter,
    "MetricsAutoscaler": MetricsAutoscalerAdapter,
}


def get_adapter(kind: str) -> ResourceAdapter:
    """
    Instantiate the adapter for a resource kind.

    Raises:
        ValueError: If the kind is not supported
    """
    adapter_class = ADAPTERS.get(kind)
    if adapter_class is None:
        raise ValueError(
            f"Unknown resource kind: {kind} (supported: {', '.join(sorted(ADAPTERS))})"
        )
    return adapter_class()


__all__ = [
    "ADAPTERS",
    "CDROrganizationAdapter",
    "ExportRouteAdapter",
    "IAMOrganizationAdapter",
    "MetricsAutoscalerAdapter",
    "RequestSpec",
    "ResourceAdapter",
    "ResourceModel",
    "get_adapter",
]
