"""Data models for cluster objects and their child resources."""

from opensearch_operator.models.cluster import (
    ClusterSpec,
    ClusterStatus,
    ComponentStatus,
    GeneralConfig,
    NodePool,
    ObjectMeta,
    OpenSearchCluster,
    OwnerReference,
    PersistenceConfig,
    PVCSource,
)
from opensearch_operator.models.resources import ChildResource

__all__ = [
    "ChildResource",
    "ClusterSpec",
    "ClusterStatus",
    "ComponentStatus",
    "GeneralConfig",
    "NodePool",
    "ObjectMeta",
    "OpenSearchCluster",
    "OwnerReference",
    "PersistenceConfig",
    "PVCSource",
]
