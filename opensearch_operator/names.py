"""Deterministic names and labels for child resources."""

from opensearch_operator.models.cluster import NodePool, OpenSearchCluster
from opensearch_operator.models.resources import CLUSTER_LABEL, MANAGER_LABEL, NODE_POOL_LABEL

HTTP_PORT_NAME = "http"
TRANSPORT_PORT_NAME = "transport"
TRANSPORT_PORT = 9300


def cluster_service_name(cluster: OpenSearchCluster) -> str:
    """Name of the cluster-wide service; ``general.serviceName`` when set."""
    return cluster.spec.general.service_name or cluster.name


def workload_name(cluster: OpenSearchCluster, component: str) -> str:
    return f"{cluster.name}-{component}"


def node_pool_service_name(cluster: OpenSearchCluster, component: str) -> str:
    return f"{cluster_service_name(cluster)}-{component}"


def discovery_service_name(cluster: OpenSearchCluster) -> str:
    return f"{cluster.name}-discovery"


def bootstrap_pod_name(cluster: OpenSearchCluster) -> str:
    return f"{cluster.name}-bootstrap-0"


def member_name(cluster: OpenSearchCluster, component: str, ordinal: int) -> str:
    return f"{workload_name(cluster, component)}-{ordinal}"


def member_names(cluster: OpenSearchCluster, pool: NodePool) -> list[str]:
    """Pod names of a node pool's members, in ordinal order."""
    return [member_name(cluster, pool.component, i) for i in range(pool.replicas)]


def cluster_labels(cluster: OpenSearchCluster) -> dict[str, str]:
    return {CLUSTER_LABEL: cluster.name}


def node_pool_labels(cluster: OpenSearchCluster, pool: NodePool) -> dict[str, str]:
    labels = {**cluster_labels(cluster), NODE_POOL_LABEL: pool.component}
    if pool.is_manager_eligible:
        labels[MANAGER_LABEL] = "true"
    return labels
