"""Discovery wiring.

Members find their peers through one headless service per cluster instead of
individual pod identities, so replacing members never breaks discovery.
"""

from opensearch_operator.models.cluster import OpenSearchCluster
from opensearch_operator.models.resources import KIND_SERVICE, MANAGER_LABEL, ChildResource
from opensearch_operator.names import (
    TRANSPORT_PORT,
    TRANSPORT_PORT_NAME,
    cluster_labels,
    discovery_service_name,
)

SEED_HOSTS_ENV = "discovery.seed_hosts"


def discovery_service(cluster: OpenSearchCluster) -> ChildResource:
    """Headless service on the transport port selecting manager-eligible members."""
    return ChildResource(
        kind=KIND_SERVICE,
        name=discovery_service_name(cluster),
        namespace=cluster.namespace,
        labels=cluster_labels(cluster),
        owner=cluster.owner_reference(),
        spec={
            "headless": True,
            # Peers must be resolvable before they pass readiness checks
            "publish_not_ready_addresses": True,
            "ports": [
                {"name": TRANSPORT_PORT_NAME, "port": TRANSPORT_PORT, "target_port": TRANSPORT_PORT}
            ],
            "selector": {**cluster_labels(cluster), MANAGER_LABEL: "true"},
        },
    )


def seed_hosts_env(cluster: OpenSearchCluster) -> dict[str, str]:
    return {"name": SEED_HOSTS_ENV, "value": discovery_service_name(cluster)}
