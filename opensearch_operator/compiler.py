"""Desired-state compiler.

Turns an ``OpenSearchCluster`` into the ordered list of child resources that
should exist for it. Pure: no I/O, and the same spec always yields the same
descriptors.
"""

from collections import Counter
from typing import Any

from opensearch_operator.discovery import discovery_service, seed_hosts_env
from opensearch_operator.exceptions import InvalidSpec
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import NodePool, OpenSearchCluster
from opensearch_operator.models.resources import (
    KIND_SERVICE,
    KIND_STATEFUL_SET,
    NODE_POOL_LABEL,
    ChildResource,
)
from opensearch_operator.names import (
    HTTP_PORT_NAME,
    TRANSPORT_PORT,
    TRANSPORT_PORT_NAME,
    bootstrap_pod_name,
    cluster_labels,
    cluster_service_name,
    node_pool_labels,
    node_pool_service_name,
    workload_name,
)

logger = get_logger(__name__)

DEFAULT_REPO = "docker.io/opensearchproject"
DEFAULT_JAVA_OPTS = "-Xmx512M -Xms512M"
DEFAULT_DISK_SIZE = "30Gi"
INITIAL_MASTER_NODES_ENV = "cluster.initial_master_nodes"


def validate(cluster: OpenSearchCluster) -> None:
    """Check the invariants the compiler relies on.

    Raises:
        InvalidSpec: If the spec is contradictory
    """
    pools = cluster.spec.node_pools
    if not pools:
        raise InvalidSpec(f"Cluster '{cluster.name}' declares no node pools")

    duplicates = sorted(c for c, n in Counter(p.component for p in pools).items() if n > 1)
    if duplicates:
        raise InvalidSpec(
            f"Duplicate node pool components: {', '.join(duplicates)}",
            "Component names identify node pools and must be unique within a cluster",
        )

    for pool in pools:
        if pool.persistence is not None and len(pool.persistence.sources()) > 1:
            raise InvalidSpec(
                f"Node pool '{pool.component}' declares more than one persistence source",
                f"Set only one of: {', '.join(pool.persistence.sources())}",
            )

    if not any(pool.is_manager_eligible for pool in pools):
        raise InvalidSpec(
            f"Cluster '{cluster.name}' has no cluster-manager-eligible node pool",
            "At least one node pool must have the 'master' role",
        )

    general = cluster.spec.general
    if not general.image and not general.version:
        raise InvalidSpec(f"Cluster '{cluster.name}' sets neither a version nor an image")


def image_for_version(cluster: OpenSearchCluster, version: str) -> str:
    general = cluster.spec.general
    if general.image:
        return general.image
    repo = (general.default_repo or DEFAULT_REPO).rstrip("/")
    return f"{repo}/opensearch:{version}"


def cluster_image(cluster: OpenSearchCluster) -> str:
    """Image every member should eventually run."""
    return image_for_version(cluster, cluster.spec.general.version)


def container_env(
    cluster: OpenSearchCluster,
    roles: list[str],
    overrides: dict[str, str] | None = None,
    java_opts: str | None = None,
) -> list[dict[str, str]]:
    """Environment entries for a member with the given roles.

    Built-in entries come first; user configuration is applied on top in key
    order, replacing built-in values in place.
    """
    general = cluster.spec.general
    seed_hosts = seed_hosts_env(cluster)
    env = {
        "cluster.name": cluster.name,
        "network.host": "0.0.0.0",
        "http.port": str(general.http_port),
        "node.roles": ",".join(roles),
        INITIAL_MASTER_NODES_ENV: bootstrap_pod_name(cluster),
        seed_hosts["name"]: seed_hosts["value"],
    }
    if java_opts:
        env["OPENSEARCH_JAVA_OPTS"] = java_opts
    merged = {**general.additional_config, **(overrides or {})}
    for key in sorted(merged):
        env[key] = merged[key]
    return [{"name": name, "value": value} for name, value in env.items()]


def service_ports(cluster: OpenSearchCluster) -> list[dict[str, Any]]:
    port = cluster.spec.general.http_port
    return [
        {"name": HTTP_PORT_NAME, "port": port, "target_port": port},
        {"name": TRANSPORT_PORT_NAME, "port": TRANSPORT_PORT, "target_port": TRANSPORT_PORT},
    ]


def _storage(pool: NodePool) -> tuple[list[dict], list[dict]]:
    """Return (volume_claim_templates, volumes) for a node pool."""
    persistence = pool.persistence
    if persistence is not None and persistence.pvc is not None:
        claim = {
            "name": "data",
            "storage_class": persistence.pvc.storage_class,
            "access_modes": persistence.pvc.access_modes or ["ReadWriteOnce"],
            "storage": pool.disk_size or DEFAULT_DISK_SIZE,
        }
        return [claim], []
    if persistence is not None and persistence.host_path is not None:
        return [], [{"name": "data", "hostPath": persistence.host_path}]
    empty_dir = persistence.empty_dir if persistence is not None else None
    return [], [{"name": "data", "emptyDir": empty_dir or {}}]


def node_pool_workload(cluster: OpenSearchCluster, pool: NodePool) -> ChildResource:
    general = cluster.spec.general
    env = container_env(
        cluster, pool.roles, pool.additional_config, java_opts=pool.jvm or DEFAULT_JAVA_OPTS
    )
    claims, volumes = _storage(pool)
    return ChildResource(
        kind=KIND_STATEFUL_SET,
        name=workload_name(cluster, pool.component),
        namespace=cluster.namespace,
        labels=node_pool_labels(cluster, pool),
        owner=cluster.owner_reference(),
        spec={
            "replicas": pool.replicas,
            "service_name": node_pool_service_name(cluster, pool.component),
            "http_port": general.http_port,
            "image": cluster_image(cluster),
            "image_pull_policy": general.image_pull_policy,
            "image_pull_secrets": general.image_pull_secrets,
            "env": env,
            "resources": pool.resources,
            "node_selector": pool.node_selector,
            "tolerations": pool.tolerations,
            "affinity": pool.affinity,
            "volume_claim_templates": claims,
            "volumes": volumes,
            "service_account": general.service_account,
            "init_sysctl": general.set_vm_max_map_count,
        },
    )


def node_pool_service(cluster: OpenSearchCluster, pool: NodePool) -> ChildResource:
    return ChildResource(
        kind=KIND_SERVICE,
        name=node_pool_service_name(cluster, pool.component),
        namespace=cluster.namespace,
        labels=node_pool_labels(cluster, pool),
        owner=cluster.owner_reference(),
        spec={
            "headless": True,
            "publish_not_ready_addresses": False,
            "ports": service_ports(cluster),
            "selector": {**cluster_labels(cluster), NODE_POOL_LABEL: pool.component},
        },
    )


def cluster_service(cluster: OpenSearchCluster) -> ChildResource:
    return ChildResource(
        kind=KIND_SERVICE,
        name=cluster_service_name(cluster),
        namespace=cluster.namespace,
        labels=cluster_labels(cluster),
        owner=cluster.owner_reference(),
        spec={
            "headless": False,
            "publish_not_ready_addresses": False,
            "ports": service_ports(cluster),
            "selector": cluster_labels(cluster),
        },
    )


def compile_cluster(cluster: OpenSearchCluster) -> list[ChildResource]:
    """Compile a cluster spec into its desired child resources.

    Args:
        cluster: The cluster object

    Returns:
        Descriptors in apply order: cluster service, discovery service, then
        the service and workload of each node pool in spec order

    Raises:
        InvalidSpec: If the spec violates a cluster invariant
    """
    validate(cluster)

    desired = [cluster_service(cluster), discovery_service(cluster)]
    for pool in cluster.spec.node_pools:
        desired.append(node_pool_service(cluster, pool))
        desired.append(node_pool_workload(cluster, pool))

    clashes = sorted({str(r) for r in desired if sum(o.key == r.key for o in desired) > 1})
    if clashes:
        raise InvalidSpec(
            f"Node pool names collide with other resources: {', '.join(clashes)}",
            "Rename the node pool component",
        )

    logger.debug(f"Compiled {len(desired)} resources for cluster {cluster.key}")
    return [resource.with_hash() for resource in desired]
