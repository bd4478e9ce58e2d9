"""Bootstrap controller.

A brand new cluster cannot elect a cluster manager until its members agree on
an initial voting set. Until the cluster reports a formed quorum, a transient
seed member ``{cluster}-bootstrap-0`` runs next to the node pools, and every
member names it in ``cluster.initial_master_nodes``. Once quorum forms,
``status.initialized`` is set for good and the seed is removed.
"""

from dataclasses import dataclass

from opensearch_operator.admin import HealthProbe
from opensearch_operator.compiler import DEFAULT_JAVA_OPTS, cluster_image, container_env
from opensearch_operator.exceptions import OwnershipConflict
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import OpenSearchCluster
from opensearch_operator.models.resources import KIND_POD, MANAGER_LABEL, ChildResource
from opensearch_operator.names import bootstrap_pod_name, cluster_labels
from opensearch_operator.store import ResourceStore

logger = get_logger(__name__)

NOT_BOOTSTRAPPED = "NOT_BOOTSTRAPPED"
BOOTSTRAPPED = "BOOTSTRAPPED"


def bootstrap_pod(cluster: OpenSearchCluster) -> ChildResource:
    """The transient seed member, manager-eligible and holding no data."""
    general = cluster.spec.general
    return ChildResource(
        kind=KIND_POD,
        name=bootstrap_pod_name(cluster),
        namespace=cluster.namespace,
        labels={**cluster_labels(cluster), MANAGER_LABEL: "true"},
        owner=cluster.owner_reference(),
        spec={
            "image": cluster_image(cluster),
            "image_pull_policy": general.image_pull_policy,
            "image_pull_secrets": general.image_pull_secrets,
            "env": container_env(
                cluster, ["master"], {"node.name": bootstrap_pod_name(cluster)}, DEFAULT_JAVA_OPTS
            ),
            "service_account": general.service_account,
            "http_port": general.http_port,
            "volumes": [{"name": "data", "emptyDir": {}}],
        },
    ).with_hash()


@dataclass
class BootstrapResult:
    state: str
    changed: bool = False


class BootstrapController:
    """Seeds the first quorum and retires once the cluster has formed."""

    def __init__(self, store: ResourceStore, probe: HealthProbe):
        self.store = store
        self.probe = probe

    @staticmethod
    def state(cluster: OpenSearchCluster) -> str:
        return BOOTSTRAPPED if cluster.status.initialized else NOT_BOOTSTRAPPED

    def reconcile(self, cluster: OpenSearchCluster) -> BootstrapResult:
        """Advance the bootstrap state machine by one step.

        Mutates ``cluster.status.initialized`` when quorum is first observed.

        Raises:
            OwnershipConflict: If a foreign pod holds the seed member name
            TransientInfraError: If the store cannot be reached
        """
        seed = bootstrap_pod(cluster)
        existing = self.store.get(seed.kind, seed.namespace, seed.name)

        if cluster.status.initialized:
            if existing is not None and existing.is_owned_by(cluster.metadata.uid):
                logger.info(f"Removing bootstrap member {seed.name}, cluster is initialized")
                self.store.delete(seed.kind, seed.namespace, seed.name)
                return BootstrapResult(BOOTSTRAPPED, changed=True)
            return BootstrapResult(BOOTSTRAPPED)

        if existing is not None and not existing.is_owned_by(cluster.metadata.uid):
            raise OwnershipConflict(
                seed.kind, seed.name, existing.owner.uid if existing.owner else None
            )

        changed = False
        if existing is None:
            logger.info(f"Creating bootstrap member {seed.name} for {cluster.key}")
            self.store.create(seed)
            changed = True

        if self.probe.has_quorum(cluster):
            logger.info(f"Cluster {cluster.key} formed its first quorum")
            cluster.status.initialized = True
            return BootstrapResult(BOOTSTRAPPED, changed=True)

        logger.debug(f"Cluster {cluster.key} has not formed a quorum yet")
        return BootstrapResult(NOT_BOOTSTRAPPED, changed=changed)
