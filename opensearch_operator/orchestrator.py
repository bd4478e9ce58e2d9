"""Upgrade orchestrator.

Decides when a node pool's workload may switch to the image of a new
version, and when the cluster-wide reported version may advance.

Rules, evaluated on every pass:

* Node pools are upgraded one at a time, in spec order with
  manager-eligible pools last.
* A pool's image only changes while its ledger entry is ``Upgrading`` or
  ``Upgraded``. A pool without an entry is started only when the cluster is
  healthy; starting means marking it ``Upgrading`` and persisting the status
  before touching the workload.
* ``Upgrader`` entries only count for the version they were recorded for.
  When the desired version moves mid-upgrade they are dropped and every pool
  goes through ``Upgrading`` again.
* With ``drainDataNodes`` set, data pools restart one member at a time,
  highest ordinal first: the member is drained, then the workload partition
  is lowered to let it pick up the new image. A failed drain leaves the pool
  ``Upgrading`` and the member on its old image.
* The reported version advances only once every pool is ``Upgraded``; the
  ``Upgrader`` entries of that transition are then pruned.

Replica counts, resources and pool membership never pass through here.
"""

from collections.abc import Callable
from dataclasses import dataclass, field

from opensearch_operator.admin import Drainer, HealthProbe
from opensearch_operator.compiler import cluster_image, image_for_version
from opensearch_operator.exceptions import DrainTimeout, KubernetesError
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import ComponentStatus, NodePool, OpenSearchCluster
from opensearch_operator.models.resources import KIND_STATEFUL_SET, PARTITION, ChildResource
from opensearch_operator.names import member_name, member_names, workload_name
from opensearch_operator.status import (
    TARGETED,
    UPGRADE_TARGET,
    UPGRADED,
    UPGRADER,
    UPGRADING,
    StatusLedger,
)
from opensearch_operator.store import ResourceStore

logger = get_logger(__name__)

DATA_ROLE = "data"

# Outcomes of a pass
STEADY = "steady"
INITIALIZED = "initialized"
IN_PROGRESS = "in-progress"
BLOCKED = "blocked"
COMPLETED = "completed"


@dataclass
class UpgradeResult:
    outcome: str
    from_version: str = ""
    to_version: str = ""
    upgraded_images: list[str] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)

    @property
    def requeue(self) -> bool:
        return self.outcome in (IN_PROGRESS, BLOCKED)


def upgrade_order(pools: list[NodePool]) -> list[NodePool]:
    """Pools in the order they upgrade: spec order, manager-eligible last."""
    return [p for p in pools if not p.is_manager_eligible] + [
        p for p in pools if p.is_manager_eligible
    ]


def rollout_complete(workload: ChildResource, image: str) -> bool:
    """Whether every member of ``workload`` runs ``image`` and is ready."""
    replicas = workload.spec.get("replicas", 0)
    status = workload.status
    return (
        workload.image == image
        and PARTITION not in workload.spec
        and status.get("ready_replicas", 0) >= replicas
        and status.get("updated_replicas", 0) >= replicas
    )


def partition_ready(workload: ChildResource) -> bool:
    """Whether the members at or above the partition are updated and all are ready."""
    replicas = workload.spec.get("replicas", 0)
    partition = workload.spec.get(PARTITION, 0)
    status = workload.status
    return (
        status.get("updated_replicas", 0) >= replicas - partition
        and status.get("ready_replicas", 0) >= replicas
    )


class UpgradeOrchestrator:
    """Gates version changes of node pool workloads."""

    def __init__(
        self,
        store: ResourceStore,
        probe: HealthProbe,
        drainer: Drainer,
        persist_status: Callable[[OpenSearchCluster, StatusLedger], None] | None = None,
    ):
        self.store = store
        self.probe = probe
        self.drainer = drainer
        self.persist_status = persist_status

    def reconcile(self, cluster: OpenSearchCluster, ledger: StatusLedger) -> UpgradeResult:
        """Take at most one upgrade step for ``cluster``.

        Mutates ``cluster.status.version`` and ``ledger``.
        """
        status = cluster.status
        desired = cluster.spec.general.version

        if not status.version:
            # Fresh or adopted cluster: workloads were created at this version
            missing = [
                pool.component
                for pool in cluster.spec.node_pools
                if self._workload(cluster, pool) is None
            ]
            if missing:
                return UpgradeResult(BLOCKED, to_version=desired)
            status.version = desired
            logger.info(f"Cluster {cluster.key} reports version {desired}")
            return UpgradeResult(INITIALIZED, to_version=desired)

        if status.version == desired and not self._rollout_pending(cluster):
            if ledger.prune(UPGRADER) + ledger.prune(UPGRADE_TARGET):
                logger.info(f"Pruned stale upgrade entries for {cluster.key}")
            return UpgradeResult(STEADY, from_version=desired, to_version=desired)

        self._check_target(cluster, ledger, desired)

        result = UpgradeResult(IN_PROGRESS, from_version=status.version, to_version=desired)
        for pool in upgrade_order(cluster.spec.node_pools):
            try:
                done = self._advance_pool(cluster, ledger, pool, result)
            except KubernetesError as e:
                logger.error(f"Upgrade of {pool.component} in {cluster.key} rejected: {e.message}")
                result.errors.append(e)
                result.outcome = BLOCKED
                return result
            if not done:
                return result

        # Every pool is Upgraded
        logger.info(f"Cluster {cluster.key} upgraded from {status.version} to {desired}")
        status.version = desired
        ledger.prune(UPGRADER)
        ledger.prune(UPGRADE_TARGET)
        result.outcome = COMPLETED
        return result

    def _workload(self, cluster: OpenSearchCluster, pool: NodePool) -> ChildResource | None:
        return self.store.get(
            KIND_STATEFUL_SET, cluster.namespace, workload_name(cluster, pool.component)
        )

    def _rollout_pending(self, cluster: OpenSearchCluster) -> bool:
        """Whether an existing workload still runs something other than the cluster image."""
        target = cluster_image(cluster)
        for pool in cluster.spec.node_pools:
            workload = self._workload(cluster, pool)
            if workload is not None and (workload.image != target or PARTITION in workload.spec):
                return True
        return False

    def _check_target(self, cluster: OpenSearchCluster, ledger: StatusLedger, desired: str) -> None:
        """Tie the ``Upgrader`` entries to the version they were recorded for.

        Entries without a recorded target are taken to be for ``desired``.
        """
        recorded = [e.description for e in ledger.filter(UPGRADE_TARGET)]
        if recorded == [desired]:
            return
        if recorded:
            logger.info(
                f"Upgrade of {cluster.key} retargeted from {', '.join(recorded)} to {desired}"
            )
            ledger.prune(UPGRADER)
            ledger.prune(UPGRADE_TARGET)
        if ledger.filter(UPGRADER):
            ledger.set(UPGRADE_TARGET, desired, TARGETED)

    def _advance_pool(
        self,
        cluster: OpenSearchCluster,
        ledger: StatusLedger,
        pool: NodePool,
        result: UpgradeResult,
    ) -> bool:
        """Move one pool forward.

        Returns:
            True if the pool is fully upgraded and the next one may proceed
        """
        workload = self._workload(cluster, pool)
        if workload is None:
            # Not created yet; the structural reconciler will create it at the new image
            logger.debug(f"Workload for {pool.component} does not exist yet")
            result.outcome = BLOCKED
            return False

        target = cluster_image(cluster)
        entry = ledger.get(UPGRADER, pool.component)

        if entry is not None and entry.status == UPGRADED:
            self._set_image(workload, target, result)
            return True

        if entry is None:
            if not self.probe.is_healthy(cluster):
                logger.info(
                    f"Waiting for {cluster.key} to be healthy before upgrading {workload.name}"
                )
                result.outcome = BLOCKED
                return False
            logger.info(f"Starting upgrade of {workload.name} to {cluster.spec.general.version}")
            entry = ledger.set(UPGRADER, pool.component, UPGRADING)
            ledger.set(UPGRADE_TARGET, cluster.spec.general.version, TARGETED)
            if self.persist_status is not None:
                self.persist_status(cluster, ledger)

        elif entry.status != UPGRADING:
            logger.warning(f"Unexpected upgrade status '{entry.status}' for {pool.component}")
            result.outcome = BLOCKED
            return False

        return self._continue_pool(cluster, ledger, pool, workload, entry, target, result)

    def _continue_pool(
        self,
        cluster: OpenSearchCluster,
        ledger: StatusLedger,
        pool: NodePool,
        workload: ChildResource,
        entry: ComponentStatus,
        target: str,
        result: UpgradeResult,
    ) -> bool:
        previous = image_for_version(cluster, cluster.status.version)
        if (
            workload.image not in (previous, target)
            and PARTITION not in workload.spec
            and not rollout_complete(workload, workload.image)
        ):
            # Still rolling towards an older target; let it settle first
            logger.info(f"{workload.name} is still converging to {workload.image}")
            return False

        drain = self._needs_drain(cluster, pool)
        if workload.image != target:
            if drain:
                return self._restart_member(
                    cluster, pool, workload, workload.spec.get("replicas", 0) - 1, target, result
                )
            self._set_image(workload, target, result)
            return False

        partition = workload.spec.get(PARTITION, 0)
        if partition:
            if not (partition_ready(workload) and self.probe.is_healthy(cluster)):
                logger.debug(f"Waiting for {workload.name} members from {partition} to roll out")
                return False
            return self._restart_member(cluster, pool, workload, partition - 1, target, result)

        if not (rollout_complete(workload, target) and self.probe.is_healthy(cluster)):
            logger.debug(f"Waiting for {workload.name} to roll out {target}")
            return False

        if drain and not self.drainer.release(cluster, member_names(cluster, pool)):
            result.outcome = BLOCKED
            return False

        ledger.replace(
            entry,
            ComponentStatus(component=UPGRADER, description=pool.component, status=UPGRADED),
        )
        logger.info(f"Node pool {pool.component} upgraded to {target}")
        return True

    def _restart_member(
        self,
        cluster: OpenSearchCluster,
        pool: NodePool,
        workload: ChildResource,
        ordinal: int,
        target: str,
        result: UpgradeResult,
    ) -> bool:
        """Drain one member, then let it and every member above it run ``target``."""
        if ordinal >= 0:
            member = member_name(cluster, pool.component, ordinal)
            try:
                self.drainer.drain(cluster, [member])
            except DrainTimeout as e:
                logger.warning(f"Drain of {member} did not complete: {e.message}")
                result.errors.append(e)
                result.outcome = BLOCKED
                return False
        self._set_image(workload, target, result, partition=max(ordinal, 0))
        return False

    def _needs_drain(self, cluster: OpenSearchCluster, pool: NodePool) -> bool:
        return cluster.spec.general.drain_data_nodes and DATA_ROLE in pool.roles

    def _set_image(
        self,
        workload: ChildResource,
        image: str,
        result: UpgradeResult,
        partition: int = 0,
    ) -> None:
        spec = {**workload.spec, "image": image}
        if partition:
            spec[PARTITION] = partition
        else:
            spec.pop(PARTITION, None)
        if spec == workload.spec:
            return
        logger.info(
            f"Updating {workload.name} image {workload.image} -> {image}"
            + (f" from member {partition}" if partition else "")
        )
        self.store.update(workload.model_copy(update={"spec": spec}).with_hash())
        result.upgraded_images.append(workload.name)
