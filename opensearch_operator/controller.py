"""One reconciliation pass for one cluster.

Order within a pass:

1. compile the spec (``InvalidSpec`` is recorded in the status and stops the pass),
2. apply structural differences of the child resources,
3. advance the bootstrap state machine,
4. take at most one upgrade step,
5. write the status back if anything in it changed.

Every step is idempotent, so a pass can be abandoned or repeated at any point.
"""

from dataclasses import dataclass, field

from opensearch_operator.admin import Drainer, HealthProbe
from opensearch_operator.bootstrap import BootstrapController
from opensearch_operator.compiler import compile_cluster
from opensearch_operator.exceptions import (
    InvalidSpec,
    KubernetesError,
    OperatorError,
    OwnershipConflict,
)
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import (
    PHASE_PENDING,
    PHASE_RUNNING,
    ClusterStatus,
    OpenSearchCluster,
)
from opensearch_operator.orchestrator import UpgradeOrchestrator
from opensearch_operator.reconciler import ChildResourceReconciler
from opensearch_operator.status import INVALID_SPEC, VALIDATION, StatusLedger
from opensearch_operator.store import ResourceStore

logger = get_logger(__name__)


@dataclass
class PassResult:
    """What a pass did and whether the cluster should be looked at again soon."""

    requeue: bool = False
    requeue_after: float | None = None
    writes: int = 0
    errors: list[OperatorError] = field(default_factory=list)


class ClusterController:
    """Drives one cluster one step closer to its desired state."""

    def __init__(
        self,
        store: ResourceStore,
        probe: HealthProbe,
        drainer: Drainer,
        plan_workers: int = 4,
        poll_seconds: float = 30.0,
    ):
        self.store = store
        self.poll_seconds = poll_seconds
        self.reconciler = ChildResourceReconciler(store, plan_workers=plan_workers)
        self.bootstrap = BootstrapController(store, probe)
        self.orchestrator = UpgradeOrchestrator(
            store, probe, drainer, persist_status=self._persist_status
        )

    def _persist_status(self, cluster: OpenSearchCluster, ledger: StatusLedger) -> None:
        ledger.write_to(cluster.status)
        self.store.update_cluster_status(cluster)

    def reconcile(self, cluster: OpenSearchCluster) -> PassResult:
        """Run one pass.

        Raises:
            TransientInfraError: If the store became unavailable mid-pass; nothing
                is written to the status in that case
        """
        result = PassResult()
        before = cluster.status.model_copy(deep=True)
        ledger = StatusLedger.from_status(cluster.status)

        try:
            desired = compile_cluster(cluster)
        except InvalidSpec as e:
            logger.error(f"Invalid spec for {cluster.key}: {e.message}")
            ledger.prune(VALIDATION)
            ledger.set(VALIDATION, e.message, INVALID_SPEC)
            result.errors.append(e)
            self._finish(cluster, ledger, before, result)
            return result
        ledger.prune(VALIDATION)

        structural = self.reconciler.reconcile(cluster, desired)
        result.writes += len(structural.applied)
        result.errors.extend(structural.errors)
        if structural.transient:
            result.requeue = True

        try:
            boot = self.bootstrap.reconcile(cluster)
        except (OwnershipConflict, KubernetesError) as e:
            logger.error(f"Bootstrap of {cluster.key} blocked: {e.message}")
            result.errors.append(e)
        else:
            if not cluster.status.initialized:
                result.requeue = True
                result.requeue_after = self.poll_seconds
            if boot.changed:
                logger.debug(f"Bootstrap state of {cluster.key}: {boot.state}")

        upgrade = self.orchestrator.reconcile(cluster, ledger)
        result.writes += len(upgrade.upgraded_images)
        result.errors.extend(upgrade.errors)
        if upgrade.requeue:
            result.requeue = True
            result.requeue_after = self.poll_seconds

        cluster.status.phase = PHASE_RUNNING if cluster.status.initialized else PHASE_PENDING
        self._finish(cluster, ledger, before, result)
        return result

    def _finish(
        self,
        cluster: OpenSearchCluster,
        ledger: StatusLedger,
        before: ClusterStatus,
        result: PassResult,
    ) -> None:
        ledger.write_to(cluster.status)
        if cluster.status != before:
            self.store.update_cluster_status(cluster)
            result.writes += 1
            logger.info(
                f"Cluster {cluster.key}: phase={cluster.status.phase} "
                f"version={cluster.status.version or '-'} "
                f"components={len(cluster.status.components_status)}"
            )

    def reconcile_key(self, namespace: str, name: str) -> PassResult:
        """Fetch the latest cluster object and reconcile it.

        A cluster that no longer exists needs no work: its child resources are
        removed through their owner references.
        """
        cluster = self.store.get_cluster(namespace, name)
        if cluster is None:
            logger.info(f"Cluster {namespace}/{name} is gone, nothing to do")
            return PassResult()
        if cluster.metadata.deletion_timestamp:
            logger.info(f"Cluster {cluster.key} is being deleted, skipping")
            return PassResult()
        return self.reconcile(cluster)

