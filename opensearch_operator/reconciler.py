"""Child-resource reconciler.

Diffs desired descriptors against what the store holds and creates, updates
or deletes resources to match. Version fields are never touched here: an
update carries the observed image forward so that only the upgrade
orchestrator changes what version a workload runs.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from opensearch_operator.exceptions import OperatorError, OwnershipConflict, TransientInfraError
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import OpenSearchCluster
from opensearch_operator.models.resources import (
    KIND_SERVICE,
    KIND_STATEFUL_SET,
    VERSION_FIELDS,
    ChildResource,
    mutable_fields,
)
from opensearch_operator.names import cluster_labels
from opensearch_operator.store import ResourceStore

logger = get_logger(__name__)

CREATE = "create"
UPDATE = "update"
DELETE = "delete"

# Kinds whose leftovers are removed when they drop out of the desired set
PRUNABLE_KINDS = (KIND_STATEFUL_SET, KIND_SERVICE)


@dataclass
class Action:
    verb: str
    resource: ChildResource

    def __str__(self) -> str:
        return f"{self.verb} {self.resource}"


@dataclass
class ReconcileResult:
    applied: list[Action] = field(default_factory=list)
    errors: list[OperatorError] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)

    @property
    def transient(self) -> bool:
        return any(isinstance(e, TransientInfraError) for e in self.errors)


def needs_update(observed: ChildResource, desired: ChildResource) -> bool:
    """Whether the structural part of ``observed`` differs from ``desired``."""
    return (
        mutable_fields(observed.spec) != mutable_fields(desired.spec)
        or observed.labels != desired.labels
    )


def carry_version(observed: ChildResource, desired: ChildResource) -> ChildResource:
    """``desired`` with the version fields of ``observed`` kept in place."""
    spec = dict(desired.spec)
    for name in VERSION_FIELDS:
        if name in observed.spec:
            spec[name] = observed.spec[name]
        else:
            spec.pop(name, None)
    return desired.model_copy(update={"spec": spec}).with_hash()


class ChildResourceReconciler:
    """Applies structural differences between desired and observed resources."""

    def __init__(self, store: ResourceStore, plan_workers: int = 4):
        self.store = store
        self.plan_workers = plan_workers

    def _plan_one(self, cluster: OpenSearchCluster, desired: ChildResource) -> Action | None:
        observed = self.store.get(desired.kind, desired.namespace, desired.name)
        if observed is None:
            return Action(CREATE, desired)
        if not observed.is_owned_by(cluster.metadata.uid):
            raise OwnershipConflict(
                desired.kind,
                desired.name,
                observed.owner.uid if observed.owner else None,
                f"Refusing to adopt a resource not created for cluster {cluster.key}",
            )
        if needs_update(observed, desired):
            return Action(UPDATE, carry_version(observed, desired))
        return None

    def _plan_pruning(
        self, cluster: OpenSearchCluster, desired: list[ChildResource]
    ) -> list[Action]:
        wanted = {r.key for r in desired}
        actions = []
        for kind in PRUNABLE_KINDS:
            for observed in self.store.list(kind, cluster.namespace, cluster_labels(cluster)):
                if observed.key in wanted or not observed.is_owned_by(cluster.metadata.uid):
                    continue
                actions.append(Action(DELETE, observed))
        return actions

    def plan(
        self, cluster: OpenSearchCluster, desired: list[ChildResource]
    ) -> tuple[list[Action], list[OperatorError]]:
        """Work out which writes would bring the store in line with ``desired``.

        Lookups run concurrently; nothing is written.

        Returns:
            (actions in apply order, per-resource errors)
        """
        actions: list[Action] = []
        errors: list[OperatorError] = []

        def check(resource: ChildResource):
            try:
                return self._plan_one(cluster, resource)
            except OperatorError as e:
                return e

        with ThreadPoolExecutor(max_workers=max(1, self.plan_workers)) as pool:
            outcomes = list(pool.map(check, desired))

        for resource, outcome in zip(desired, outcomes):
            if isinstance(outcome, OperatorError):
                logger.warning(f"Skipping {resource}: {outcome.message}")
                errors.append(outcome)
            elif outcome is not None:
                actions.append(outcome)

        try:
            actions.extend(self._plan_pruning(cluster, desired))
        except OperatorError as e:
            logger.warning(f"Could not list resources to prune for {cluster.key}: {e.message}")
            errors.append(e)

        return actions, errors

    def apply(self, actions: list[Action]) -> ReconcileResult:
        """Perform the planned writes one at a time, in order."""
        result = ReconcileResult()
        for action in actions:
            resource = action.resource
            try:
                if action.verb == CREATE:
                    self.store.create(resource)
                elif action.verb == UPDATE:
                    self.store.update(resource)
                else:
                    self.store.delete(resource.kind, resource.namespace, resource.name)
            except OperatorError as e:
                logger.warning(f"Failed to {action}: {e.message}")
                result.errors.append(e)
                continue
            logger.info(f"Applied: {action}")
            result.applied.append(action)
        return result

    def reconcile(
        self, cluster: OpenSearchCluster, desired: list[ChildResource]
    ) -> ReconcileResult:
        """Plan and apply in one go.

        A failure on one resource does not stop the others.
        """
        actions, errors = self.plan(cluster, desired)
        result = self.apply(actions)
        result.errors = errors + result.errors
        return result
