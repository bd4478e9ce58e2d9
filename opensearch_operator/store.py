"""Child-resource store interface and an in-memory implementation.

The reconciler talks to the platform only through ``ResourceStore``. The
in-memory store keeps an explicit owner reference table so that deleting a
cluster cascades to everything it owns, the way platform garbage collection
does for the Kubernetes-backed store.
"""

from __future__ import annotations

import copy
import threading
from typing import Protocol, runtime_checkable

from opensearch_operator.exceptions import KubernetesError
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import OpenSearchCluster
from opensearch_operator.models.resources import ChildResource

logger = get_logger(__name__)

ResourceKey = tuple[str, str, str]


@runtime_checkable
class ResourceStore(Protocol):
    """Read and write access to clusters and their child resources.

    Implementations raise ``TransientInfraError`` when the backing store is
    temporarily unavailable.
    """

    def get(self, kind: str, namespace: str, name: str) -> ChildResource | None: ...

    def list(
        self, kind: str, namespace: str, labels: dict[str, str] | None = None
    ) -> list[ChildResource]: ...

    def create(self, resource: ChildResource) -> ChildResource: ...

    def update(self, resource: ChildResource) -> ChildResource: ...

    def delete(self, kind: str, namespace: str, name: str) -> None: ...

    def get_cluster(self, namespace: str, name: str) -> OpenSearchCluster | None: ...

    def list_clusters(self, namespace: str | None = None) -> list[OpenSearchCluster]: ...

    def update_cluster_status(self, cluster: OpenSearchCluster) -> None: ...


class InMemoryStore:
    """Thread-safe ``ResourceStore`` kept in process memory.

    Every mutating call is appended to ``writes`` as ``(verb, kind, name)``,
    which makes "no writes happened" directly observable.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._resources: dict[ResourceKey, ChildResource] = {}
        self._clusters: dict[tuple[str, str], OpenSearchCluster] = {}
        # owner uid -> keys of the resources it owns
        self._owned: dict[str, set[ResourceKey]] = {}
        self.writes: list[tuple[str, str, str]] = []

    def _record(self, verb: str, kind: str, name: str) -> None:
        self.writes.append((verb, kind, name))
        logger.debug(f"store {verb} {kind} {name}")

    def _index(self, resource: ChildResource) -> None:
        for keys in self._owned.values():
            keys.discard(resource.key)
        if resource.owner is not None:
            self._owned.setdefault(resource.owner.uid, set()).add(resource.key)

    def get(self, kind: str, namespace: str, name: str) -> ChildResource | None:
        with self._lock:
            resource = self._resources.get((kind, namespace, name))
            return copy.deepcopy(resource) if resource is not None else None

    def list(
        self, kind: str, namespace: str, labels: dict[str, str] | None = None
    ) -> list[ChildResource]:
        with self._lock:
            return [
                copy.deepcopy(r)
                for key, r in sorted(self._resources.items())
                if key[0] == kind
                and key[1] == namespace
                and all(r.labels.get(k) == v for k, v in (labels or {}).items())
            ]

    def create(self, resource: ChildResource) -> ChildResource:
        with self._lock:
            if resource.key in self._resources:
                raise KubernetesError(f"{resource} already exists")
            stored = copy.deepcopy(resource)
            self._resources[resource.key] = stored
            self._index(stored)
            self._record("create", resource.kind, resource.name)
            return copy.deepcopy(stored)

    def update(self, resource: ChildResource) -> ChildResource:
        with self._lock:
            existing = self._resources.get(resource.key)
            if existing is None:
                raise KubernetesError(f"{resource} does not exist")
            # Runtime status belongs to the platform, not to the writer
            stored = resource.model_copy(update={"status": existing.status}, deep=True)
            self._resources[resource.key] = stored
            self._index(stored)
            self._record("update", resource.kind, resource.name)
            return copy.deepcopy(stored)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        with self._lock:
            resource = self._resources.pop((kind, namespace, name), None)
            if resource is None:
                return
            if resource.owner is not None:
                self._owned.get(resource.owner.uid, set()).discard(resource.key)
            self._record("delete", kind, name)

    def owned_by(self, uid: str) -> list[ChildResource]:
        with self._lock:
            return [copy.deepcopy(self._resources[k]) for k in sorted(self._owned.get(uid, ()))]

    def delete_owned(self, uid: str) -> int:
        """Cascade-delete everything owned by ``uid``.

        Returns:
            Number of resources deleted
        """
        with self._lock:
            keys = sorted(self._owned.pop(uid, set()))
            for kind, namespace, name in keys:
                self._resources.pop((kind, namespace, name), None)
                self._record("delete", kind, name)
            return len(keys)

    def set_runtime_status(self, kind: str, namespace: str, name: str, **status) -> None:
        """Stand in for the platform reporting runtime state of a resource."""
        with self._lock:
            self._resources[(kind, namespace, name)].status.update(status)

    def put_cluster(self, cluster: OpenSearchCluster) -> None:
        with self._lock:
            self._clusters[(cluster.namespace, cluster.name)] = cluster.model_copy(deep=True)

    def get_cluster(self, namespace: str, name: str) -> OpenSearchCluster | None:
        with self._lock:
            cluster = self._clusters.get((namespace, name))
            return cluster.model_copy(deep=True) if cluster is not None else None

    def list_clusters(self, namespace: str | None = None) -> list[OpenSearchCluster]:
        with self._lock:
            return [
                c.model_copy(deep=True)
                for key, c in sorted(self._clusters.items())
                if namespace is None or key[0] == namespace
            ]

    def update_cluster_status(self, cluster: OpenSearchCluster) -> None:
        with self._lock:
            stored = self._clusters.get((cluster.namespace, cluster.name))
            if stored is None:
                raise KubernetesError(f"Cluster {cluster.key} does not exist")
            stored.status = cluster.status.model_copy(deep=True)
            self._record("status", cluster.kind, cluster.name)

    def delete_cluster(self, namespace: str, name: str) -> int:
        """Remove a cluster object and cascade to its child resources."""
        with self._lock:
            cluster = self._clusters.pop((namespace, name), None)
            if cluster is None:
                return 0
            return self.delete_owned(cluster.metadata.uid)
