"""Descriptors for the child resources owned by a cluster."""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, Field

from opensearch_operator.models.cluster import OwnerReference

KIND_STATEFUL_SET = "StatefulSet"
KIND_SERVICE = "Service"
KIND_POD = "Pod"

CLUSTER_LABEL = "opster.io/opensearch-cluster"
NODE_POOL_LABEL = "opster.io/opensearch-nodepool"
MANAGER_LABEL = "opster.io/opensearch-manager-eligible"
SPEC_HASH_ANNOTATION = "opster.io/spec-hash"

# Lowest member ordinal allowed to run a new image during a stepped rollout
PARTITION = "partition"

# Fields only the upgrade orchestrator may change
VERSION_FIELDS = ("image", PARTITION)


def spec_hash(spec: dict[str, Any]) -> str:
    """Content hash of a resource spec, stable across dict ordering."""
    canonical = json.dumps(spec, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def mutable_fields(spec: dict[str, Any]) -> dict[str, Any]:
    """The part of a spec the structural reconciler is allowed to diff."""
    return {k: v for k, v in spec.items() if k not in VERSION_FIELDS}


class ChildResource(BaseModel):
    """A workload, endpoint or pod owned by a cluster.

    ``spec`` holds the operator's view of the resource, ``status`` the
    observed runtime state (ready replicas and the like) when read back.
    """

    kind: str
    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner: OwnerReference | None = None
    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.kind, self.namespace, self.name)

    @property
    def image(self) -> str | None:
        return self.spec.get("image")

    def with_hash(self) -> "ChildResource":
        """Return a copy annotated with the hash of its spec."""
        annotations = {**self.annotations, SPEC_HASH_ANNOTATION: spec_hash(self.spec)}
        return self.model_copy(update={"annotations": annotations})

    def is_owned_by(self, uid: str) -> bool:
        return self.owner is not None and self.owner.uid == uid

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"
