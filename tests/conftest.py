"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import Verbosity, settings

from opensearch_operator.exceptions import DrainTimeout
from opensearch_operator.models.cluster import OpenSearchCluster
from opensearch_operator.models.resources import KIND_STATEFUL_SET
from opensearch_operator.store import InMemoryStore

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


def cluster_manifest(name: str = "my-cluster", version: str = "1.0.0", **general) -> dict:
    """A three-pool cluster: managers, data nodes and coordinating clients."""
    return {
        "apiVersion": "opensearch.opster.io/v1",
        "kind": "OpenSearchCluster",
        "metadata": {"name": name, "namespace": "default", "uid": f"uid-{name}"},
        "spec": {
            "general": {
                "serviceName": "es-svc",
                "version": version,
                "additionalConfig": {"foo": "bar"},
                **general,
            },
            "nodePools": [
                {
                    "component": "master",
                    "replicas": 3,
                    "roles": ["master"],
                    "resources": {"limits": {"cpu": "500m", "memory": "2Gi"}},
                },
                {
                    "component": "nodes",
                    "replicas": 3,
                    "roles": ["data"],
                    "resources": {"limits": {"cpu": "500m", "memory": "2Gi"}},
                },
                {
                    "component": "client",
                    "replicas": 2,
                    "roles": ["ingest"],
                    "additionalConfig": {"baz": "bat"},
                    "resources": {"limits": {"cpu": "500m", "memory": "2Gi"}},
                },
            ],
        },
    }


@pytest.fixture
def make_cluster():
    """Factory for cluster objects built from ``cluster_manifest``."""

    def _make(**kwargs) -> OpenSearchCluster:
        return OpenSearchCluster.from_manifest(cluster_manifest(**kwargs))

    return _make


@pytest.fixture
def cluster(make_cluster):
    return make_cluster()


@pytest.fixture
def store():
    return InMemoryStore()


class FakeProbe:
    """Health probe whose answers are set by the test."""

    def __init__(self, quorum: bool = False, healthy: bool = True):
        self.quorum = quorum
        self.healthy = healthy

    def has_quorum(self, cluster) -> bool:
        return self.quorum

    def is_healthy(self, cluster) -> bool:
        return self.healthy


class FakeDrainer:
    """Drainer recording calls; ``succeed=False`` makes every drain time out."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.drained: list[list[str]] = []
        self.released: list[list[str]] = []

    def drain(self, cluster, members) -> None:
        self.drained.append(list(members))
        if not self.succeed:
            raise DrainTimeout(f"shards still on {', '.join(members)}")

    def release(self, cluster, members) -> bool:
        self.released.append(list(members))
        return True


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def drainer():
    return FakeDrainer()


@pytest.fixture
def roll_out():
    """Play the platform: report every workload in a store as fully rolled out."""

    def _roll_out(store: InMemoryStore, namespace: str = "default") -> None:
        for workload in store.list(KIND_STATEFUL_SET, namespace):
            replicas = workload.spec["replicas"]
            store.set_runtime_status(
                KIND_STATEFUL_SET,
                workload.namespace,
                workload.name,
                ready_replicas=replicas,
                updated_replicas=replicas,
            )

    return _roll_out
