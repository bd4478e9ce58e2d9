"""Basic tests to verify the package imports and the models load."""

import typing

import pytest
from pydantic import ValidationError

from opensearch_operator import __version__
from opensearch_operator.models.cluster import (
    PHASE_PENDING,
    ClusterStatus,
    GeneralConfig,
    NodePool,
    OpenSearchCluster,
    PersistenceConfig,
)


def test_version():
    assert __version__ == "0.1.0"


def test_imports():
    """Test that all main modules can be imported."""
    from opensearch_operator import (  # noqa: F401
        admin,
        bootstrap,
        cli,
        compiler,
        config,
        controller,
        discovery,
        exceptions,
        kube,
        logging_config,
        loop,
        orchestrator,
        reconciler,
        status,
        store,
    )


@pytest.mark.parametrize("method", ["get", "list", "create", "list_clusters", "get_cluster"])
def test_store_annotations_resolve(method):
    """Stores define a ``list`` method; their ``list[...]`` annotations must still resolve."""
    from opensearch_operator.kube import KubernetesStore
    from opensearch_operator.store import InMemoryStore, ResourceStore

    for store_class in (ResourceStore, InMemoryStore, KubernetesStore):
        hints = typing.get_type_hints(getattr(store_class, method))
        assert "return" in hints


def test_cluster_from_camel_case_manifest(cluster):
    assert cluster.name == "my-cluster"
    assert cluster.key == "default/my-cluster"
    assert cluster.spec.general.service_name == "es-svc"
    assert cluster.spec.general.additional_config == {"foo": "bar"}
    assert [p.component for p in cluster.spec.node_pools] == ["master", "nodes", "client"]
    assert cluster.spec.node_pools[2].additional_config == {"baz": "bat"}


def test_status_defaults(cluster):
    assert cluster.status.phase == PHASE_PENDING
    assert cluster.status.components_status == []
    assert cluster.status.version == ""
    assert cluster.status.initialized is False


def test_null_components_status_becomes_empty_list():
    status = ClusterStatus.model_validate({"componentsStatus": None})
    assert status.components_status == []


def test_manifest_round_trip_uses_camel_case(cluster):
    manifest = cluster.to_manifest()
    assert "nodePools" in manifest["spec"]
    assert "additionalConfig" in manifest["spec"]["general"]
    assert OpenSearchCluster.from_manifest(manifest) == cluster


def test_save_and_load(tmp_path, cluster):
    path = tmp_path / "cluster.yaml"
    cluster.save(str(path))
    assert OpenSearchCluster.load(str(path)) == cluster


def test_set_vm_max_map_count_alias():
    general = GeneralConfig.model_validate({"setVMMaxMapCount": True})
    assert general.set_vm_max_map_count is True


@pytest.mark.parametrize("vendor", ["Opensearch", "Op", "OP", "os", "opensearch"])
def test_vendor_accepts_known_spellings(vendor):
    assert GeneralConfig(vendor=vendor).vendor == vendor


def test_vendor_rejects_unknown():
    with pytest.raises(ValidationError):
        GeneralConfig(vendor="elasticsearch")


def test_http_port_range():
    with pytest.raises(ValidationError):
        GeneralConfig(http_port=70000)


def test_node_pool_rejects_negative_replicas():
    with pytest.raises(ValidationError):
        NodePool(component="nodes", replicas=-1)


def test_node_pool_rejects_empty_component():
    with pytest.raises(ValidationError):
        NodePool(component="", replicas=1)


@pytest.mark.parametrize(
    "roles,eligible",
    [(["master"], True), (["cluster_manager", "data"], True), (["data", "ingest"], False), ([], False)],
)
def test_manager_eligibility(roles, eligible):
    assert NodePool(component="p", replicas=1, roles=roles).is_manager_eligible is eligible


def test_persistence_sources():
    persistence = PersistenceConfig.model_validate({"pvc": {"storageClass": "gp2"}, "emptyDir": {}})
    assert persistence.sources() == ["pvc", "emptyDir"]
    assert persistence.pvc.storage_class == "gp2"
