"""Kubernetes-backed resource store.

Child resources are written as real StatefulSets, Services and Pods. The
operator's own view of each resource is kept in the ``opster.io/last-applied``
annotation; replica count, image and runtime status are always read from the
live object so that drift there is seen and corrected.
"""

from __future__ import annotations

import base64
import contextlib
import json
import threading
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from opensearch_operator.admin import Credentials
from opensearch_operator.exceptions import KubernetesError, TransientInfraError
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import (
    API_GROUP,
    API_VERSION,
    PLURAL,
    OpenSearchCluster,
    OwnerReference,
)
from opensearch_operator.models.resources import (
    CLUSTER_LABEL,
    KIND_POD,
    KIND_SERVICE,
    KIND_STATEFUL_SET,
    NODE_POOL_LABEL,
    PARTITION,
    ChildResource,
)
from opensearch_operator.names import TRANSPORT_PORT

logger = get_logger(__name__)

LAST_APPLIED_ANNOTATION = "opster.io/last-applied"
CONTAINER_NAME = "opensearch"
DATA_MOUNT_PATH = "/usr/share/opensearch/data"
SYSCTL_IMAGE = "busybox:1.36"
DEFAULT_ADMIN = Credentials(username="admin", password="admin")


def load_kube_config() -> None:
    """Use the in-cluster service account, falling back to kubeconfig."""
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.debug("Loaded Kubernetes configuration from kubeconfig")


@contextlib.contextmanager
def api_errors(what: str):
    """Translate client errors into operator errors.

    Throttling, server errors and connection problems are transient.
    """
    try:
        yield
    except ApiException as e:
        if e.status == 429 or (e.status or 0) >= 500:
            raise TransientInfraError(f"Kubernetes API unavailable while trying to {what}", e.reason)
        raise KubernetesError(f"Kubernetes API rejected request to {what}", f"{e.status} {e.reason}")
    except HTTPError as e:
        raise TransientInfraError(f"Could not reach Kubernetes API to {what}", str(e))


# Manifest conversion


def _metadata(resource: ChildResource) -> dict[str, Any]:
    annotations = {
        **resource.annotations,
        LAST_APPLIED_ANNOTATION: json.dumps(resource.spec, sort_keys=True),
    }
    metadata = {
        "name": resource.name,
        "namespace": resource.namespace,
        "labels": resource.labels,
        "annotations": annotations,
    }
    if resource.owner is not None:
        metadata["ownerReferences"] = [resource.owner.model_dump(by_alias=True)]
    return metadata


def _pod_spec(spec: dict[str, Any]) -> dict[str, Any]:
    has_data_volume = bool(spec.get("volumes") or spec.get("volume_claim_templates"))
    container = {
        "name": CONTAINER_NAME,
        "image": spec["image"],
        "env": spec.get("env", []),
        "resources": spec.get("resources") or {},
        "ports": [
            {"name": "http", "containerPort": spec.get("http_port", 9200)},
            {"name": "transport", "containerPort": TRANSPORT_PORT},
        ],
    }
    if spec.get("image_pull_policy"):
        container["imagePullPolicy"] = spec["image_pull_policy"]
    if has_data_volume:
        container["volumeMounts"] = [{"name": "data", "mountPath": DATA_MOUNT_PATH}]

    pod: dict[str, Any] = {"containers": [container]}
    if spec.get("init_sysctl"):
        pod["initContainers"] = [
            {
                "name": "init-sysctl",
                "image": SYSCTL_IMAGE,
                "command": ["sysctl", "-w", "vm.max_map_count=262144"],
                "securityContext": {"privileged": True},
            }
        ]
    if spec.get("volumes"):
        pod["volumes"] = spec["volumes"]
    if spec.get("node_selector"):
        pod["nodeSelector"] = spec["node_selector"]
    if spec.get("tolerations"):
        pod["tolerations"] = spec["tolerations"]
    if spec.get("affinity"):
        pod["affinity"] = spec["affinity"]
    if spec.get("service_account"):
        pod["serviceAccountName"] = spec["service_account"]
    if spec.get("image_pull_secrets"):
        pod["imagePullSecrets"] = spec["image_pull_secrets"]
    return pod


def _claim_template(claim: dict[str, Any]) -> dict[str, Any]:
    spec = {
        "accessModes": claim["access_modes"],
        "resources": {"requests": {"storage": claim["storage"]}},
    }
    if claim.get("storage_class"):
        spec["storageClassName"] = claim["storage_class"]
    return {"metadata": {"name": claim["name"]}, "spec": spec}


def to_manifest(resource: ChildResource) -> dict[str, Any]:
    """Render a descriptor as a Kubernetes manifest."""
    spec = resource.spec
    metadata = _metadata(resource)
    if resource.kind == KIND_STATEFUL_SET:
        selector = {k: v for k, v in resource.labels.items() if k in (CLUSTER_LABEL, NODE_POOL_LABEL)}
        return {
            "apiVersion": "apps/v1",
            "kind": KIND_STATEFUL_SET,
            "metadata": metadata,
            "spec": {
                "replicas": spec["replicas"],
                "serviceName": spec["service_name"],
                "podManagementPolicy": "Parallel",
                "updateStrategy": {
                    "type": "RollingUpdate",
                    "rollingUpdate": {"partition": spec.get(PARTITION, 0)},
                },
                "selector": {"matchLabels": selector},
                "template": {
                    "metadata": {"labels": resource.labels},
                    "spec": _pod_spec(spec),
                },
                "volumeClaimTemplates": [
                    _claim_template(c) for c in spec.get("volume_claim_templates", [])
                ],
            },
        }
    if resource.kind == KIND_SERVICE:
        service_spec = {
            "ports": [
                {"name": p["name"], "port": p["port"], "targetPort": p["target_port"]}
                for p in spec["ports"]
            ],
            "selector": spec["selector"],
            "publishNotReadyAddresses": spec.get("publish_not_ready_addresses", False),
        }
        if spec.get("headless"):
            service_spec["clusterIP"] = "None"
        return {"apiVersion": "v1", "kind": KIND_SERVICE, "metadata": metadata, "spec": service_spec}
    if resource.kind == KIND_POD:
        return {
            "apiVersion": "v1",
            "kind": KIND_POD,
            "metadata": metadata,
            "spec": _pod_spec(spec),
        }
    raise KubernetesError(f"Unsupported resource kind: {resource.kind}")


def _main_container(pod_spec: dict[str, Any]) -> dict[str, Any]:
    containers = pod_spec.get("containers") or [{}]
    return next((c for c in containers if c.get("name") == CONTAINER_NAME), containers[0])


def from_manifest(kind: str, manifest: dict[str, Any]) -> ChildResource:
    """Read a live object (camelCase dict) back into a descriptor."""
    metadata = manifest.get("metadata") or {}
    annotations = dict(metadata.get("annotations") or {})
    spec = json.loads(annotations.pop(LAST_APPLIED_ANNOTATION, "{}"))
    owner = None
    for ref in metadata.get("ownerReferences") or []:
        if ref.get("controller"):
            owner = OwnerReference.model_validate(ref)
            break

    live = manifest.get("spec") or {}
    live_status = manifest.get("status") or {}
    status: dict[str, Any] = {}
    if kind == KIND_STATEFUL_SET:
        spec["replicas"] = live.get("replicas", spec.get("replicas"))
        template_spec = (live.get("template") or {}).get("spec") or {}
        spec["image"] = _main_container(template_spec).get("image", spec.get("image"))
        rolling = (live.get("updateStrategy") or {}).get("rollingUpdate") or {}
        if rolling.get("partition"):
            spec[PARTITION] = rolling["partition"]
        else:
            spec.pop(PARTITION, None)
        status = {
            "ready_replicas": live_status.get("readyReplicas") or 0,
            "updated_replicas": live_status.get("updatedReplicas") or 0,
            "current_revision": live_status.get("currentRevision"),
            "update_revision": live_status.get("updateRevision"),
        }
    elif kind == KIND_POD:
        spec["image"] = _main_container(live).get("image", spec.get("image"))
        status = {"phase": live_status.get("phase")}

    return ChildResource(
        kind=kind,
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
        labels=metadata.get("labels") or {},
        annotations=annotations,
        owner=owner,
        spec=spec,
        status=status,
    )


class KubernetesStore:
    """``ResourceStore`` on top of the Kubernetes API.

    Deleting the cluster object cascades through owner references, so the
    platform's garbage collector plays the part of the owner table here.
    """

    def __init__(self, api_client: client.ApiClient | None = None):
        self.api_client = api_client or client.ApiClient()
        self.apps = client.AppsV1Api(self.api_client)
        self.core = client.CoreV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)

    def _to_dict(self, obj) -> dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    def _read(self, kind: str, namespace: str, name: str):
        if kind == KIND_STATEFUL_SET:
            return self.apps.read_namespaced_stateful_set(name, namespace)
        if kind == KIND_SERVICE:
            return self.core.read_namespaced_service(name, namespace)
        if kind == KIND_POD:
            return self.core.read_namespaced_pod(name, namespace)
        raise KubernetesError(f"Unsupported resource kind: {kind}")

    def get(self, kind: str, namespace: str, name: str) -> ChildResource | None:
        with api_errors(f"read {kind} {namespace}/{name}"):
            try:
                obj = self._read(kind, namespace, name)
            except ApiException as e:
                if e.status == 404:
                    return None
                raise
        return from_manifest(kind, self._to_dict(obj))

    def list(
        self, kind: str, namespace: str, labels: dict[str, str] | None = None
    ) -> list[ChildResource]:
        selector = ",".join(f"{k}={v}" for k, v in sorted((labels or {}).items()))
        with api_errors(f"list {kind} in {namespace}"):
            if kind == KIND_STATEFUL_SET:
                items = self.apps.list_namespaced_stateful_set(namespace, label_selector=selector).items
            elif kind == KIND_SERVICE:
                items = self.core.list_namespaced_service(namespace, label_selector=selector).items
            elif kind == KIND_POD:
                items = self.core.list_namespaced_pod(namespace, label_selector=selector).items
            else:
                raise KubernetesError(f"Unsupported resource kind: {kind}")
        return sorted(
            (from_manifest(kind, self._to_dict(item)) for item in items), key=lambda r: r.name
        )

    def create(self, resource: ChildResource) -> ChildResource:
        body = to_manifest(resource)
        with api_errors(f"create {resource}"):
            if resource.kind == KIND_STATEFUL_SET:
                obj = self.apps.create_namespaced_stateful_set(resource.namespace, body)
            elif resource.kind == KIND_SERVICE:
                obj = self.core.create_namespaced_service(resource.namespace, body)
            else:
                obj = self.core.create_namespaced_pod(resource.namespace, body)
        return from_manifest(resource.kind, self._to_dict(obj))

    def update(self, resource: ChildResource) -> ChildResource:
        body = to_manifest(resource)
        with api_errors(f"update {resource}"):
            if resource.kind == KIND_STATEFUL_SET:
                obj = self.apps.replace_namespaced_stateful_set(
                    resource.name, resource.namespace, body
                )
            elif resource.kind == KIND_SERVICE:
                # Patch keeps the allocated clusterIP
                obj = self.core.patch_namespaced_service(resource.name, resource.namespace, body)
            else:
                raise KubernetesError(f"{resource} cannot be updated in place")
        return from_manifest(resource.kind, self._to_dict(obj))

    def delete(self, kind: str, namespace: str, name: str) -> None:
        with api_errors(f"delete {kind} {namespace}/{name}"):
            try:
                if kind == KIND_STATEFUL_SET:
                    self.apps.delete_namespaced_stateful_set(name, namespace)
                elif kind == KIND_SERVICE:
                    self.core.delete_namespaced_service(name, namespace)
                elif kind == KIND_POD:
                    self.core.delete_namespaced_pod(name, namespace)
                else:
                    raise KubernetesError(f"Unsupported resource kind: {kind}")
            except ApiException as e:
                if e.status != 404:
                    raise

    def get_cluster(self, namespace: str, name: str) -> OpenSearchCluster | None:
        with api_errors(f"read cluster {namespace}/{name}"):
            try:
                obj = self.custom.get_namespaced_custom_object(
                    API_GROUP, API_VERSION, namespace, PLURAL, name
                )
            except ApiException as e:
                if e.status == 404:
                    return None
                raise
        return OpenSearchCluster.from_manifest(obj)

    def list_clusters(self, namespace: str | None = None) -> list[OpenSearchCluster]:
        with api_errors("list clusters"):
            if namespace:
                result = self.custom.list_namespaced_custom_object(
                    API_GROUP, API_VERSION, namespace, PLURAL
                )
            else:
                result = self.custom.list_cluster_custom_object(API_GROUP, API_VERSION, PLURAL)
        return [OpenSearchCluster.from_manifest(item) for item in result.get("items", [])]

    def update_cluster_status(self, cluster: OpenSearchCluster) -> None:
        body = {"status": cluster.status.model_dump(by_alias=True)}
        with api_errors(f"update status of {cluster.key}"):
            self.custom.patch_namespaced_custom_object_status(
                API_GROUP, API_VERSION, cluster.namespace, PLURAL, cluster.name, body
            )


class SecretCredentials:
    """Reads admin credentials from the secret named in the cluster's security config."""

    def __init__(self, core: client.CoreV1Api | None = None):
        self.core = core or client.CoreV1Api()

    def __call__(self, cluster: OpenSearchCluster) -> Credentials:
        security = cluster.spec.security
        ref = security.config.admin_credentials_secret if security and security.config else {}
        secret_name = ref.get("name")
        if not secret_name:
            return DEFAULT_ADMIN
        with api_errors(f"read secret {cluster.namespace}/{secret_name}"):
            secret = self.core.read_namespaced_secret(secret_name, cluster.namespace)
        data = secret.data or {}
        try:
            return Credentials(
                username=base64.b64decode(data["username"]).decode("utf-8"),
                password=base64.b64decode(data["password"]).decode("utf-8"),
            )
        except KeyError as e:
            raise KubernetesError(
                f"Secret {secret_name} has no {e.args[0]} field",
                "The admin credentials secret must contain 'username' and 'password'",
            )


def owner_key(resource: dict[str, Any]) -> str | None:
    """Work queue key of the cluster a child object belongs to."""
    metadata = resource.get("metadata") or {}
    cluster = (metadata.get("labels") or {}).get(CLUSTER_LABEL)
    if not cluster:
        return None
    return f"{metadata.get('namespace')}/{cluster}"


class Watcher:
    """Feeds cluster keys into a control loop from Kubernetes watch streams."""

    def __init__(self, store: KubernetesStore, enqueue, namespace: str | None = None):
        self.store = store
        self.enqueue = enqueue
        self.namespace = namespace
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def _clusters(self):
        w = watch.Watch()
        if self.namespace:
            return w, w.stream(
                self.store.custom.list_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                self.namespace,
                PLURAL,
                timeout_seconds=300,
            )
        return w, w.stream(
            self.store.custom.list_cluster_custom_object,
            API_GROUP,
            API_VERSION,
            PLURAL,
            timeout_seconds=300,
        )

    def _workloads(self):
        w = watch.Watch()
        if self.namespace:
            fn, args = self.store.apps.list_namespaced_stateful_set, (self.namespace,)
        else:
            fn, args = self.store.apps.list_stateful_set_for_all_namespaces, ()
        return w, w.stream(fn, *args, label_selector=CLUSTER_LABEL, timeout_seconds=300)

    def _run(self, open_stream, to_key) -> None:
        while not self._stop.is_set():
            try:
                w, stream = open_stream()
                for event in stream:
                    if self._stop.is_set():
                        w.stop()
                        break
                    key = to_key(event["object"])
                    if key:
                        self.enqueue(key)
            except (ApiException, HTTPError) as e:
                logger.warning(f"Watch interrupted, reconnecting: {e}")
                self._stop.wait(5)

    def _cluster_key(self, obj) -> str | None:
        metadata = obj.get("metadata") or {}
        return f"{metadata.get('namespace')}/{metadata.get('name')}"

    def _workload_key(self, obj) -> str | None:
        return owner_key(self.store._to_dict(obj))

    def start(self) -> None:
        for name, open_stream, to_key in (
            ("watch-clusters", self._clusters, self._cluster_key),
            ("watch-workloads", self._workloads, self._workload_key),
        ):
            thread = threading.Thread(
                target=self._run, args=(open_stream, to_key), name=name, daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        self._stop.set()
