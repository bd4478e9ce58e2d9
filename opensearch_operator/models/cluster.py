"""Data models for the OpenSearchCluster resource."""

from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

API_GROUP = "opensearch.opster.io"
API_VERSION = "v1"
KIND = "OpenSearchCluster"
PLURAL = "opensearchclusters"

PHASE_PENDING = "PENDING"
PHASE_RUNNING = "RUNNING"

MANAGER_ROLES = ("master", "cluster_manager")


class CamelModel(BaseModel):
    """Base model that reads and writes the camelCase keys used by the CRD."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeneralConfig(CamelModel):
    """Cluster-wide settings."""

    http_port: int = 9200
    vendor: str = "opensearch"
    version: str = ""
    service_account: str | None = None
    service_name: str = ""
    set_vm_max_map_count: bool = Field(default=False, alias="setVMMaxMapCount")
    default_repo: str | None = None
    image: str | None = None
    image_pull_policy: str | None = None
    image_pull_secrets: list[dict[str, str]] = Field(default_factory=list)
    # Extra items to add to opensearch.yml, rendered as environment entries
    additional_config: dict[str, str] = Field(default_factory=dict)
    # Drain data nodes before restarting them during a rolling upgrade
    drain_data_nodes: bool = False

    @field_validator("vendor")
    @classmethod
    def validate_vendor(cls, v: str) -> str:
        """Accept the vendor spellings the CRD schema allows."""
        allowed = ["Opensearch", "Op", "OP", "os", "opensearch"]
        if v not in allowed:
            raise ValueError(f"vendor must be one of {allowed}, got '{v}'")
        return v

    @field_validator("http_port")
    @classmethod
    def validate_http_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"httpPort {v} is not a valid port")
        return v


class PVCSource(CamelModel):
    """Persistent volume claim template settings."""

    storage_class: str | None = Field(default=None, alias="storageClass")
    access_modes: list[str] = Field(default_factory=list)


class PersistenceConfig(CamelModel):
    """Data persistence for a node pool. Exactly one source may be set."""

    pvc: PVCSource | None = None
    empty_dir: dict[str, Any] | None = None
    host_path: dict[str, Any] | None = None

    def sources(self) -> list[str]:
        """Names of the persistence sources that are set."""
        return [
            name
            for name, value in (
                ("pvc", self.pvc),
                ("emptyDir", self.empty_dir),
                ("hostPath", self.host_path),
            )
            if value is not None
        ]


class NodePool(CamelModel):
    """One homogeneous group of cluster members."""

    component: str
    replicas: int = Field(ge=0)
    disk_size: str | None = None
    resources: dict[str, dict[str, str]] = Field(default_factory=dict)
    jvm: str | None = None
    roles: list[str] = Field(default_factory=list)
    tolerations: list[dict[str, Any]] = Field(default_factory=list)
    node_selector: dict[str, str] = Field(default_factory=dict)
    affinity: dict[str, Any] | None = None
    persistence: PersistenceConfig | None = None
    additional_config: dict[str, str] = Field(default_factory=dict)

    @field_validator("component")
    @classmethod
    def validate_component(cls, v: str) -> str:
        if not v:
            raise ValueError("component cannot be empty")
        return v

    @property
    def is_manager_eligible(self) -> bool:
        """Whether members of this pool may be elected cluster manager."""
        return any(role in MANAGER_ROLES for role in self.roles)


class ConfMgmt(CamelModel):
    """Additional services the operator may deploy."""

    auto_scaler: bool = False
    monitoring: bool = False
    ver_update: bool = Field(default=False, alias="VerUpdate")
    smart_scaler: bool = False


class TlsCertificateConfig(CamelModel):
    secret: dict[str, str] = Field(default_factory=dict)
    ca_secret: dict[str, str] = Field(default_factory=dict)


class DashboardsTlsConfig(TlsCertificateConfig):
    enable: bool = False
    generate: bool = False


class DashboardsConfig(CamelModel):
    """Companion dashboards service settings, consumed as-is."""

    enable: bool = False
    resources: dict[str, dict[str, str]] = Field(default_factory=dict)
    replicas: int = 1
    tls: DashboardsTlsConfig | None = None
    version: str = ""
    additional_config: dict[str, str] = Field(default_factory=dict)
    opensearch_credentials_secret: dict[str, str] = Field(default_factory=dict)


class TlsConfigTransport(TlsCertificateConfig):
    generate: bool = False
    per_node: bool = False
    nodes_dn: list[str] = Field(default_factory=list)
    admin_dn: list[str] = Field(default_factory=list)


class TlsConfigHttp(TlsCertificateConfig):
    generate: bool = False


class TlsConfig(CamelModel):
    transport: TlsConfigTransport | None = None
    http: TlsConfigHttp | None = None


class SecurityConfig(CamelModel):
    securityconfig_secret: dict[str, str] = Field(default_factory=dict, alias="securityConfigSecret")
    admin_secret: dict[str, str] = Field(default_factory=dict)
    # Secret with username/password used for drain and health calls
    admin_credentials_secret: dict[str, str] = Field(default_factory=dict)


class Security(CamelModel):
    """Security plugin settings. TLS material and users are managed elsewhere."""

    tls: TlsConfig | None = None
    config: SecurityConfig | None = None


class ClusterSpec(CamelModel):
    """Desired state of an OpenSearch cluster."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    conf_mgmt: ConfMgmt = Field(default_factory=ConfMgmt)
    dashboards: DashboardsConfig = Field(default_factory=DashboardsConfig)
    security: Security | None = None
    node_pools: list[NodePool] = Field(default_factory=list)


class ComponentStatus(CamelModel):
    """One entry of the per-component status ledger."""

    component: str = ""
    status: str = ""
    description: str = ""


class ClusterStatus(CamelModel):
    """Observed state, written only by the operator."""

    phase: str = PHASE_PENDING
    components_status: list[ComponentStatus] = Field(default_factory=list)
    version: str = ""
    initialized: bool = False

    @field_validator("components_status", mode="before")
    @classmethod
    def validate_components_status(cls, v):
        """The API server may hand back ``null`` for an empty list."""
        return v or []


class ObjectMeta(CamelModel):
    name: str
    namespace: str = "default"
    uid: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    generation: int = 0
    resource_version: str | None = None
    deletion_timestamp: str | None = None


class OwnerReference(CamelModel):
    """Back-reference from a child resource to the cluster that owns it."""

    api_version: str = f"{API_GROUP}/{API_VERSION}"
    kind: str = KIND
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


class OpenSearchCluster(CamelModel):
    """The cluster object: desired spec plus observed status."""

    api_version: str = f"{API_GROUP}/{API_VERSION}"
    kind: str = KIND
    metadata: ObjectMeta
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Work queue key, ``namespace/name``."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def owner_reference(self) -> OwnerReference:
        return OwnerReference(name=self.metadata.name, uid=self.metadata.uid)

    def to_manifest(self) -> dict[str, Any]:
        """Serialize in the camelCase form the API server expects."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_manifest(cls, data: dict[str, Any]) -> "OpenSearchCluster":
        return cls.model_validate(data)

    def save(self, path: str) -> None:
        """Save the cluster object to a YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(self.to_manifest(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: str) -> "OpenSearchCluster":
        """Load a cluster object from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_manifest(data)
