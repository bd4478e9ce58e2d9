"""Capabilities backed by the cluster's own admin REST API.

The bootstrap controller and the upgrade orchestrator only see the
``HealthProbe`` and ``Drainer`` protocols; ``AdminClient`` implements both
over HTTP with ``requests``.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from opensearch_operator.exceptions import DrainTimeout
from opensearch_operator.logging_config import get_logger
from opensearch_operator.models.cluster import OpenSearchCluster
from opensearch_operator.names import cluster_service_name

logger = get_logger(__name__)

EXCLUDE_SETTING = "cluster.routing.allocation.exclude._name"


@runtime_checkable
class HealthProbe(Protocol):
    """Opaque view of cluster health."""

    def has_quorum(self, cluster: OpenSearchCluster) -> bool:
        """True once the cluster has elected a cluster manager."""
        ...

    def is_healthy(self, cluster: OpenSearchCluster) -> bool:
        """True when every shard is allocated."""
        ...


@runtime_checkable
class Drainer(Protocol):
    """Relocates data off members before they restart."""

    def drain(self, cluster: OpenSearchCluster, members: list[str]) -> None:
        """Block until no shard lives on ``members``.

        Raises:
            DrainTimeout: If the data could not be moved in time
        """
        ...

    def release(self, cluster: OpenSearchCluster, members: list[str]) -> bool:
        """Allow shards back onto previously drained members.

        Returns:
            True once the exclusion is cleared
        """
        ...


@dataclass
class Credentials:
    """Admin username and password for the cluster."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


CredentialsProvider = Callable[[OpenSearchCluster], Credentials]

_transient = retry_if_exception_type((requests.ConnectionError, requests.Timeout))


class AdminClient:
    """``HealthProbe`` and ``Drainer`` over the cluster admin REST API."""

    def __init__(
        self,
        credentials: CredentialsProvider,
        scheme: str = "https",
        verify_tls: bool = False,
        timeout: float = 10.0,
        drain_timeout: float = 600.0,
        poll_interval: float = 10.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.credentials = credentials
        self.scheme = scheme
        self.verify_tls = verify_tls
        self.timeout = timeout
        self.drain_timeout = drain_timeout
        self.poll_interval = poll_interval
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    def base_url(self, cluster: OpenSearchCluster) -> str:
        host = f"{cluster_service_name(cluster)}.{cluster.namespace}.svc.cluster.local"
        return f"{self.scheme}://{host}:{cluster.spec.general.http_port}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=_transient,
        reraise=True,
    )
    def _request(self, method: str, cluster: OpenSearchCluster, path: str, **kwargs):
        creds = self.credentials(cluster)
        response = self.session.request(
            method,
            f"{self.base_url(cluster)}{path}",
            auth=(creds.username, creds.password),
            verify=self.verify_tls,
            timeout=self.timeout,
            **kwargs,
        )
        response.raise_for_status()
        return response

    def cluster_health(self, cluster: OpenSearchCluster) -> dict | None:
        """Return ``_cluster/health``, or None when the cluster does not answer."""
        try:
            return self._request("GET", cluster, "/_cluster/health").json()
        except requests.RequestException as e:
            logger.debug(f"Health check for {cluster.key} failed: {e}")
            return None

    def has_quorum(self, cluster: OpenSearchCluster) -> bool:
        # The health endpoint answers 503 until a cluster manager is elected
        health = self.cluster_health(cluster)
        return health is not None and health.get("number_of_nodes", 0) > 0

    def is_healthy(self, cluster: OpenSearchCluster) -> bool:
        health = self.cluster_health(cluster)
        return health is not None and health.get("status") == "green"

    def _set_exclusion(self, cluster: OpenSearchCluster, value: str | None) -> None:
        self._request(
            "PUT",
            cluster,
            "/_cluster/settings",
            json={"transient": {EXCLUDE_SETTING: value}},
        )

    def _shards_on(self, cluster: OpenSearchCluster, members: list[str]) -> int:
        shards = self._request("GET", cluster, "/_cat/shards", params={"format": "json"}).json()
        wanted = set(members)
        return sum(1 for shard in shards if shard.get("node") in wanted)

    def drain(self, cluster: OpenSearchCluster, members: list[str]) -> None:
        if not members:
            return
        logger.info(f"Draining {', '.join(members)} in {cluster.key}")
        deadline = self._clock() + self.drain_timeout
        try:
            self._set_exclusion(cluster, ",".join(members))
            while True:
                remaining = self._shards_on(cluster, members)
                if remaining == 0:
                    logger.info(f"Drained {', '.join(members)}")
                    return
                if self._clock() >= deadline:
                    raise DrainTimeout(
                        f"{remaining} shards still on {', '.join(members)}",
                        f"Gave up after {self.drain_timeout:.0f}s; will retry on the next pass",
                    )
                logger.debug(f"{remaining} shards left on {', '.join(members)}")
                self._sleep(self.poll_interval)
        except requests.RequestException as e:
            raise DrainTimeout(
                f"Drain call for {', '.join(members)} failed",
                f"{e}. Will retry on the next pass",
            )

    def release(self, cluster: OpenSearchCluster, members: list[str]) -> bool:
        if not members:
            return True
        try:
            self._set_exclusion(cluster, None)
        except requests.RequestException as e:
            logger.warning(f"Failed to clear allocation exclusion in {cluster.key}: {e}")
            return False
        logger.info(f"Released allocation exclusion for {', '.join(members)}")
        return True
