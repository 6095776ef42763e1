"""Host, cloud and Kubernetes metadata discovery.

All probes are best effort: they use short timeouts, swallow network
errors and fall back to static values, so discovery can never break
event recording.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from .events import CloudProvider, HostMetadata, K8sMetadata


logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"

AWS_TOKEN_URL = "http://169.254.169.254/latest/api/token"
AWS_INSTANCE_ID_URL = "http://169.254.169.254/latest/meta-data/instance-id"
AZURE_VM_ID_URL = (
    "http://169.254.169.254/metadata/instance/compute/vmId"
    "?api-version=2021-02-01&format=text"
)
GCP_INSTANCE_ID_URL = "http://metadata.google.internal/computeMetadata/v1/instance/id"

PROBE_TIMEOUT_SECONDS = 1.0


def detect_kubernetes(service_account_dir: str = SERVICE_ACCOUNT_DIR) -> K8sMetadata | None:
    """Return pod/namespace/node if running inside a Kubernetes pod."""
    sa_dir = Path(service_account_dir)
    if not (sa_dir / "token").exists():
        return None

    try:
        namespace = (sa_dir / "namespace").read_text(encoding="utf-8").strip()
    except OSError:
        namespace = os.environ.get("POD_NAMESPACE")

    return K8sMetadata(
        pod=os.environ.get("HOSTNAME") or os.environ.get("POD_NAME"),
        namespace=namespace,
        node=os.environ.get("NODE_NAME"),
    )


def _probe_aws(client: httpx.Client) -> str | None:
    # IMDSv2: fetch a session token, then the instance id
    token = client.put(
        AWS_TOKEN_URL,
        headers={"X-aws-ec2-metadata-token-ttl-seconds": "21600"},
    )
    token.raise_for_status()
    response = client.get(
        AWS_INSTANCE_ID_URL,
        headers={"X-aws-ec2-metadata-token": token.text},
    )
    response.raise_for_status()
    return response.text.strip()


def _probe_azure(client: httpx.Client) -> str | None:
    response = client.get(AZURE_VM_ID_URL, headers={"Metadata": "true"})
    response.raise_for_status()
    return response.text.strip()


def _probe_gcp(client: httpx.Client) -> str | None:
    response = client.get(GCP_INSTANCE_ID_URL, headers={"Metadata-Flavor": "Google"})
    response.raise_for_status()
    return response.text.strip()


_PROBES = (
    (CloudProvider.AWS, _probe_aws),
    (CloudProvider.AZURE, _probe_azure),
    (CloudProvider.GCP, _probe_gcp),
)


def basic_host_metadata(service_account_dir: str = SERVICE_ACCOUNT_DIR) -> HostMetadata:
    """Metadata available without network access."""
    return HostMetadata(
        hostname=socket.gethostname(),
        cloud_provider=CloudProvider.UNKNOWN,
        k8s=detect_kubernetes(service_account_dir),
    )


def discover_host_metadata(
    http_client: httpx.Client | None = None,
    service_account_dir: str = SERVICE_ACCOUNT_DIR,
) -> HostMetadata:
    """
    Probe cloud metadata endpoints (AWS, then Azure, then GCP).

    The first provider that answers wins. If none answers the host is
    reported as on-prem.
    """
    k8s = detect_kubernetes(service_account_dir)
    hostname = socket.gethostname()

    client = http_client or httpx.Client(timeout=PROBE_TIMEOUT_SECONDS)
    try:
        for provider, probe in _PROBES:
            try:
                instance_id = probe(client)
            except httpx.HTTPError as e:
                logger.debug(f"{provider.value} metadata probe failed: {e}")
                continue
            logger.debug(f"Detected cloud provider {provider.value} (instance={instance_id})")
            return HostMetadata(
                hostname=hostname,
                cloud_provider=provider,
                instance_id=instance_id or None,
                k8s=k8s,
            )
    finally:
        if http_client is None:
            client.close()

    return HostMetadata(hostname=hostname, cloud_provider=CloudProvider.ON_PREM, k8s=k8s)


@dataclass
class HostMetadataProvider:
    """
    Caches host metadata for the client.

    get() never does I/O: it returns the discovered metadata once
    refresh() has completed, and the static fallback before that.
    """
    http_client: httpx.Client | None = None
    service_account_dir: str = SERVICE_ACCOUNT_DIR

    # Internal state
    _cached: HostMetadata | None = field(default=None, init=False)
    _fallback: HostMetadata | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def get(self) -> HostMetadata:
        with self._lock:
            if self._cached is not None:
                return self._cached
            if self._fallback is None:
                self._fallback = basic_host_metadata(self.service_account_dir)
            return self._fallback

    def refresh(self) -> HostMetadata:
        """Run discovery and cache the result."""
        metadata = discover_host_metadata(self.http_client, self.service_account_dir)
        with self._lock:
            self._cached = metadata
        return metadata

    def refresh_in_background(self) -> threading.Thread:
        """Run refresh() on a daemon thread."""
        thread = threading.Thread(
            target=self._refresh_quietly,
            name="token-trackr-metadata",
            daemon=True,
        )
        thread.start()
        return thread

    def _refresh_quietly(self) -> None:
        try:
            self.refresh()
        except Exception as e:
            logger.warning(f"Host metadata discovery failed: {e}")

    @property
    def discovered(self) -> bool:
        with self._lock:
            return self._cached is not None
