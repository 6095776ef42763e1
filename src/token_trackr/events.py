"""Usage event types."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Provider(str, Enum):
    """Model provider that served the invocation."""
    BEDROCK = "bedrock"
    AZURE_OPENAI = "azure_openai"
    GEMINI = "gemini"


class CloudProvider(str, Enum):
    """Where the recording process runs."""
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    ON_PREM = "on-prem"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class K8sMetadata:
    """Kubernetes placement of the recording process."""
    pod: str | None = None
    namespace: str | None = None
    node: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"pod": self.pod, "namespace": self.namespace, "node": self.node}


@dataclass(frozen=True, slots=True)
class HostMetadata:
    """Host the recording process runs on."""
    hostname: str
    cloud_provider: CloudProvider = CloudProvider.UNKNOWN
    instance_id: str | None = None
    k8s: K8sMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "hostname": self.hostname,
            "cloud_provider": CloudProvider(self.cloud_provider).value,
        }
        if self.instance_id is not None:
            data["instance_id"] = self.instance_id
        if self.k8s is not None:
            data["k8s"] = self.k8s.to_dict()
        return data


@dataclass(frozen=True, slots=True)
class UsageEvent:
    """
    A single observed model invocation.

    Immutable once created. tenant_id, timestamp and host may be left
    unset by the producer; the client fills them in at record time.
    """
    # What
    provider: Provider
    model: str

    # Tokens
    prompt_tokens: int
    completion_tokens: int

    # Who
    tenant_id: str | None = None

    # When / how long
    timestamp: datetime | None = None
    latency_ms: int | None = None

    # Where
    host: HostMetadata | None = None

    # Additional context
    metadata: dict[str, Any] | None = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "provider", Provider(self.provider))
        except ValueError:
            allowed = ", ".join(p.value for p in Provider)
            raise ValueError(f"provider must be one of {allowed}, got {self.provider!r}") from None

        if not self.model:
            raise ValueError("model is required")

        for name in ("prompt_tokens", "completion_tokens"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

        if self.latency_ms is not None:
            if self.latency_ms < 0:
                raise ValueError(f"latency_ms must be non-negative, got {self.latency_ms}")
            object.__setattr__(self, "latency_ms", int(round(self.latency_ms)))

        # Detach from the caller's dict
        if self.metadata is not None:
            object.__setattr__(self, "metadata", dict(self.metadata))

    @classmethod
    def create(
        cls,
        provider: Provider | str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        **kwargs,
    ) -> UsageEvent:
        """Factory method stamping the current UTC time."""
        kwargs.setdefault("timestamp", datetime.now(timezone.utc))
        return cls(
            provider=provider,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            **kwargs,
        )

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def with_defaults(
        self,
        tenant_id: str,
        host: HostMetadata | None = None,
    ) -> UsageEvent:
        """Return a copy with tenant, timestamp and host filled where missing."""
        changes: dict[str, Any] = {}
        if not self.tenant_id:
            changes["tenant_id"] = tenant_id
        if self.timestamp is None:
            changes["timestamp"] = datetime.now(timezone.utc)
        elif self.timestamp.tzinfo is None:
            changes["timestamp"] = self.timestamp.replace(tzinfo=timezone.utc)
        if self.host is None and host is not None:
            changes["host"] = host
        return replace(self, **changes) if changes else self

    def to_payload(self) -> dict[str, Any]:
        """Convert to the collector's wire format."""
        if self.tenant_id is None or self.timestamp is None:
            raise ValueError("event must be normalized before serialization")

        payload: dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "provider": self.provider.value,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.latency_ms is not None:
            payload["latency_ms"] = self.latency_ms
        if self.host is not None:
            payload["host"] = self.host.to_dict()
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload
