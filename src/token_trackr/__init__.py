"""
Token Trackr SDK

Records LLM token usage and ships it to the Token Trackr collector in
batches, off the caller's request path.

Usage:
    from token_trackr import TokenTrackrClient, TrackrConfig

    client = TokenTrackrClient(TrackrConfig(tenant_id="team-search"))
    client.track("azure_openai", "gpt-4o", prompt_tokens=812, completion_tokens=95)

    # Wrap a provider client
    from token_trackr.wrappers import BedrockWrapper

    bedrock = BedrockWrapper(boto3.client("bedrock-runtime"), recorder=client)
    body = bedrock.invoke_model("anthropic.claude-3-haiku-20240307-v1:0", request)

    client.shutdown()
"""

__version__ = "0.1.0"

from .client import (
    ClientState,
    TokenTrackrClient,
    get_client,
    init_client,
    shutdown_client,
)
from .config import OverflowPolicy, TrackrConfig
from .delivery import DeliveryResult, DeliveryStatus, FlushResult
from .errors import (
    ConfigurationError,
    DeliveryError,
    PermanentDeliveryError,
    QueueOverflowError,
    RetriesExhaustedError,
    ShutdownRejectedError,
    TrackrError,
    TransientDeliveryError,
)
from .events import CloudProvider, HostMetadata, K8sMetadata, Provider, UsageEvent

__all__ = [
    # Core classes
    "TokenTrackrClient",
    "TrackrConfig",
    "ClientState",
    "OverflowPolicy",
    # Process-wide client
    "init_client",
    "get_client",
    "shutdown_client",
    # Event types
    "UsageEvent",
    "Provider",
    "CloudProvider",
    "HostMetadata",
    "K8sMetadata",
    # Result types
    "DeliveryResult",
    "DeliveryStatus",
    "FlushResult",
    # Exceptions
    "TrackrError",
    "ConfigurationError",
    "QueueOverflowError",
    "ShutdownRejectedError",
    "DeliveryError",
    "TransientDeliveryError",
    "PermanentDeliveryError",
    "RetriesExhaustedError",
]
