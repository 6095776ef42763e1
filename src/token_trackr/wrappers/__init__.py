"""Provider wrappers - record usage from vendor SDK responses.

Wrappers never import a vendor SDK. Each one takes the vendor client
object it wraps plus a UsageRecorder, normally a TokenTrackrClient.
"""

from .azure import AzureOpenAIWrapper
from .base import UsageAccumulator, UsageRecorder, track_async_stream, track_stream
from .bedrock import BedrockWrapper, extract_bedrock_tokens
from .gemini import GeminiChatSession, GeminiWrapper

__all__ = [
    "UsageRecorder",
    "UsageAccumulator",
    "track_stream",
    "track_async_stream",
    "BedrockWrapper",
    "extract_bedrock_tokens",
    "AzureOpenAIWrapper",
    "GeminiWrapper",
    "GeminiChatSession",
]
