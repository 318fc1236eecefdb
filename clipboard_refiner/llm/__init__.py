"""Backend adapters, stream decoding, and the offline cache."""

from .anthropic_backend import AnthropicBackend
from .backend import RewriteBackend
from .cache import OfflineCacheStore
from .cancellation import CancelHandle
from .delta import merge_stream_output
from .local_backend import LocalBackend
from .openai_backend import OpenAIBackend
from .prompts import PromptLibrary
from .sse import ServerSentEvent, StreamDecoder
from .xai_backend import XAIBackend

__all__ = [
    "AnthropicBackend",
    "CancelHandle",
    "LocalBackend",
    "OfflineCacheStore",
    "OpenAIBackend",
    "PromptLibrary",
    "RewriteBackend",
    "ServerSentEvent",
    "StreamDecoder",
    "XAIBackend",
    "merge_stream_output",
]
