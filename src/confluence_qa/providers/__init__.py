from .models import (
    ChatCompletion,
    ChatMessage,
    ProviderConfig,
    ProviderName,
    normalize_provider_name,
    resolve_provider_config,
)
from .client import ProviderClient, ProviderRequestError
from . import registry
from .registry import (
    ProviderRegistry,
    chat_completion,
    chat_completion_stream,
    embed_texts,
    embedding_model_version,
    reset_provider_registry,
)

__all__ = [
    "ChatCompletion",
    "ChatMessage",
    "ProviderClient",
    "ProviderConfig",
    "ProviderName",
    "ProviderRegistry",
    "ProviderRequestError",
    "chat_completion",
    "chat_completion_stream",
    "embed_texts",
    "embedding_model_version",
    "normalize_provider_name",
    "registry",
    "reset_provider_registry",
    "resolve_provider_config",
]
