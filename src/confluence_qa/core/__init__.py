from .errors import (
    AuthenticationError,
    ConfigurationError,
    EmbeddingError,
    HostParseError,
    KnowledgeBaseError,
    PartialPageFailure,
    TransientNetworkError,
    UpstreamRequestError,
    ValidationError,
    VectorStoreError,
)

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "EmbeddingError",
    "HostParseError",
    "KnowledgeBaseError",
    "PartialPageFailure",
    "TransientNetworkError",
    "UpstreamRequestError",
    "ValidationError",
    "VectorStoreError",
]
