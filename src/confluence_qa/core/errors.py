"""
Error Taxonomy

This module defines the exception hierarchy shared by every stage of the
knowledge base pipeline.

Design Goals
------------
- One base class so callers can catch pipeline failures as a group
- Distinguish retryable transport failures from permanent ones
- Carry enough context (status code, page id, stage) for operators
- Never require callers to inspect message strings
"""

from __future__ import annotations

from typing import Optional


class KnowledgeBaseError(RuntimeError):
    """Base error for all pipeline failures."""


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

class ConfigurationError(KnowledgeBaseError):
    """Raised when a required setting or credential is missing or invalid."""


class HostParseError(ConfigurationError):
    """Raised when a vector index host URL does not follow the naming convention."""


# ---------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------

class AuthenticationError(KnowledgeBaseError):
    """Raised on 401/403 responses. Never retried."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(KnowledgeBaseError):
    """Raised when retryable failures (5xx, 429, connection errors) exhaust retries."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamRequestError(KnowledgeBaseError):
    """Raised on non-retryable client errors (4xx other than 401/403/429)."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------

class ValidationError(KnowledgeBaseError, ValueError):
    """Raised when input is rejected locally before any network call."""


class PartialPageFailure(KnowledgeBaseError):
    """
    Raised (or recorded) when one page fails a pipeline stage.

    The orchestrator logs these and moves on to the next page.
    """

    def __init__(self, page_id: str, stage: str, cause: Exception) -> None:
        super().__init__(
            f"Page {page_id} failed during {stage}: {type(cause).__name__}: {cause}"
        )
        self.page_id = page_id
        self.stage = stage
        self.cause = cause


class EmbeddingError(KnowledgeBaseError):
    """Raised when embedding generation fails or returns malformed data."""


class VectorStoreError(KnowledgeBaseError):
    """Raised when the vector store rejects an operation."""
