"""
Namespace Storage Paths

Each local vector namespace is stored under FAISS_DATA_ROOT/<namespace>/.
Namespace names become directory names, so they are validated to prevent
path traversal: only alphanumerics, hyphens and underscores, at most 64
characters.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from ..config import settings
from ..core.errors import ValidationError

NAMESPACE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


def validate_namespace(namespace: Optional[str]) -> str:
    """
    Return the stripped namespace, or raise ValidationError.
    """
    if not namespace or not isinstance(namespace, str):
        raise ValidationError("namespace is required")

    value = namespace.strip()
    if not NAMESPACE_PATTERN.match(value):
        raise ValidationError(
            f"Invalid namespace '{value}': must be 1-64 alphanumeric chars, hyphens, or underscores"
        )
    return value


def get_namespace_path(namespace: str, data_root: Optional[str] = None) -> Path:
    root = Path(data_root or settings.faiss_data_root)
    return root / validate_namespace(namespace)


def get_index_path(namespace: str, data_root: Optional[str] = None) -> Path:
    return get_namespace_path(namespace, data_root) / "faiss_index.bin"


def get_meta_path(namespace: str, data_root: Optional[str] = None) -> Path:
    return get_namespace_path(namespace, data_root) / "index_meta.json"
