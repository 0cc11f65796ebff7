"""
Provider Models

Supported language-model providers form a closed set. Free-form names from
callers and the environment are funnelled through `normalize_provider_name`,
which never yields anything outside ProviderName.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..config import Settings, settings

logger = logging.getLogger("kb.providers")


class ProviderName(str, Enum):
    OPENAI = "openai"
    QWEN = "qwen"


FALLBACK_PROVIDER = ProviderName.QWEN

_ALIASES: Dict[str, ProviderName] = {
    "openai": ProviderName.OPENAI,
    "gpt": ProviderName.OPENAI,
    "chatgpt": ProviderName.OPENAI,
    "qwen": ProviderName.QWEN,
    "qwen-plus": ProviderName.QWEN,
    "tongyi": ProviderName.QWEN,
    "通义千问": ProviderName.QWEN,
}


def normalize_provider_name(
    value: Optional[Union[str, ProviderName]] = None,
    default: Optional[Union[str, ProviderName]] = None,
) -> ProviderName:
    """
    Map a provider name or alias to a ProviderName.

    Unset or unrecognized input resolves to `default`, then to
    settings.provider, then to FALLBACK_PROVIDER.
    """
    if isinstance(value, ProviderName):
        return value

    key = (value or "").strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    if key:
        logger.debug("Unrecognized provider %r; using configured default", value)

    if isinstance(default, ProviderName):
        return default
    fallback_key = (default or settings.provider or "").strip().lower()
    return _ALIASES.get(fallback_key, FALLBACK_PROVIDER)


# ---------------------------------------------------------------------
# Provider configuration
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderDefaults:
    display_name: str
    api_key_env: str
    default_base_url: str
    fallback_chat_model: str
    fallback_embedding_model: str
    embedding_batch_size: int


PROVIDER_DEFAULTS: Dict[ProviderName, ProviderDefaults] = {
    ProviderName.OPENAI: ProviderDefaults(
        display_name="OpenAI",
        api_key_env="OPENAI_API_KEY",
        default_base_url="https://api.openai.com/v1",
        fallback_chat_model="gpt-4o-mini",
        fallback_embedding_model="text-embedding-3-small",
        embedding_batch_size=100,
    ),
    # DashScope's compatible mode caps embedding requests at 10 inputs.
    ProviderName.QWEN: ProviderDefaults(
        display_name="Qwen",
        api_key_env="QWEN_API_KEY",
        default_base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
        fallback_chat_model="qwen-max",
        fallback_embedding_model="text-embedding-v4",
        embedding_batch_size=10,
    ),
}


class ProviderConfig(BaseModel):
    """
    Fully resolved settings for one provider.
    """

    provider: ProviderName
    display_name: str
    api_key_env: str
    api_key: Optional[SecretStr] = None
    base_url: str
    chat_model: str
    embedding_model: str
    embedding_batch_size: int = Field(..., ge=1)

    model_config = ConfigDict(frozen=True)

    @property
    def embedding_version(self) -> str:
        return f"{self.provider.value}:{self.embedding_model}"


def resolve_provider_config(
    provider: ProviderName,
    source: Optional[Settings] = None,
) -> ProviderConfig:
    """
    Resolve a provider's configuration from settings and fallbacks.

    The API key is not required here; ProviderClient enforces it.
    """
    s = source or settings
    defaults = PROVIDER_DEFAULTS[provider]
    prefix = provider.value

    base_url = getattr(s, f"{prefix}_api_url") or defaults.default_base_url

    return ProviderConfig(
        provider=provider,
        display_name=defaults.display_name,
        api_key_env=defaults.api_key_env,
        api_key=getattr(s, f"{prefix}_api_key"),
        base_url=re.sub(r"/+$", "", base_url),
        chat_model=getattr(s, f"{prefix}_model") or defaults.fallback_chat_model,
        embedding_model=getattr(s, f"{prefix}_embedding_model") or defaults.fallback_embedding_model,
        embedding_batch_size=defaults.embedding_batch_size,
    )


# ---------------------------------------------------------------------
# Chat payloads
# ---------------------------------------------------------------------

class ChatMessage(BaseModel):
    """
    Single message in a chat completion request.
    """

    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(extra="forbid")


class ChatCompletion(BaseModel):
    """
    Result of a blocking chat completion.
    """

    text: str
    provider: ProviderName
    model: str
