"""
Provider Registry

Process-wide cache of ProviderClient instances, one per provider. Clients
are built lazily on first use; concurrent first callers wait on the same
lock and receive the same instance.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx

from .client import ProviderClient
from .models import (
    ChatCompletion,
    ChatMessage,
    ProviderName,
    normalize_provider_name,
    resolve_provider_config,
)
from ..config import settings

logger = logging.getLogger("kb.providers")

ProviderLike = Optional[Union[str, ProviderName]]


class ProviderRegistry:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._clients: Dict[ProviderName, ProviderClient] = {}
        self._lock = asyncio.Lock()
        self._transport = transport

    async def get(self, provider: ProviderLike = None) -> ProviderClient:
        """
        Return the client for `provider`, constructing it once.

        Raises
        ------
        ConfigurationError
            If the provider's API key is missing.
        """
        name = normalize_provider_name(provider)
        client = self._clients.get(name)
        if client is not None:
            return client

        async with self._lock:
            client = self._clients.get(name)
            if client is None:
                client = ProviderClient(resolve_provider_config(name), transport=self._transport)
                self._clients[name] = client
                logger.info(
                    "Initialized %s provider client (chat=%s, embeddings=%s)",
                    name.value,
                    client.config.chat_model,
                    client.config.embedding_model,
                )
        return client

    async def aclose(self) -> None:
        """Close every cached client and forget them."""
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()


# Global singleton used by the pipeline. Tests swap it via reset_provider_registry().
provider_registry = ProviderRegistry()


async def reset_provider_registry(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    """Close the current registry and install a fresh one."""
    global provider_registry
    await provider_registry.aclose()
    provider_registry = ProviderRegistry(transport=transport)
    return provider_registry


# ---------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------

def embedding_model_version(provider: ProviderLike = None) -> str:
    """Version tag recorded with every embedded chunk, e.g. 'openai:text-embedding-3-small'."""
    return resolve_provider_config(normalize_provider_name(provider)).embedding_version


async def embed_texts(texts: Sequence[str], provider: ProviderLike = None) -> List[List[float]]:
    if not texts:
        return []
    client = await provider_registry.get(provider)
    return await client.embed_texts(texts)


async def chat_completion(
    messages: Sequence[ChatMessage],
    temperature: Optional[float] = None,
    provider: ProviderLike = None,
    model: Optional[str] = None,
) -> ChatCompletion:
    client = await provider_registry.get(provider)
    return await client.chat_completion(
        messages,
        temperature=settings.qa_temperature if temperature is None else temperature,
        model=model,
    )


async def chat_completion_stream(
    messages: Sequence[ChatMessage],
    temperature: Optional[float] = None,
    provider: ProviderLike = None,
    model: Optional[str] = None,
) -> AsyncIterator[str]:
    """
    Resolve the provider (failing fast on configuration) and return its
    token stream.
    """
    client = await provider_registry.get(provider)
    return client.chat_completion_stream(
        messages,
        temperature=settings.qa_temperature if temperature is None else temperature,
        model=model,
    )
