"""
Provider Client

Talks to an OpenAI-compatible API (OpenAI, DashScope compatible mode) for:

- Batched embeddings with strict response validation
- Retries of 5xx, 429 and transport errors (see core/http.py)
- Blocking chat completions
- Streaming chat completions parsed from server-sent events

One instance per provider is created by the registry and reused for the
process lifetime.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from ..config import settings
from ..core.errors import (
    AuthenticationError,
    ConfigurationError,
    EmbeddingError,
    KnowledgeBaseError,
    TransientNetworkError,
    UpstreamRequestError,
)
from ..core.http import send_with_retry
from .models import ChatCompletion, ChatMessage, ProviderConfig

logger = logging.getLogger("kb.providers")


class ProviderRequestError(KnowledgeBaseError):
    """Raised when a chat completion request fails."""


class ProviderClient:
    """
    Asynchronous client for one configured provider.
    """

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = 60.0,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        config : ProviderConfig
            Resolved provider configuration.

        timeout : float
            HTTP timeout for each request.

        max_retries : Optional[int]
            Retries for 5xx, 429 and transport errors. Defaults to
            settings.provider_request_retries.

        retry_base_delay : Optional[float]
            Base backoff in seconds. Defaults to
            settings.provider_retry_base_delay_ms.

        transport : Optional[httpx.AsyncBaseTransport]
            Transport override, used by tests.

        Raises
        ------
        ConfigurationError
            If the provider has no API key. Raised before any network call.
        """
        if config.api_key is None or not config.api_key.get_secret_value():
            raise ConfigurationError(
                f"{config.display_name} API key not configured. "
                f"Please set {config.api_key_env} in your environment."
            )

        self.config = config
        self.max_retries = settings.provider_request_retries if max_retries is None else max_retries
        self.retry_base_delay = (
            settings.provider_retry_base_delay_ms / 1000.0 if retry_base_delay is None else retry_base_delay
        )
        self._http = httpx.AsyncClient(
            base_url=f"{config.base_url}/",
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {config.api_key.get_secret_value()}"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_auth(self, response: httpx.Response, operation: str) -> None:
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.config.display_name} rejected the {operation} request "
                f"with status {response.status_code}. Check {self.config.api_key_env}.",
                status_code=response.status_code,
            )

    async def _post(self, path: str, payload: Dict[str, Any], operation: str) -> httpx.Response:
        """
        POST with the shared retry policy.

        AuthenticationError propagates; exhausted retries and rejected
        requests propagate as TransientNetworkError / UpstreamRequestError
        for the caller to wrap.
        """
        return await send_with_retry(
            self._http,
            "POST",
            path,
            service=self.config.display_name,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            context=operation,
            auth_hint=f"Check {self.config.api_key_env}.",
            json=payload,
        )

    @staticmethod
    def _extract_embeddings(data: Dict[str, Any], expected: int) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI-compatible APIs return:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }
        """
        records = data.get("data") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise EmbeddingError("Embedding response missing 'data' list.")
        if len(records) != expected:
            raise EmbeddingError(
                f"Embedding response returned {len(records)} vectors for {expected} inputs."
            )

        ordered = sorted(
            enumerate(records),
            key=lambda pair: pair[1].get("index", pair[0]) if isinstance(pair[1], dict) else pair[0],
        )

        embeddings: List[List[float]] = []
        for position, record in ordered:
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(f"Malformed embedding record at index {position}.")
            emb = record["embedding"]
            if not isinstance(emb, list) or not emb or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingError(
                    f"Invalid embedding vector at index {position}: must be a non-empty float list."
                )
            embeddings.append([float(x) for x in emb])

        return embeddings

    def _payload(
        self,
        messages: Sequence[ChatMessage],
        temperature: float,
        model: Optional[str],
        stream: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self.config.chat_model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
        }
        if stream:
            payload["stream"] = True
        return payload

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed texts in provider-sized batches.

        Raises
        ------
        EmbeddingError
            If any batch fails or the response is malformed.
        """
        if not texts:
            return []

        batch_size = self.config.embedding_batch_size
        vectors: List[List[float]] = []

        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            try:
                response = await self._post(
                    "embeddings",
                    {"model": self.config.embedding_model, "input": batch},
                    "embeddings",
                )
            except (TransientNetworkError, UpstreamRequestError) as exc:
                logger.error("Embedding request failed: batch size=%d, error=%s", len(batch), exc)
                raise EmbeddingError(f"Embedding generation failed: {exc}") from exc

            vectors.extend(self._extract_embeddings(response.json(), len(batch)))

        return vectors

    async def chat_completion(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> ChatCompletion:
        """
        Run a blocking chat completion and return the trimmed text.
        """
        payload = self._payload(messages, temperature, model)
        try:
            response = await self._post("chat/completions", payload, "chat completion")
        except (TransientNetworkError, UpstreamRequestError) as exc:
            raise ProviderRequestError(f"Chat completion failed: {exc}") from exc

        choices = response.json().get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        text = (message.get("content") or "").strip()

        return ChatCompletion(text=text, provider=self.config.provider, model=payload["model"])

    async def chat_completion_stream(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream completion tokens as they arrive.

        The returned iterator is single-pass. Closing it early (`aclose()`,
        or breaking out of `async for`) closes the HTTP response and so
        cancels the upstream generation.
        """
        payload = self._payload(messages, temperature, model, stream=True)

        async with self._http.stream("POST", "chat/completions", json=payload) as response:
            if response.is_error:
                await response.aread()
                self._check_auth(response, "chat completion")
                raise ProviderRequestError(
                    f"Streaming chat completion failed with status {response.status_code}: "
                    f"{response.text[:300]}"
                )

            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed stream event: %.120s", data)
                    continue

                choices = event.get("choices") or []
                delta = (choices[0].get("delta") or {}) if choices else {}
                token = delta.get("content")
                if token:
                    yield token
