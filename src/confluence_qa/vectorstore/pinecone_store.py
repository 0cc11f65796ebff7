"""
Pinecone Vector Store

Talks to the Pinecone data-plane REST API over httpx:

- POST /vectors/upsert   (id, values, metadata) per namespace
- POST /vectors/delete   by page_id filter, or deleteAll
- POST /query            top-K with metadata

Index identity comes either from a full index host
(`<index>-<project>.svc.<environment>.pinecone.io`) or from an environment
name, in which case the host is looked up once from the legacy controller.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlsplit

import httpx

from ..config import settings
from ..confluence.chunk import Chunk
from ..core.errors import ConfigurationError, HostParseError, UpstreamRequestError, VectorStoreError
from ..core.http import send_with_retry
from .base import Embedder, VectorStore
from .models import RetrievedChunk, SearchResult, chunk_metadata

logger = logging.getLogger("kb.vectorstore")

PINECONE_API_VERSION = "2024-07"
CONTROLLER_URL = "https://controller.{environment}.pinecone.io/databases/{index}"


# ---------------------------------------------------------------------
# Index identity
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class IndexIdentity:
    index_name: str
    environment: str
    project_id: Optional[str] = None
    host: Optional[str] = None


def _strip_scheme(host: str) -> str:
    normalized = host if host.startswith("http") else f"https://{host}"
    return urlsplit(normalized).hostname or ""


def parse_pinecone_host(index_name: str, host: str) -> IndexIdentity:
    """
    Derive environment and project id from an index host.

    Raises
    ------
    HostParseError
        If the host has no '.svc.' segment or no environment after it.
    """
    hostname = _strip_scheme(host.strip())
    parts = hostname.split(".svc.")
    if len(parts) != 2:
        raise HostParseError(
            f"Invalid PINECONE_HOST value {host!r}: host must include a '.svc.' "
            "segment, e.g. my-index-abc123.svc.us-east1-gcp.pinecone.io"
        )

    left, right = parts
    environment = re.sub(r"\.pinecone\.io$", "", right, flags=re.IGNORECASE)
    if not environment:
        raise HostParseError(
            f"Invalid PINECONE_HOST value {host!r}: could not derive environment."
        )

    prefix = f"{index_name}-"
    project_id = left[len(prefix):] if left.startswith(prefix) else None

    return IndexIdentity(
        index_name=index_name,
        environment=environment,
        project_id=project_id or None,
        host=hostname,
    )


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class PineconeStore(VectorStore):
    """
    Vector store backed by a Pinecone index.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        index_name: Optional[str] = None,
        host: Optional[str] = None,
        environment: Optional[str] = None,
        namespace: Optional[str] = None,
        provider: Optional[str] = None,
        embedder: Optional[Embedder] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Raises
        ------
        ConfigurationError
            If the API key or index name is missing, or neither a host nor
            an environment is configured.

        HostParseError
            If the host does not follow the Pinecone naming convention.
        """
        super().__init__(
            namespace=namespace or settings.pinecone_namespace,
            provider=provider,
            embedder=embedder,
        )

        key = api_key
        if key is None and settings.pinecone_api_key is not None:
            key = settings.pinecone_api_key.get_secret_value()
        if not key:
            raise ConfigurationError("PINECONE_API_KEY environment variable is required.")

        name = index_name or settings.pinecone_index_name
        if not name:
            raise ConfigurationError(
                "PINECONE_INDEX_NAME (or PINECONE_INDEX) environment variable is required."
            )

        host = host or settings.pinecone_host
        environment = environment or settings.pinecone_environment
        if not host and not environment:
            raise ConfigurationError(
                "Set PINECONE_HOST for serverless indexes or PINECONE_ENVIRONMENT for legacy indexes."
            )

        if host:
            self.identity = parse_pinecone_host(name, host)
        else:
            self.identity = IndexIdentity(index_name=name, environment=environment)

        self._max_retries = settings.confluence_request_retries if max_retries is None else max_retries
        self._base_delay = (
            settings.confluence_retry_base_delay_ms / 1000.0
            if retry_base_delay is None
            else retry_base_delay
        )
        self._host: Optional[str] = self.identity.host
        self._host_lock = asyncio.Lock()
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Api-Key": key,
                "X-Pinecone-API-Version": PINECONE_API_VERSION,
                "Content-Type": "application/json",
            },
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _resolve_host(self) -> str:
        """Return the data-plane host, asking the controller once if needed."""
        if self._host:
            return self._host

        async with self._host_lock:
            if self._host:
                return self._host

            url = CONTROLLER_URL.format(
                environment=self.identity.environment,
                index=self.identity.index_name,
            )
            response = await self._send("GET", url, context="describe index")
            status = (response.json() or {}).get("status") or {}
            host = status.get("host")
            if not host:
                raise VectorStoreError(
                    f"Pinecone controller returned no host for index {self.identity.index_name!r}."
                )
            self._host = _strip_scheme(host)
            logger.info("Resolved Pinecone host %s", self._host)
        return self._host

    async def _send(self, method: str, url: str, context: str, **kwargs: Any) -> httpx.Response:
        return await send_with_retry(
            self._http,
            method,
            url,
            service="Pinecone",
            max_retries=self._max_retries,
            base_delay=self._base_delay,
            context=context,
            auth_hint="Check PINECONE_API_KEY.",
            **kwargs,
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        host = await self._resolve_host()
        response = await self._send("POST", f"https://{host}{path}", context=f"POST {path}", json=payload)
        if not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # VectorStore primitives
    # ------------------------------------------------------------------

    async def _upsert_vectors(self, chunks: Sequence[Chunk], vectors: List[List[float]]) -> None:
        payload = {
            "vectors": [
                {"id": chunk.id, "values": vector, "metadata": chunk_metadata(chunk)}
                for chunk, vector in zip(chunks, vectors)
            ],
            "namespace": self.namespace,
        }
        await self._post("/vectors/upsert", payload)

    async def _query(self, vector: List[float], top_k: int) -> List[SearchResult]:
        data = await self._post(
            "/query",
            {
                "vector": vector,
                "topK": top_k,
                "includeMetadata": True,
                "namespace": self.namespace,
            },
        )

        results: List[SearchResult] = []
        for match in data.get("matches") or []:
            metadata = match.get("metadata")
            if not isinstance(metadata, dict):
                continue
            results.append(
                SearchResult(
                    chunk=RetrievedChunk.from_metadata(str(match.get("id", "")), metadata),
                    score=float(match.get("score") or 0.0),
                )
            )
        return results

    async def _delete(self, payload: Dict[str, Any]) -> None:
        try:
            await self._post("/vectors/delete", {**payload, "namespace": self.namespace})
        except UpstreamRequestError as exc:
            if exc.status_code == 404:
                logger.debug("Nothing to delete in namespace %s", self.namespace)
                return
            raise

    async def delete_page_chunks(self, page_id: str) -> None:
        await self._delete({"filter": {"page_id": {"$eq": page_id}}})

    async def clear_namespace(self) -> None:
        await self._delete({"deleteAll": True})
        logger.info("Cleared Pinecone namespace %s", self.namespace)
