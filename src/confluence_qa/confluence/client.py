"""
Confluence REST Client

Fetches page listings and page content from the Confluence content API.

Design Goals
------------
- Every call goes through the shared retry policy (core.http)
- Cursor-based pagination driven by the `_links.next` link
- One page's failed content fetch never aborts the batch
- Fully injectable transport for tests
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urljoin, urlparse

import httpx

from ..config import settings
from ..core.errors import PartialPageFailure
from ..core.http import send_with_retry
from .models import FetchPagesResult, RawPage

logger = logging.getLogger("kb.confluence")

CONTENT_EXPAND = "body.storage,version,space"
DEFAULT_PAGE_LIMIT = 25


def sanitize_base_url(value: str) -> str:
    """Strip any fragment and trailing slashes from a base URL."""
    return re.sub(r"/+$", "", re.sub(r"#.*$", "", value.strip()))


def parse_next_start(raw: Dict[str, Any], base_url: str) -> Optional[int]:
    """
    Extract the `start` cursor from a listing's `_links.next`, if any.
    """
    links = raw.get("_links") or {}
    next_link = links.get("next")
    if not next_link:
        return None

    resolved = urljoin(f"{links.get('base') or base_url}/", next_link)
    values = parse_qs(urlparse(resolved).query).get("start")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


class ConfluenceClient:
    """
    Asynchronous Confluence content API client.

    Owns one httpx.AsyncClient; close it with `aclose()` or use the client as
    an async context manager.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        space_key: Optional[str] = None,
        email: Optional[str] = None,
        api_token: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        base_url : Optional[str]
            Confluence base URL. Defaults to settings.confluence_base_url.

        space_key : Optional[str]
            Default space to list when callers pass none.

        email, api_token : Optional[str]
            Basic-auth credentials. Requests are unauthenticated unless both
            are available.

        max_retries : Optional[int]
            Retries for transient failures. Defaults to settings.

        retry_base_delay : Optional[float]
            Base backoff in seconds. Defaults to settings (milliseconds).

        transport : Optional[httpx.AsyncBaseTransport]
            Transport override, used by tests.
        """
        self.base_url = sanitize_base_url(base_url or settings.confluence_base_url)
        self.default_space_key = space_key or settings.confluence_space_key

        email = email or settings.confluence_email
        if api_token is None and settings.confluence_api_token is not None:
            api_token = settings.confluence_api_token.get_secret_value()

        self._auth_header: Optional[str] = None
        if email and api_token:
            token = base64.b64encode(f"{email}:{api_token}".encode()).decode()
            self._auth_header = f"Basic {token}"

        self.max_retries = (
            max_retries if max_retries is not None else settings.confluence_request_retries
        )
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.confluence_retry_base_delay_ms / 1000
        )

        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ConfluenceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def auth_configured(self) -> bool:
        return self._auth_header is not None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._auth_header:
            headers["Authorization"] = self._auth_header
        return headers

    async def _get_json(
        self,
        path: str,
        params: Dict[str, Any],
        context: str,
    ) -> Dict[str, Any]:
        hint = (
            "Verify CONFLUENCE_EMAIL and CONFLUENCE_API_TOKEN are correct and "
            "have access to the requested space."
            if self.auth_configured
            else "This endpoint requires authentication but no credentials were provided."
        )
        response = await send_with_retry(
            self._http,
            "GET",
            f"{self.base_url}/{path.lstrip('/')}",
            service="Confluence",
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            context=context,
            auth_hint=hint,
            params=params,
            headers=self._headers(),
        )
        return response.json()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_pages(
        self,
        space_key: Optional[str] = None,
        start: int = 0,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> FetchPagesResult:
        """
        List one batch of pages, with body, version and space expanded.
        """
        params: Dict[str, Any] = {
            "type": "page",
            "start": start,
            "limit": limit,
            "expand": CONTENT_EXPAND,
        }
        resolved_space = space_key or self.default_space_key
        if resolved_space:
            params["spaceKey"] = resolved_space

        raw = await self._get_json("rest/api/content", params, "GET /rest/api/content")

        results = raw.get("results")
        pages = [
            RawPage.from_api(item, self.base_url)
            for item in (results if isinstance(results, list) else [])
        ]
        has_more = bool((raw.get("_links") or {}).get("next")) and len(pages) > 0

        return FetchPagesResult(
            pages=pages,
            has_more=has_more,
            next_start=parse_next_start(raw, self.base_url),
        )

    async def fetch_page_content(self, page_id: str) -> RawPage:
        """
        Fetch one page with its body, version and space.
        """
        raw = await self._get_json(
            f"rest/api/content/{page_id}",
            {"expand": CONTENT_EXPAND},
            f"GET /rest/api/content/{page_id}",
        )
        return RawPage.from_api(raw, self.base_url)

    async def _expand_page(self, page: RawPage) -> RawPage:
        if page.has_full_content:
            return page
        try:
            return await self.fetch_page_content(page.id)
        except Exception as exc:
            raise PartialPageFailure(page.id, "fetch", exc) from exc

    async def fetch_pages_with_content(
        self,
        space_key: Optional[str] = None,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        max_batches: int = 5,
    ) -> List[RawPage]:
        """
        Walk the listing cursor and return pages that have a body.

        Content lookups inside one batch run concurrently. A page whose
        lookup fails is logged and dropped; the rest of the batch survives.
        """
        collected: List[RawPage] = []
        start = 0
        batches = 0
        has_more = True

        while has_more and batches < max_batches:
            batch = await self.fetch_pages(space_key, start, page_limit)
            if not batch.pages:
                break

            expanded = await asyncio.gather(
                *(self._expand_page(page) for page in batch.pages),
                return_exceptions=True,
            )

            for page, result in zip(batch.pages, expanded):
                if isinstance(result, BaseException):
                    logger.warning(
                        "Failed to fetch content for Confluence page %s (%s): %s",
                        page.id,
                        page.title or "untitled",
                        result,
                    )
                    continue
                if result.body_html:
                    collected.append(result)

            batches += 1
            has_more = batch.has_more and batch.next_start is not None
            start = batch.next_start if batch.next_start is not None else start + page_limit

        logger.info("Fetched %d pages with content in %d batches", len(collected), batches)
        return collected
