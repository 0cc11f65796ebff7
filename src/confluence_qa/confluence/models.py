"""
Confluence Page Models

RawPage is what the REST API hands us; CleanPage is the normalized Markdown
form every downstream stage works with. Both are immutable.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RawPage(BaseModel):
    """
    A page as returned by the Confluence content API.
    """

    id: str = Field(..., min_length=1)
    title: str = ""
    body_html: Optional[str] = None
    space_key: Optional[str] = None
    version_number: Optional[int] = None
    updated_at: Optional[str] = None
    url: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def has_full_content(self) -> bool:
        """True when the listing already carried body and version."""
        return bool(self.body_html) and self.version_number is not None

    @classmethod
    def from_api(cls, payload: Dict[str, Any], base_url: str) -> "RawPage":
        """
        Build a RawPage from a `/rest/api/content` result object.

        Expected shape (fields optional unless noted):
            {
                "id": "123",                      # required
                "title": "...",
                "body": {"storage": {"value": "<p>..</p>"}},
                "space": {"key": "DOC"},
                "version": {"number": 4, "when": "2024-01-01T00:00:00.000Z"},
                "_links": {"webui": "/display/DOC/Page"}
            }
        """
        body = ((payload.get("body") or {}).get("storage") or {}).get("value")
        space_key = ((payload.get("space") or {}).get("key") or "").strip() or None
        version = payload.get("version") or {}
        number = version.get("number")
        when = (version.get("when") or "").strip() or None
        webui = (payload.get("_links") or {}).get("webui")

        return cls(
            id=str(payload["id"]),
            title=payload.get("title") or "",
            body_html=body or None,
            space_key=space_key,
            version_number=number if isinstance(number, int) else None,
            updated_at=when,
            url=f"{base_url}{webui}" if webui else None,
        )


class CleanPage(BaseModel):
    """
    A page reduced to normalized Markdown plus change-detection metadata.
    """

    page_id: str = Field(..., min_length=1)
    title: str
    markdown: str
    space_key: Optional[str] = None
    updated_at: Optional[str] = None
    etag: Optional[str] = Field(
        default=None,
        description="Version number, or update timestamp when no version is known.",
    )
    version_number: Optional[int] = None
    url: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class FetchPagesResult(BaseModel):
    """
    One page of results from the content listing.
    """

    pages: List[RawPage] = Field(default_factory=list)
    has_more: bool = False
    next_start: Optional[int] = None

    model_config = ConfigDict(frozen=True)
