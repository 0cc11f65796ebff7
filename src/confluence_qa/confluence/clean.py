"""
Content Cleaner

Turns Confluence storage-format HTML into normalized Markdown:

1. Drop navigation, breadcrumbs, footers and metadata widgets.
2. Rewrite Confluence code macros into <pre><code> with a language class.
3. Give every table an explicit header row.
4. Convert to Markdown (fenced code keeps its language tag).
5. Prefix the page title as an H1 and normalize whitespace.

Conversion failures degrade to plain-text extraction instead of dropping
the page.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup, Tag
from markdownify import ATX, MarkdownConverter

from .models import CleanPage, RawPage

logger = logging.getLogger("kb.cleaner")

REMOVABLE_SELECTORS = (
    "header",
    "footer",
    "nav",
    ".global-nav",
    ".navigation",
    ".conf-quick-nav",
    ".page-metadata",
    ".breadcrumbs",
    ".children-navigation",
    ".aui-message",
    ".footer-comment",
    ".confluence-information-macro",
    ".label-list",
    ".page-metadata-override",
    "[data-navigation=true]",
    "script",
    "style",
)


# ---------------------------------------------------------------------
# Code language detection
# ---------------------------------------------------------------------

def _declared_language(el: Optional[Tag]) -> Optional[str]:
    if el is None:
        return None
    lang = el.get("data-language")
    if lang:
        return str(lang).strip() or None
    for cls in el.get("class") or []:
        if cls.startswith("language-") and len(cls) > len("language-"):
            return cls[len("language-"):]
    return None


def detect_code_language(pre: Tag) -> Optional[str]:
    """
    Language of a <pre> block, read from the inner <code> first, then the
    <pre> itself.
    """
    code = pre.find("code")
    return _declared_language(code if isinstance(code, Tag) else None) or _declared_language(pre)


# ---------------------------------------------------------------------
# DOM preparation
# ---------------------------------------------------------------------

def _rewrite_code_macros(soup: BeautifulSoup) -> None:
    for macro in soup.find_all("ac:structured-macro", attrs={"ac:name": "code"}):
        param = macro.find("ac:parameter", attrs={"ac:name": "language"})
        body = macro.find("ac:plain-text-body")
        lang = param.get_text(strip=True) if param else ""

        pre = soup.new_tag("pre")
        code = soup.new_tag("code")
        if lang:
            code["class"] = [f"language-{lang}"]
        code.string = body.get_text() if body else ""
        pre.append(code)
        macro.replace_with(pre)


def _tag_code_languages(soup: BeautifulSoup) -> None:
    for code in soup.find_all("code"):
        parent = code.parent if isinstance(code.parent, Tag) and code.parent.name == "pre" else None
        lang = _declared_language(code) or _declared_language(parent)
        classes = list(code.get("class") or [])
        if lang and f"language-{lang}" not in classes:
            code["class"] = classes + [f"language-{lang}"]


def _ensure_table_headers(soup: BeautifulSoup) -> None:
    for table in soup.find_all("table"):
        if table.find("thead"):
            continue
        first_row = table.find("tr")
        if first_row is None:
            continue
        for cell in first_row.find_all("td", recursive=False):
            cell.name = "th"
        thead = soup.new_tag("thead")
        thead.append(first_row.extract())
        table.insert(0, thead)


def _strip_boilerplate(soup: BeautifulSoup) -> None:
    for selector in REMOVABLE_SELECTORS:
        for el in soup.select(selector):
            # nested matches die with their ancestor
            if not el.decomposed:
                el.decompose()


# ---------------------------------------------------------------------
# Markdown conversion
# ---------------------------------------------------------------------

def _converter() -> MarkdownConverter:
    return MarkdownConverter(
        heading_style=ATX,
        bullets="-",
        code_language_callback=detect_code_language,
        escape_underscores=False,
        escape_asterisks=False,
    )


def normalize_whitespace(markdown: str) -> str:
    """Trim trailing spaces per line and collapse runs of blank lines."""
    lines = [re.sub(r"[\t ]+$", "", line) for line in markdown.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def html_to_markdown(title: str, html: str) -> str:
    """
    Convert page HTML to normalized Markdown headed by the page title.
    """
    soup = BeautifulSoup(html, "html.parser")

    _strip_boilerplate(soup)
    _rewrite_code_macros(soup)
    _tag_code_languages(soup)
    _ensure_table_headers(soup)

    try:
        markdown = _converter().convert_soup(soup)
    except Exception as exc:
        logger.warning("Failed to convert Confluence HTML to markdown: %s", exc)
        markdown = soup.get_text("\n")

    markdown = normalize_whitespace(markdown)
    heading = f"# {title}" if title else ""
    if heading and not (markdown == heading or markdown.startswith(f"{heading}\n")):
        markdown = f"{heading}\n\n{markdown}"

    return normalize_whitespace(markdown)


def clean_page(page: RawPage) -> Optional[CleanPage]:
    """
    Produce a CleanPage, or None when the page has no body.
    """
    if not page.body_html:
        return None

    etag = str(page.version_number) if page.version_number is not None else page.updated_at

    return CleanPage(
        page_id=page.id,
        title=page.title,
        markdown=html_to_markdown(page.title, page.body_html),
        space_key=page.space_key,
        updated_at=page.updated_at,
        etag=etag,
        version_number=page.version_number,
        url=page.url,
    )
