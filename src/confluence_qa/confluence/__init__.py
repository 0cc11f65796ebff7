from .models import CleanPage, FetchPagesResult, RawPage
from .client import ConfluenceClient
from .clean import clean_page, html_to_markdown
from .chunk import Chunk, chunk_page, detect_pii

__all__ = [
    "Chunk",
    "CleanPage",
    "ConfluenceClient",
    "FetchPagesResult",
    "RawPage",
    "chunk_page",
    "clean_page",
    "detect_pii",
    "html_to_markdown",
]
