"""Content ingestion."""

from .service import (
    ChromiumPageRenderer,
    ContentIngestor,
    ContentSource,
    IngestionConfig,
    PageRenderer,
    normalize_text,
    scrape_html,
)

__all__ = [
    "ChromiumPageRenderer",
    "ContentIngestor",
    "ContentSource",
    "IngestionConfig",
    "PageRenderer",
    "normalize_text",
    "scrape_html",
]
