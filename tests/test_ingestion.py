"""Tests for content ingestion."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from ragedit.errors import EmptyContentError, FetchFailedError, UnparseableContentError
from ragedit.ingestion import ContentIngestor, ContentSource, IngestionConfig, normalize_text, scrape_html

PAGE = """
<html>
  <head><title>Release notes</title><style>body { color: red; }</style></head>
  <body>
    <nav>Home | About</nav>
    <h1>Version&nbsp;2</h1>
    <p>Faster   streaming.</p>
    <script>console.log("hidden")</script>
  </body>
</html>
"""


def _ingestor(handler=None, **config) -> ContentIngestor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return ContentIngestor(IngestionConfig(**config), client=client)


def test_normalize_text_collapses_whitespace_and_keeps_paragraphs():
    assert normalize_text("a b   c \r\n\n\n\n d\t\te") == "a b c\n\nd e"


def test_scrape_html_drops_scripts_and_navigation():
    text, title = scrape_html(PAGE)
    assert title == "Release notes"
    assert "console.log" not in text
    assert "Home | About" not in text
    assert "color: red" not in text


async def test_html_source_yields_text_and_provenance():
    content = await _ingestor().ingest(ContentSource.html(PAGE, label="notes.html"))
    assert content.text.split() == ["Release", "notes", "Version", "2", "Faster", "streaming."]
    assert content.provenance.title == "Release notes"
    assert content.provenance.source == "notes.html"
    assert content.provenance.media_kind == "html"


async def test_empty_markup_is_rejected():
    with pytest.raises(EmptyContentError):
        await _ingestor().ingest(ContentSource.html("<html><script>x()</script></html>"))


async def test_url_outside_allowlist_is_rejected():
    with pytest.raises(FetchFailedError):
        await _ingestor().ingest(ContentSource.url("https://example.com/page"))


async def test_url_download_is_scraped():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["user-agent"] == "ragedit-test"
        return httpx.Response(200, text=PAGE, headers={"content-type": "text/html; charset=utf-8"})

    ingestor = _ingestor(handler, allowed_domains=("example.com",), user_agent="ragedit-test")
    content = await ingestor.ingest(ContentSource.url("https://example.com/notes"))
    assert "Faster streaming." in content.text
    assert content.provenance.source == "https://example.com/notes"
    assert content.provenance.extra["content_type"] == "text/html"


async def test_plain_text_download_is_not_scraped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<b>literal</b> text", headers={"content-type": "text/plain"})

    ingestor = _ingestor(handler, allowed_domains=("example.com",))
    content = await ingestor.ingest(ContentSource.url("https://example.com/raw.txt"))
    assert content.text == "<b>literal</b> text"


async def test_oversized_download_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"x" * 2048, headers={"content-type": "text/plain"})

    ingestor = _ingestor(handler, allowed_domains=("example.com",), max_download_bytes=1024)
    with pytest.raises(FetchFailedError):
        await ingestor.ingest(ContentSource.url("https://example.com/big"))


async def test_http_error_status_is_a_fetch_failure():
    ingestor = _ingestor(lambda request: httpx.Response(404), allowed_domains=("example.com",))
    with pytest.raises(FetchFailedError):
        await ingestor.ingest(ContentSource.url("https://example.com/missing"))


async def test_text_file_records_display_name(tmp_path: Path) -> None:
    document = tmp_path / "example.txt"
    document.write_text("Hello world", encoding="utf-8")

    content = await _ingestor().ingest(ContentSource.file(document))

    assert content.text == "Hello world"
    assert content.provenance.extra["display_name"] == "example.txt"


async def test_unsupported_file_type(tmp_path: Path) -> None:
    document = tmp_path / "archive.zip"
    document.write_bytes(b"PK")
    with pytest.raises(UnparseableContentError):
        await _ingestor().ingest(ContentSource.file(document))


async def test_ingest_many_skips_failed_sources():
    results = await _ingestor().ingest_many(
        [
            ContentSource.text("First document."),
            ContentSource.url("https://blocked.example.org/"),
            ContentSource.text("   "),
            ContentSource.text("Second document."),
        ],
    )
    assert [item.text for item in results] == ["First document.", "Second document."]
