"""Content ingestion: fetch and normalize external sources into plain text."""

from __future__ import annotations

import asyncio
import re
import tempfile
import time
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Literal, Mapping, Protocol, Sequence

import httpx
from bs4 import BeautifulSoup
from langchain_community.document_loaders import BSHTMLLoader, Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader

from ragedit.errors import (
    EmptyContentError,
    FetchFailedError,
    IngestionError,
    UnparseableContentError,
)
from ragedit.metrics.observability import PipelineMetrics, get_logger
from ragedit.models import IngestedContent, Provenance

SourceKind = Literal["url", "rendered_url", "html", "text", "file"]

_STRIPPED_TAGS = ("script", "style", "noscript", "template", "nav", "footer", "header", "svg")


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for content ingestion."""

    allowed_domains: tuple[str, ...] = ()
    max_download_bytes: int = 25 * 1024 * 1024
    timeout_seconds: float = 30.0
    user_agent: str = "ragedit-ingestor/0.1"
    encoding: str = "utf-8"


@dataclass(frozen=True)
class ContentSource:
    """A source to ingest. ``kind`` selects how ``value`` is interpreted."""

    kind: SourceKind
    value: str
    label: str | None = None
    extra: Mapping[str, object] = field(default_factory=dict)

    @classmethod
    def url(cls, url: str) -> "ContentSource":
        return cls(kind="url", value=url)

    @classmethod
    def rendered_url(cls, url: str) -> "ContentSource":
        return cls(kind="rendered_url", value=url)

    @classmethod
    def html(cls, markup: str, label: str | None = None) -> "ContentSource":
        return cls(kind="html", value=markup, label=label)

    @classmethod
    def text(cls, text: str, label: str | None = None) -> "ContentSource":
        return cls(kind="text", value=text, label=label)

    @classmethod
    def file(cls, path: Path | str) -> "ContentSource":
        return cls(kind="file", value=str(path))

    @property
    def provenance_source(self) -> str:
        if self.label:
            return self.label
        if self.kind in ("html", "text"):
            return f"inline:{self.kind}"
        return self.value


class PageRenderer(Protocol):
    """Renders a script-driven page and returns its final markup."""

    async def render(self, url: str) -> str:
        """Return the HTML of ``url`` after scripts ran."""


class ChromiumPageRenderer:
    """Headless Chromium renderer backed by LangChain's playwright loader."""

    def __init__(self, user_agent: str | None = None, headless: bool = True) -> None:
        self._user_agent = user_agent
        self._headless = headless

    async def render(self, url: str) -> str:
        try:
            from langchain_community.document_loaders import AsyncChromiumLoader
        except ImportError as exc:  # pragma: no cover - optional extra
            raise FetchFailedError("Rendering pages requires the playwright extra") from exc
        loader = AsyncChromiumLoader([url], headless=self._headless, user_agent=self._user_agent)
        try:
            return await loader.ascrape_playwright(url)
        except Exception as exc:  # pragma: no cover - browser specific errors
            raise FetchFailedError(f"Failed to render {url}: {exc}") from exc


def normalize_text(raw: str) -> str:
    """NFKC-normalize text, collapse intra-line whitespace and blank-line runs."""

    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    normalized = re.sub(r"[ \t\f\v]+", " ", normalized)
    normalized = re.sub(r" *\n *", "\n", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def scrape_html(markup: str) -> tuple[str, str | None]:
    """Return the visible text and the title of an HTML document."""

    try:
        soup = BeautifulSoup(markup, "html.parser")
    except Exception as exc:  # pragma: no cover - parser specific errors
        raise UnparseableContentError(f"Could not parse markup: {exc}") from exc
    title = soup.title.get_text(strip=True) if soup.title else None
    for tag in soup(_STRIPPED_TAGS):
        tag.decompose()
    return soup.get_text(separator="\n"), title or None


class ContentIngestor:
    """Turn a :class:`ContentSource` into normalized :class:`IngestedContent`."""

    _LOADERS: Mapping[str, type[BaseLoader]] = {
        ".pdf": PyPDFLoader,
        ".docx": Docx2txtLoader,
        ".txt": TextLoader,
        ".md": TextLoader,
        ".html": BSHTMLLoader,
        ".htm": BSHTMLLoader,
    }

    _CONTENT_TYPE_SUFFIXES: Mapping[str, str] = {
        "application/pdf": ".pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    }

    _logger = get_logger("ingestion")

    def __init__(
        self,
        config: IngestionConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        renderer: PageRenderer | None = None,
    ) -> None:
        self._config = config or IngestionConfig()
        self._client = client
        self._renderer = renderer or ChromiumPageRenderer(user_agent=self._config.user_agent)
        self._handlers: Mapping[SourceKind, Callable[[ContentSource], Awaitable[tuple[str, str | None, dict]]]] = {
            "url": self._from_url,
            "rendered_url": self._from_rendered_url,
            "html": self._from_html,
            "text": self._from_text,
            "file": self._from_file,
        }

    async def ingest(self, source: ContentSource) -> IngestedContent:
        start = time.perf_counter()
        handler = self._handlers.get(source.kind)
        if handler is None:
            raise UnparseableContentError(f"Unsupported source kind: {source.kind}")
        raw, title, extra = await handler(source)
        text = normalize_text(raw)
        if not text:
            raise EmptyContentError(f"No text content in {source.provenance_source}")
        provenance = Provenance(
            source=source.provenance_source,
            media_kind=source.kind,
            title=title,
            extra={**dict(source.extra), **extra},
        )
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration)
        self._logger.info(
            "ingestion.complete",
            source=provenance.source,
            kind=source.kind,
            characters=len(text),
            duration_seconds=duration,
        )
        return IngestedContent(text=text, provenance=provenance)

    async def ingest_many(self, sources: Sequence[ContentSource]) -> list[IngestedContent]:
        """Ingest every source; failed jobs are logged and skipped."""

        results: List[IngestedContent] = []
        for source in sources:
            try:
                results.append(await self.ingest(source))
            except IngestionError as exc:
                PipelineMetrics.ingestion_failures.labels(reason=type(exc).__name__).inc()
                self._logger.warning(
                    "ingestion.skipped",
                    source=source.provenance_source,
                    kind=source.kind,
                    error=str(exc),
                )
        return results

    async def _from_text(self, source: ContentSource) -> tuple[str, str | None, dict]:
        return source.value, None, {}

    async def _from_html(self, source: ContentSource) -> tuple[str, str | None, dict]:
        text, title = scrape_html(source.value)
        return text, title, {}

    async def _from_rendered_url(self, source: ContentSource) -> tuple[str, str | None, dict]:
        self._check_domain(source.value)
        markup = await self._renderer.render(source.value)
        text, title = scrape_html(markup)
        return text, title, {"rendered": True}

    async def _from_url(self, source: ContentSource) -> tuple[str, str | None, dict]:
        url = source.value
        self._check_domain(url)
        body, content_type = await self._download(url)
        extra: dict = {"content_type": content_type, "bytes": len(body)}
        if content_type in self._CONTENT_TYPE_SUFFIXES:
            suffix = self._CONTENT_TYPE_SUFFIXES[content_type]
            with tempfile.TemporaryDirectory() as tmpdir:
                path = Path(tmpdir) / f"download{suffix}"
                path.write_bytes(body)
                return await self._load_file(path), None, extra
        try:
            decoded = body.decode(self._config.encoding)
        except UnicodeDecodeError as exc:
            raise UnparseableContentError(f"Undecodable response from {url}") from exc
        if content_type in ("text/plain", "text/markdown"):
            return decoded, None, extra
        text, title = scrape_html(decoded)
        return text, title, extra

    async def _from_file(self, source: ContentSource) -> tuple[str, str | None, dict]:
        path = Path(source.value)
        return await self._load_file(path), None, {"display_name": path.name}

    async def _load_file(self, path: Path) -> str:
        suffix = path.suffix.lower()
        loader_cls = self._LOADERS.get(suffix)
        if loader_cls is None:
            raise UnparseableContentError(f"Unsupported document type: {suffix or '<none>'}")
        try:
            loader = self._build_loader(loader_cls, path)
            documents = await asyncio.to_thread(loader.load)
        except Exception as exc:  # pragma: no cover - loader specific errors
            raise UnparseableContentError(f"Failed to load {path}: {exc}") from exc
        return "\n\n".join(document.page_content for document in documents)

    def _build_loader(self, loader_cls: type[BaseLoader], path: Path) -> BaseLoader:
        if loader_cls is TextLoader:
            return loader_cls(str(path), encoding=self._config.encoding)
        return loader_cls(str(path))

    def _check_domain(self, url: str) -> None:
        try:
            host = httpx.URL(url).host or ""
        except Exception as exc:
            raise FetchFailedError(f"Invalid URL: {url}") from exc
        if not self._config.allowed_domains or host not in self._config.allowed_domains:
            raise FetchFailedError(f"Domain not allowed: {host or url}")

    async def _download(self, url: str) -> tuple[bytes, str]:
        client = self._client or httpx.AsyncClient()
        headers = {"User-Agent": self._config.user_agent}
        try:
            async with client.stream(
                "GET",
                url,
                headers=headers,
                timeout=self._config.timeout_seconds,
                follow_redirects=True,
            ) as response:
                if response.status_code >= 400:
                    raise FetchFailedError(f"Download failed ({response.status_code}): {url}")
                content_type = response.headers.get("content-type", "text/html").split(";")[0].strip().lower()
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self._config.max_download_bytes:
                        raise FetchFailedError(f"Download too large: {url}")
        except httpx.HTTPError as exc:
            raise FetchFailedError(f"Failed downloading {url}: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()
        return bytes(body), content_type

