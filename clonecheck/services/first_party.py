"""
First-party data extraction.

Fetches the target website's HTML with httpx and pulls title, description,
main heading and a content snippet out of it with BeautifulSoup. The raw
values always pass through ``ValidationService.validate_first_party_data``
before they are handed to the analysis.

Failures:
    - Timeout (504, retryable): the site did not answer within the timeout
    - FirstPartyExtraction (503, retryable): HTTP error status, non-HTML
      content, network failure or nothing usable extracted
    - Validation (422): the URL itself is not an http(s) URL
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from bs4 import BeautifulSoup

from clonecheck.config.settings import Settings, get_settings
from clonecheck.models.schemas import (
    FirstPartyData,
    InvalidUrlError,
    UnsupportedProtocolError,
    parse_http_url,
)
from clonecheck.services.validation_service import ValidationService
from clonecheck.utils.errors import AppError, ErrorType, ValidationError, classify_error
from clonecheck.utils.logger import get_logger
from clonecheck.utils.results import InvalidKind
from clonecheck.utils.retry import retry_with_backoff

logger = get_logger(__name__)


@dataclass
class FirstPartyExtractionResult:
    """Outcome of ``FirstPartyExtractor.fetch_with_retry``."""
    url: str
    success: bool
    data: Optional[FirstPartyData] = None
    error_type: Optional[ErrorType] = None
    error_message: Optional[str] = None
    retryable: bool = False
    attempts: int = 0
    elapsed_ms: int = 0


class FirstPartyExtractor:
    """
    Scrapes metadata from the target site.

    Example:
        >>> async with FirstPartyExtractor(timeout_ms=5000) as extractor:
        ...     data = await extractor.extract_or_none("https://example.com")
    """

    HEADERS = {
        "User-Agent": "Mozilla/5.0 (compatible; clonecheck/1.0)",
        "Accept": "text/html,application/xhtml+xml",
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "max-age=300",
    }

    DESCRIPTION_META = [
        {"name": "description"},
        {"property": "og:description"},
        {"name": "twitter:description"},
    ]

    # Ordered by specificity
    CONTENT_SELECTORS = [
        "main",
        '[role="main"]',
        ".main-content",
        ".content",
        "article",
        ".post-content",
        ".entry-content",
        ".article-content",
    ]

    UNWANTED_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript", "iframe"]

    WHITESPACE_PATTERN = re.compile(r"\s+")

    def __init__(
        self,
        timeout_ms: int = 10000,
        max_bytes: int = 2 * 1024 * 1024,
        client: Optional[httpx.AsyncClient] = None,
        validation_service: Optional[ValidationService] = None,
    ):
        self.timeout_ms = timeout_ms
        self.max_bytes = max_bytes
        self.validation = validation_service or ValidationService()
        self._client = client
        self._owns_client = client is None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_ms / 1000),
                follow_redirects=True,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
            self._owns_client = True

    async def disconnect(self) -> None:
        """Close HTTP client if this extractor created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FirstPartyExtractor":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    # =========================================================================
    # Fetching
    # =========================================================================

    async def _fetch_html(self, url: str) -> str:
        start = time.monotonic()
        try:
            async with self._client.stream("GET", url, headers=self.HEADERS) as response:
                if response.status_code >= 400:
                    kind = "client" if response.status_code < 500 else "server"
                    raise AppError.first_party_extraction(
                        f"HTTP {response.status_code} fetching {url}",
                        details={"status": response.status_code, "side": kind},
                    )

                content_type = response.headers.get("content-type", "")
                if "text/html" not in content_type.lower():
                    raise AppError.first_party_extraction(
                        f"Non-HTML content type for {url}: {content_type or 'missing'}",
                        details={"content_type": content_type},
                    )

                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    remaining = self.max_bytes - total
                    if len(chunk) > remaining:
                        chunks.append(chunk[:remaining])
                        logger.warning("HTML content too large, truncating", url=url, max_bytes=self.max_bytes)
                        break
                    chunks.append(chunk)
                    total += len(chunk)

                return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

        except httpx.TimeoutException as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            raise AppError.timeout(
                f"Timeout fetching {url} after {elapsed_ms}ms (limit: {self.timeout_ms}ms)",
                details={"url": url},
            ) from e
        except httpx.HTTPError as e:
            raise AppError.first_party_extraction(
                f"Network error fetching {url}: {e}",
                details={"url": url, "cause": type(e).__name__},
            ) from e

    # =========================================================================
    # Parsing
    # =========================================================================

    def _clean(self, text: str) -> str:
        return self.WHITESPACE_PATTERN.sub(" ", text).strip()

    def parse_html(self, html: str, url: str) -> dict[str, Any]:
        """
        Extract raw first-party fields from an HTML document.

        Title falls back to the first h1, then "Untitled". Description comes
        from description/og/twitter meta tags, then the first paragraph longer
        than 20 characters. The snippet prefers a main-content container, then
        the first five paragraphs, then body text.
        """
        soup = BeautifulSoup(html, "html.parser")

        first_h1 = soup.find("h1")
        h1_text = self._clean(first_h1.get_text(" ")) if first_h1 else ""

        title = self._clean(soup.title.get_text(" ")) if soup.title else ""
        title = title or h1_text or "Untitled"

        description = ""
        for attrs in self.DESCRIPTION_META:
            tag = soup.find("meta", attrs=attrs)
            if tag and tag.get("content"):
                description = self._clean(tag["content"])
                if description:
                    break
        if not description:
            first_p = soup.find("p")
            paragraph = self._clean(first_p.get_text(" ")) if first_p else ""
            if len(paragraph) > 20:
                description = paragraph[:200] + ("..." if len(paragraph) > 200 else "")

        h1 = h1_text or title

        for tag in soup(self.UNWANTED_TAGS):
            tag.decompose()

        text_snippet = ""
        for selector in self.CONTENT_SELECTORS:
            container = soup.select_one(selector)
            if container is not None:
                text_snippet = container.get_text(" ")
                break
        else:
            paragraphs = soup.find_all("p", limit=5)
            text_snippet = " ".join(p.get_text(" ") for p in paragraphs)
            if not self._clean(text_snippet) and soup.body:
                text_snippet = soup.body.get_text(" ")[:1000]

        text_snippet = self._clean(text_snippet)[:500]
        if len(text_snippet) < 10:
            text_snippet = description or title or "No content available"

        return {
            "title": title[:200],
            "description": description[:300],
            "h1": h1[:200],
            "textSnippet": text_snippet,
            "url": url,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    async def extract(self, url: str) -> FirstPartyData:
        """
        Fetch and extract sanitized first-party data.

        Raises:
            ValidationError: ``url`` is not an http(s) URL.
            AppError: ``TIMEOUT`` or ``FIRST_PARTY_EXTRACTION`` kinds.
        """
        try:
            canonical = parse_http_url(url)
        except UnsupportedProtocolError as e:
            raise ValidationError(str(e), kind=InvalidKind.UNSUPPORTED_PROTOCOL, field="url", value=url) from e
        except InvalidUrlError as e:
            raise ValidationError(str(e), kind=InvalidKind.INVALID_URL, field="url", value=url) from e

        start = time.monotonic()
        created_client = self._client is None
        if created_client:
            await self.connect()
        try:
            html = await self._fetch_html(canonical)
        finally:
            if created_client:
                await self.disconnect()

        data = self.validation.validate_first_party_data(self.parse_html(html, canonical))
        if data is None:
            raise AppError.first_party_extraction(
                f"No usable first-party data extracted from {canonical}",
                details={"url": canonical},
            )

        logger.info(
            "First-party data extracted",
            url=canonical,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            title=data.title,
        )
        return data

    async def extract_or_none(self, url: str) -> Optional[FirstPartyData]:
        """Like ``extract`` but degrades every failure to ``None``."""
        try:
            return await self.extract(url)
        except AppError as e:
            logger.warning(
                "First-party extraction failed, continuing without it",
                url=url,
                error_type=e.error_type.value,
                error=e.message,
            )
            return None

    async def fetch_with_retry(
        self,
        url: str,
        retry_count: int = 1,
        retry_delay_ms: int = 1000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> FirstPartyExtractionResult:
        """
        Extract with a fixed-delay retry and report the outcome as data.

        ``retry_count`` is the number of retries after the first attempt.
        Invalid URLs are not retried.
        """
        result = await retry_with_backoff(
            lambda: self.extract(url),
            max_attempts=retry_count + 1,
            delay_ms=retry_delay_ms,
            backoff_multiplier=1,
            max_delay_ms=retry_delay_ms,
            sleep=sleep,
        )

        if result.success:
            return FirstPartyExtractionResult(
                url=url,
                success=True,
                data=result.data,
                attempts=result.attempts,
                elapsed_ms=result.total_time_ms,
            )

        error = classify_error(result.error)
        return FirstPartyExtractionResult(
            url=url,
            success=False,
            error_type=error.error_type,
            error_message=error.message,
            retryable=error.retryable,
            attempts=result.attempts,
            elapsed_ms=result.total_time_ms,
        )


def create_first_party_extractor(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FirstPartyExtractor:
    """
    Factory function to create a FirstPartyExtractor from settings.

    Args:
        settings: Optional settings override
        client: Optional pre-built HTTP client (not closed by the extractor)
    """
    settings = settings or get_settings()
    return FirstPartyExtractor(
        timeout_ms=settings.first_party_timeout_ms,
        max_bytes=settings.first_party_max_bytes,
        client=client,
    )


__all__ = [
    "FirstPartyExtractor",
    "FirstPartyExtractionResult",
    "create_first_party_extractor",
]
