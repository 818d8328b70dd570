import httpx
import pytest

from clonecheck.services.first_party import (
    FirstPartyExtractor,
    create_first_party_extractor,
)
from clonecheck.utils.errors import AppError, ErrorType, ValidationError
from clonecheck.utils.results import InvalidKind


PAGE = """
<html>
  <head>
    <title>Acme Widgets | Home</title>
    <meta name="description" content="Acme builds widgets for small teams that need to ship fast.">
    <script>var tracking = "<ignored>";</script>
  </head>
  <body>
    <nav>Home Pricing About</nav>
    <h1>Widgets for   small teams</h1>
    <main>
      <p>Acme is a widget company.</p>
      <p>Pricing starts at $9 per month & scales with you.</p>
    </main>
    <footer>Copyright Acme</footer>
  </body>
</html>
"""


def html_response(body: str, status: int = 200, content_type: str = "text/html; charset=utf-8"):
    return httpx.Response(status, text=body, headers={"content-type": content_type})


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# Parsing
# =============================================================================

def test_parse_html_extracts_fields():
    extractor = FirstPartyExtractor()
    data = extractor.parse_html(PAGE, "https://acme.example/")

    assert data["title"] == "Acme Widgets | Home"
    assert data["description"] == "Acme builds widgets for small teams that need to ship fast."
    assert data["h1"] == "Widgets for small teams"
    assert data["textSnippet"] == "Acme is a widget company. Pricing starts at $9 per month & scales with you."
    assert data["url"] == "https://acme.example/"


def test_parse_html_fallbacks():
    html = "<html><body><h1>Only a heading</h1><p>This paragraph is long enough to be a description.</p></body></html>"
    data = FirstPartyExtractor().parse_html(html, "https://acme.example/")

    assert data["title"] == "Only a heading"
    assert data["description"] == "This paragraph is long enough to be a description."
    assert data["textSnippet"] == "This paragraph is long enough to be a description."


def test_parse_html_og_description():
    html = '<html><head><meta property="og:description" content="From Open Graph tags"></head><body></body></html>'
    data = FirstPartyExtractor().parse_html(html, "https://acme.example/")

    assert data["description"] == "From Open Graph tags"
    assert data["title"] == "Untitled"
    assert data["textSnippet"] == "From Open Graph tags"


# =============================================================================
# Extraction
# =============================================================================

@pytest.mark.asyncio
async def test_extract_sanitizes_output():
    client = make_client(lambda request: html_response(PAGE))
    extractor = FirstPartyExtractor(client=client)

    data = await extractor.extract("https://Acme.example")

    assert data.url == "https://acme.example/"
    assert data.title == "Acme Widgets | Home"
    assert "&" not in data.text_snippet
    await client.aclose()


@pytest.mark.asyncio
async def test_extract_sends_headers():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers["user-agent"]
        return html_response(PAGE)

    async with make_client(handler) as client:
        await FirstPartyExtractor(client=client).extract("https://acme.example")

    assert "clonecheck" in seen["ua"]


@pytest.mark.asyncio
async def test_extract_http_error_status():
    async with make_client(lambda request: html_response("nope", status=404)) as client:
        with pytest.raises(AppError) as exc:
            await FirstPartyExtractor(client=client).extract("https://acme.example")

    assert exc.value.error_type == ErrorType.FIRST_PARTY_EXTRACTION
    assert exc.value.status_code == 503
    assert exc.value.details["status"] == 404


@pytest.mark.asyncio
async def test_extract_rejects_non_html():
    async with make_client(lambda request: html_response("{}", content_type="application/json")) as client:
        with pytest.raises(AppError, match="Non-HTML content type"):
            await FirstPartyExtractor(client=client).extract("https://acme.example")


@pytest.mark.asyncio
async def test_extract_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with make_client(handler) as client:
        with pytest.raises(AppError) as exc:
            await FirstPartyExtractor(client=client, timeout_ms=2000).extract("https://acme.example")

    assert exc.value.error_type == ErrorType.TIMEOUT
    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_extract_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(AppError) as exc:
            await FirstPartyExtractor(client=client).extract("https://acme.example")

    assert exc.value.error_type == ErrorType.FIRST_PARTY_EXTRACTION


@pytest.mark.asyncio
async def test_extract_truncates_large_documents():
    body = "<html><head><title>Big page</title></head><body>" + "<p>filler text</p>" * 1000 + "</body></html>"
    async with make_client(lambda request: html_response(body)) as client:
        data = await FirstPartyExtractor(client=client, max_bytes=1024).extract("https://acme.example")

    assert data.title == "Big page"


@pytest.mark.asyncio
@pytest.mark.parametrize("url, kind", [
    ("ftp://acme.example", InvalidKind.UNSUPPORTED_PROTOCOL),
    ("acme.example", InvalidKind.INVALID_URL),
])
async def test_extract_rejects_bad_urls(url, kind):
    with pytest.raises(ValidationError) as exc:
        await FirstPartyExtractor().extract(url)
    assert exc.value.kind == kind


@pytest.mark.asyncio
async def test_extract_or_none_degrades():
    async with make_client(lambda request: html_response("", status=500)) as client:
        assert await FirstPartyExtractor(client=client).extract_or_none("https://acme.example") is None


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client = make_client(lambda request: html_response(PAGE))
    async with FirstPartyExtractor(client=client) as extractor:
        await extractor.extract("https://acme.example")

    assert client.is_closed is False
    await client.aclose()


# =============================================================================
# Retry
# =============================================================================

@pytest.mark.asyncio
async def test_fetch_with_retry_recovers(no_sleep):
    responses = iter([html_response("", status=503), html_response(PAGE)])

    async with make_client(lambda request: next(responses)) as client:
        result = await FirstPartyExtractor(client=client).fetch_with_retry(
            "https://acme.example", retry_count=1, retry_delay_ms=500, sleep=no_sleep
        )

    assert result.success is True
    assert result.attempts == 2
    assert result.data.title == "Acme Widgets | Home"
    no_sleep.assert_awaited_once_with(0.5)


@pytest.mark.asyncio
async def test_fetch_with_retry_reports_failure(no_sleep):
    async with make_client(lambda request: html_response("", status=502)) as client:
        result = await FirstPartyExtractor(client=client).fetch_with_retry(
            "https://acme.example", retry_count=2, sleep=no_sleep
        )

    assert result.success is False
    assert result.attempts == 3
    assert result.error_type == ErrorType.FIRST_PARTY_EXTRACTION
    assert result.retryable is True
    assert result.data is None


@pytest.mark.asyncio
async def test_fetch_with_retry_does_not_retry_invalid_url(no_sleep):
    result = await FirstPartyExtractor().fetch_with_retry("mailto:someone@acme.example", sleep=no_sleep)

    assert result.success is False
    assert result.attempts == 1
    assert result.error_type == ErrorType.VALIDATION
    no_sleep.assert_not_called()


def test_factory_uses_settings(mock_settings):
    mock_settings.first_party_timeout_ms = 4000
    mock_settings.first_party_max_bytes = 4096

    extractor = create_first_party_extractor(mock_settings)

    assert extractor.timeout_ms == 4000
    assert extractor.max_bytes == 4096
