from __future__ import annotations

import re
from dataclasses import dataclass, field

import httpx
import pytest

from pdf_stream_proxy import ChunkCache, PdfStreamProxy, ProxySettings, UpstreamFetcher

BOOK_URL = "https://store.example.com/storage/v1/object/public/books/book.pdf"

_RANGE = re.compile(r"bytes=(\d+)-(\d+)")


def make_pdf(size: int) -> bytes:
    """Return ``size`` bytes that start with a PDF signature."""
    header = b"%PDF-1.4\n"
    return header + b"x" * (size - len(header))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeUpstream:
    """In-memory object store speaking just enough HTTP for the fetcher."""

    objects: dict[str, bytes] = field(default_factory=dict)
    head_overrides: dict[str, httpx.Response] = field(default_factory=dict)
    get_overrides: dict[str, httpx.Response] = field(default_factory=dict)
    calls: list[tuple[str, str, str | None]] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)

    def add(self, url: str, content: bytes) -> None:
        self.objects[url] = content

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        range_header = request.headers.get("range")
        self.calls.append((request.method, url, range_header))
        self.requests.append(request)

        if request.method == "HEAD" and url in self.head_overrides:
            return self.head_overrides[url]
        if request.method == "GET" and url in self.get_overrides:
            return self.get_overrides[url]

        body = self.objects.get(url)
        if body is None:
            return httpx.Response(404, text="Object not found")

        common = {
            "content-type": "application/pdf",
            "etag": '"v1"',
            "last-modified": "Wed, 21 Oct 2026 07:28:00 GMT",
            "connection": "keep-alive",
            "x-amz-request-id": "abc",
        }
        if request.method == "HEAD":
            return httpx.Response(
                200, headers={**common, "content-length": str(len(body))}
            )

        match = _RANGE.fullmatch(range_header or "")
        if match is None:
            return httpx.Response(200, headers=common, content=body)
        start, end = int(match.group(1)), int(match.group(2))
        return httpx.Response(
            206,
            headers={**common, "content-range": f"bytes {start}-{end}/{len(body)}"},
            content=body[start : end + 1],
        )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> ProxySettings:
    return ProxySettings(
        cache_max_bytes=1024 * 1024,
        cache_ttl_seconds=300,
        head_timeout=1.0,
        get_timeout=1.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http_client(upstream: FakeUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def fetcher(settings: ProxySettings, http_client: httpx.AsyncClient) -> UpstreamFetcher:
    return UpstreamFetcher(settings, client=http_client)


@pytest.fixture
def cache(settings: ProxySettings, clock: FakeClock) -> ChunkCache:
    return ChunkCache(
        max_size_bytes=settings.cache_max_bytes,
        ttl_seconds=settings.cache_ttl_seconds,
        clock=clock,
    )


@pytest.fixture
def proxy(
    settings: ProxySettings, cache: ChunkCache, fetcher: UpstreamFetcher
) -> PdfStreamProxy:
    return PdfStreamProxy(settings, cache=cache, fetcher=fetcher)
