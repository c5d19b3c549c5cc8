"""Routing tests for the ASGI application."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from litestar.testing import TestClient

from pdf_stream_proxy import PdfStreamProxy, create_app
from pdf_stream_proxy.app import _book_id_from_path
from pdf_stream_proxy.cache import CacheKey
from pdf_stream_proxy.proxy import book_scope

from .conftest import BOOK_URL, FakeUpstream, make_pdf


@pytest.fixture
def client(proxy: PdfStreamProxy) -> Iterator[TestClient]:
    with TestClient(app=create_app(proxy)) as test_client:
        yield test_client


class TestRoutes:
    """Test the HTTP surface end to end against a fake upstream."""

    def test_health(self, client: TestClient):
        """Test that the health endpoint answers ok."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_full_file(self, client: TestClient, upstream: FakeUpstream):
        """Test that a full file is served once from upstream, then from cache."""
        body = make_pdf(120000)
        upstream.add(BOOK_URL, body)

        first = client.get("/pdf-proxy", params={"url": BOOK_URL})
        second = client.get("/pdf-proxy", params={"url": BOOK_URL})

        assert first.status_code == 200
        assert first.headers["content-length"] == "120000"
        assert first.headers["content-type"] == "application/pdf"
        assert first.headers["accept-ranges"] == "bytes"
        assert first.content == body
        assert second.status_code == 200
        assert second.content == body
        assert upstream.count("GET") == 1

    def test_range_request(self, client: TestClient, upstream: FakeUpstream):
        """Test that a Range header yields 206 with matching length headers."""
        body = make_pdf(1000)
        upstream.add(BOOK_URL, body)

        response = client.get(
            "/pdf-proxy", params={"url": BOOK_URL}, headers={"Range": "bytes=0-99"}
        )

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 0-99/1000"
        assert response.headers["content-length"] == "100"
        assert response.content == body[:100]
        assert upstream.calls[-1] == ("GET", BOOK_URL, "bytes=0-99")

    def test_unsatisfiable_range(self, client: TestClient, upstream: FakeUpstream):
        """Test that an out-of-bounds range yields 416 with the total size."""
        upstream.add(BOOK_URL, make_pdf(1000))

        response = client.get(
            "/pdf-proxy", params={"url": BOOK_URL}, headers={"Range": "bytes=5000-"}
        )

        assert response.status_code == 416
        assert response.headers["content-range"] == "bytes */1000"

    def test_missing_url(self, client: TestClient, upstream: FakeUpstream):
        """Test that a request without url is refused before any network call."""
        response = client.get("/pdf-proxy")

        assert response.status_code == 400
        assert upstream.calls == []

    def test_head(self, client: TestClient, upstream: FakeUpstream):
        """Test that HEAD reports cache stats without downloading the body."""
        upstream.add(BOOK_URL, make_pdf(1000))

        response = client.head("/pdf-proxy", params={"url": BOOK_URL})

        assert response.status_code == 200
        stats = json.loads(response.headers["x-cache-stats"])
        assert stats["size"] == 0
        assert upstream.count("GET") == 0

    def test_head_invalid_url(self, client: TestClient):
        """Test that HEAD refuses a non-https URL."""
        response = client.head("/pdf-proxy", params={"url": "http://x/book.pdf"})
        assert response.status_code == 400

    def test_other_methods_are_rejected(self, client: TestClient):
        """Test that methods other than GET and HEAD get 405 with Allow."""
        response = client.post("/pdf-proxy", params={"url": BOOK_URL})
        assert response.status_code == 405
        assert response.headers["allow"] == "GET, HEAD"

    def test_book_stream_uses_book_scope(
        self, client: TestClient, upstream: FakeUpstream, proxy: PdfStreamProxy
    ):
        """Test that the per-book route caches under the book scope."""
        body = make_pdf(1000)
        upstream.add(BOOK_URL, body)

        response = client.get(
            "/pdf-stream/book-42",
            params={"url": BOOK_URL},
            headers={"Range": "bytes=10-19"},
        )

        assert response.status_code == 206
        assert response.content == body[10:20]
        assert CacheKey(book_scope("book-42"), BOOK_URL, 10, 19) in proxy.cache

    def test_book_stream_without_id(self, client: TestClient, upstream: FakeUpstream):
        """Test that the per-book route needs a book id."""
        response = client.get("/pdf-stream/", params={"url": BOOK_URL})

        assert response.status_code == 400
        assert upstream.calls == []

    def test_cors_exposes_range_headers(self, client: TestClient, upstream):
        """Test that cross-origin readers can see range metadata."""
        upstream.add(BOOK_URL, make_pdf(1000))

        response = client.get(
            "/pdf-proxy",
            params={"url": BOOK_URL},
            headers={"Origin": "https://reader.example.com", "Range": "bytes=0-9"},
        )

        exposed = response.headers["access-control-expose-headers"].lower()
        assert "content-range" in exposed
        assert "accept-ranges" in exposed


class TestBookIdFromPath:
    """Test book id extraction from the mounted path."""

    def test_mount_relative_path(self):
        """Test extraction from a path relative to the mount."""
        assert _book_id_from_path("/book-42") == "book-42"

    def test_full_path(self):
        """Test extraction from a path that still carries the mount prefix."""
        assert _book_id_from_path("/pdf-stream/book-42/") == "book-42"

    def test_empty(self):
        """Test that a bare mount path yields an empty id."""
        assert _book_id_from_path("/") == ""
