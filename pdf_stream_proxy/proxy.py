from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from litestar.enums import MediaType
from litestar.response import Response

from .cache import GLOBAL_SCOPE, CacheKey, ChunkCache
from .config import ProxySettings, load_settings_from_env
from .errors import InvalidInput, ProxyError, UnsatisfiableRange
from .metrics import CACHE_HITS, CACHE_MISSES
from .ranges import ByteRange, parse_range, unsatisfied_content_range
from .upstream import FORWARDED_REQUEST_HEADERS, UpstreamFetcher, validate_pdf_url

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar import Request

LOG = logging.getLogger("pdf_stream_proxy.proxy")

PDF_MEDIA_TYPE = "application/pdf"


def book_scope(book_id: str) -> str:
    """Cache scope for the per-book stream route, kept apart from the global one."""
    return f"book:{book_id}"


class PdfStreamProxy:
    """Serves ranged PDF requests from the chunk cache or the upstream store.

    One instance lives for the whole process. The cache and the fetcher are
    injected so tests can run against fresh instances and a mocked upstream.
    """

    def __init__(
        self,
        settings: ProxySettings,
        cache: ChunkCache | None = None,
        fetcher: UpstreamFetcher | None = None,
    ):
        self._settings = settings
        self._cache = (
            cache
            if cache is not None
            else ChunkCache(
                max_size_bytes=settings.cache_max_bytes,
                ttl_seconds=settings.cache_ttl_seconds,
            )
        )
        self._fetcher = fetcher if fetcher is not None else UpstreamFetcher(settings)

    @property
    def settings(self) -> ProxySettings:
        return self._settings

    @property
    def cache(self) -> ChunkCache:
        return self._cache

    async def startup(self) -> None:
        await self._fetcher.startup()
        LOG.info(
            "PDF stream proxy ready (cache max=%d bytes, ttl=%gs, hosts=%s)",
            self._cache.max_size_bytes,
            self._cache.ttl_seconds,
            self._settings.allowed_hosts or "any",
        )

    async def shutdown(self) -> None:
        await self._fetcher.shutdown()

    async def handle(self, request: Request, book_id: str | None = None) -> Response:
        LOG.debug("handle method=%s book_id=%s", request.method, book_id)
        target_url = request.query_params.get("url")

        if book_id is None:
            scope = GLOBAL_SCOPE
        elif not book_id or "/" in book_id:
            return self._from_proxy_error(InvalidInput("Missing or invalid book id"))
        else:
            scope = book_scope(book_id)

        if request.method == "GET":
            return await self.handle_get(target_url, request.headers, scope)
        if request.method == "HEAD":
            return await self.handle_head(target_url)
        return Response(
            content="Method Not Allowed",
            status_code=405,
            headers={"Allow": "GET, HEAD"},
            media_type=MediaType.TEXT,
        )

    async def handle_get(
        self,
        target_url: str | None,
        headers: Mapping[str, str],
        scope: str = GLOBAL_SCOPE,
    ) -> Response:
        started = time.perf_counter()
        try:
            return await self._serve(target_url, headers, scope, started)
        except ProxyError as error:
            return self._from_proxy_error(error)
        except Exception:
            LOG.exception("unexpected failure proxying url=%s", target_url)
            return Response(
                content="Internal server error",
                status_code=500,
                media_type=MediaType.TEXT,
            )

    async def handle_head(self, target_url: str | None) -> Response:
        """Check that the upstream PDF is reachable without moving any bytes."""
        try:
            url = validate_pdf_url(target_url, self._settings.allowed_host_set)
            total = await self._fetcher.head_length(url)
        except ProxyError as error:
            return Response(content=b"", status_code=error.status_code)
        except Exception:
            LOG.exception("unexpected failure checking url=%s", target_url)
            return Response(content=b"", status_code=500)

        LOG.debug("HEAD ok url=%s total=%d", url, total)
        headers = {
            "Accept-Ranges": "bytes",
            "X-Cache-Stats": json.dumps(self._cache.stats(), separators=(",", ":")),
        }
        return Response(
            content=b"", status_code=200, headers=headers, media_type=PDF_MEDIA_TYPE
        )

    async def _serve(
        self,
        target_url: str | None,
        headers: Mapping[str, str],
        scope: str,
        started: float,
    ) -> Response:
        request_headers = {key.lower(): value for key, value in headers.items()}
        url = validate_pdf_url(target_url, self._settings.allowed_host_set)
        total = await self._fetcher.head_length(url)

        byte_range: ByteRange | None = None
        range_header = request_headers.get("range")
        if range_header:
            byte_range = parse_range(range_header, total)
            if byte_range is None:
                raise UnsatisfiableRange(
                    f"Range not satisfiable: {range_header}", total
                )

        key = CacheKey.for_request(scope, url, byte_range)
        scope_kind = "global" if scope == GLOBAL_SCOPE else "book"
        cached = self._cache.get(key)
        if cached is not None:
            CACHE_HITS.labels(scope_kind=scope_kind).inc()
            LOG.debug("cache hit %s", key)
            return self._build_response(cached, byte_range)

        CACHE_MISSES.labels(scope_kind=scope_kind).inc()
        conditional = {
            name: request_headers[name]
            for name in FORWARDED_REQUEST_HEADERS
            if name in request_headers
        }
        body = await self._fetcher.fetch(url, byte_range, conditional)
        if body.not_modified:
            LOG.debug("upstream not modified %s", key)
            return Response(content=b"", status_code=304, headers=body.headers)

        self._cache.set(key, body.content)
        LOG.info("cached %s (%d bytes)", key, len(body.content))
        return self._build_response(
            body.content,
            byte_range,
            upstream_headers=body.headers,
            elapsed=time.perf_counter() - started,
        )

    def _build_response(
        self,
        data: bytes,
        byte_range: ByteRange | None,
        upstream_headers: Mapping[str, str] | None = None,
        elapsed: float | None = None,
    ) -> Response:
        # content-length is derived from the body by the response itself
        headers = dict(upstream_headers or {})
        media_type = headers.pop("content-type", PDF_MEDIA_TYPE)
        headers["accept-ranges"] = "bytes"
        headers["cache-control"] = self._settings.cache_control
        if elapsed is not None:
            headers["x-response-time"] = f"{round(elapsed * 1000)}ms"

        if byte_range is not None:
            headers["content-range"] = byte_range.content_range
            return Response(
                content=data, status_code=206, headers=headers, media_type=media_type
            )
        headers.pop("content-range", None)
        return Response(
            content=data, status_code=200, headers=headers, media_type=media_type
        )

    def _from_proxy_error(self, error: ProxyError) -> Response:
        headers: dict[str, str] = {}
        if isinstance(error, UnsatisfiableRange):
            headers["Content-Range"] = unsatisfied_content_range(error.total)
        return Response(
            content=error.message,
            status_code=error.status_code,
            headers=headers,
            media_type=MediaType.TEXT,
        )

    @classmethod
    def from_env(cls) -> PdfStreamProxy:
        """Create a PdfStreamProxy instance from environment variables.

        Returns:
            PdfStreamProxy configured from environment variables.
        """
        return cls(settings=load_settings_from_env())
