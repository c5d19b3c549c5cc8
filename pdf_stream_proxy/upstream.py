"""HTTP access to the origin object store holding the PDF files.

All network I/O goes through one UpstreamFetcher per process. It either owns
its ``httpx.AsyncClient`` (created in :meth:`UpstreamFetcher.startup`) or uses
one injected by the caller, which is how tests plug in a mock transport.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import anyio
import httpx

from .errors import (
    EmptyResponse,
    InvalidDocument,
    InvalidInput,
    ProxyError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from .metrics import UPSTREAM_FAILURES

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .config import ProxySettings
    from .ranges import ByteRange

LOG = logging.getLogger("pdf_stream_proxy.upstream")

PDF_SIGNATURE = b"%PDF"

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)
LOCAL_HOST_NAMES = frozenset({"localhost", "localhost.localdomain"})
COPIED_RESPONSE_HEADERS = ("content-type", "etag", "last-modified", "content-range")
FORWARDED_REQUEST_HEADERS = ("if-none-match", "if-modified-since")


@dataclass(frozen=True)
class UpstreamBody:
    status_code: int
    content: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


def is_internal_address(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Whether ``addr`` points somewhere the proxy must never connect to."""
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_unspecified
        or addr.is_multicast
    )


def literal_address(
    hostname: str,
) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse ``hostname`` as an IP literal, including the legacy IPv4 forms.

    ``127.1``, ``2130706433`` and ``0x7f000001`` are not valid for
    :func:`ipaddress.ip_address` but the system resolver still maps them to
    ``127.0.0.1``, so they go through ``inet_aton`` as well.
    """
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    try:
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except OSError:
        return None


def validate_pdf_url(
    url: str | None, allowed_hosts: frozenset[str] | None = None
) -> str:
    """Check that ``url`` is safe to fetch before any network call is made.

    Only ``https`` URLs whose path ends in ``.pdf`` are accepted. Internal IP
    literals (in any notation the resolver understands) and ``localhost``
    names are refused outright, and when ``allowed_hosts`` is given the host
    must be one of them. DNS names are checked again after resolution by
    :func:`refuse_internal_destinations`.

    Raises:
        InvalidInput: if the URL is missing or fails any of the checks.
    """
    if not url:
        raise InvalidInput("Missing url parameter")
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
    except ValueError as exc:
        raise InvalidInput("Invalid URL") from exc

    if parts.scheme.lower() != "https":
        raise InvalidInput("Invalid URL: only https is allowed")
    if not hostname:
        raise InvalidInput("Invalid URL: missing host")
    if not parts.path.lower().endswith(".pdf"):
        raise InvalidInput("Invalid URL: not a PDF path")

    bare_host = hostname.rstrip(".").lower()
    if bare_host in LOCAL_HOST_NAMES or bare_host.endswith(".localhost"):
        LOG.warning("refusing local host name url=%s", url)
        raise InvalidInput("Invalid URL: private address")
    addr = literal_address(bare_host)
    if addr is not None and is_internal_address(addr):
        LOG.warning("refusing private address url=%s", url)
        raise InvalidInput("Invalid URL: private address")

    if allowed_hosts is not None and hostname.lower() not in allowed_hosts:
        LOG.warning("refusing host outside allowlist url=%s", url)
        raise InvalidInput("Invalid URL: host not allowed")
    return url


def filter_upstream_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Keep only the upstream response headers that are safe to pass on."""
    prepared: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered in HOP_BY_HOP_HEADERS:
            continue
        if lowered in COPIED_RESPONSE_HEADERS:
            prepared[lowered] = value
    return prepared


async def refuse_internal_destinations(request: httpx.Request) -> None:
    """Request hook that resolves the target host and refuses internal ones.

    It runs before every request the client sends, redirect hops included,
    so a public name that resolves to a private address is caught as well as
    a redirect that points at one.
    """
    if request.url.scheme != "https":
        LOG.warning("refusing non-https hop url=%s", request.url)
        raise InvalidInput("Invalid URL: only https is allowed")

    host = request.url.host
    try:
        infos = await anyio.getaddrinfo(
            host, request.url.port or 443, type=socket.SOCK_STREAM
        )
    except OSError as exc:
        message = f"Cannot resolve {host}: {exc}"
        raise httpx.ConnectError(message, request=request) from exc

    for *_, sockaddr in infos:
        addr = ipaddress.ip_address(sockaddr[0])
        if is_internal_address(addr):
            LOG.warning("refusing url=%s, %s resolves to %s", request.url, host, addr)
            raise InvalidInput("Invalid URL: private address")


def build_http_client() -> httpx.AsyncClient:
    # identity keeps Content-Length and ranged bodies in file byte units
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(30.0),
        trust_env=False,
        headers={
            "User-Agent": "pdf-stream-proxy/1.0",
            "Accept-Encoding": "identity",
        },
        event_hooks={"request": [refuse_internal_destinations]},
    )


class UpstreamFetcher:
    def __init__(
        self, settings: ProxySettings, client: httpx.AsyncClient | None = None
    ):
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    async def startup(self) -> None:
        if self._client is None:
            self._client = build_http_client()
            self._owns_client = True

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def head_length(self, url: str) -> int:
        """Return the upstream resource length in bytes from a HEAD request."""
        client = self._require_client()
        timeout = self._settings.head_timeout
        try:
            with anyio.fail_after(timeout):
                response = await client.head(url, timeout=httpx.Timeout(timeout))
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise self._failed(
                UpstreamTimeout(f"Upstream HEAD timed out after {timeout:g}s")
            ) from exc
        except httpx.HTTPError as exc:
            raise self._failed(
                UpstreamUnavailable(f"Upstream metadata error: {exc}")
            ) from exc

        if not response.is_success:
            raise self._failed(
                UpstreamUnavailable(
                    f"Upstream metadata error: status {response.status_code}"
                )
            )

        raw_length = response.headers.get("content-length", "").strip()
        length = int(raw_length) if raw_length.isdecimal() else 0
        if length <= 0:
            raise self._failed(UpstreamUnavailable("Invalid content length"))
        LOG.debug("HEAD %s content-length=%d", url, length)
        return length

    async def fetch(
        self,
        url: str,
        byte_range: ByteRange | None = None,
        conditional_headers: Mapping[str, str] | None = None,
    ) -> UpstreamBody:
        """GET ``url`` (or one range of it) and validate the body.

        Nothing returned from here is partial: the whole body has been read
        and checked before the call returns.
        """
        client = self._require_client()
        headers = self._prepare_outgoing_headers(byte_range, conditional_headers)
        timeout = self._settings.get_timeout
        try:
            with anyio.fail_after(timeout):
                response = await client.get(
                    url, headers=headers, timeout=httpx.Timeout(timeout)
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise self._failed(
                UpstreamTimeout(f"Upstream GET timed out after {timeout:g}s")
            ) from exc
        except httpx.HTTPError as exc:
            raise self._failed(UpstreamUnavailable(f"Upstream error: {exc}")) from exc

        passed_headers = filter_upstream_headers(response.headers)
        if response.status_code == 304:
            return UpstreamBody(304, b"", passed_headers)
        if not response.is_success:
            raise self._failed(
                UpstreamUnavailable(f"Upstream error: {response.status_code}")
            )

        content = response.content
        if not content:
            raise self._failed(EmptyResponse("Empty response"))

        if byte_range is None:
            self._check_signature(content)
            return UpstreamBody(200, content, passed_headers)

        content = self._match_range(content, byte_range, response.status_code)
        return UpstreamBody(206, content, passed_headers)

    async def fetch_range(self, url: str, byte_range: ByteRange | None = None) -> bytes:
        body = await self.fetch(url, byte_range)
        return body.content

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            message = "upstream fetcher not initialised"
            raise RuntimeError(message)
        return self._client

    def _prepare_outgoing_headers(
        self,
        byte_range: ByteRange | None,
        conditional_headers: Mapping[str, str] | None,
    ) -> dict[str, str]:
        prepared: dict[str, str] = {}
        if byte_range is not None:
            prepared["Range"] = byte_range.header_value
        for key, value in (conditional_headers or {}).items():
            if key.lower() in FORWARDED_REQUEST_HEADERS:
                prepared[key.lower()] = value
        return prepared

    def _check_signature(self, content: bytes) -> None:
        if content[: len(PDF_SIGNATURE)] == PDF_SIGNATURE:
            return
        if len(content) < self._settings.error_page_max_bytes:
            text = content.decode("utf-8", errors="replace")
            raise self._failed(InvalidDocument(f"Invalid PDF: {text}", text))
        LOG.warning(
            "full body lacks %r signature (%d bytes), serving anyway",
            PDF_SIGNATURE,
            len(content),
        )

    def _match_range(
        self, content: bytes, byte_range: ByteRange, status_code: int
    ) -> bytes:
        if len(content) == byte_range.length:
            return content
        if status_code == 200 and len(content) == byte_range.total:
            LOG.debug("upstream ignored Range, slicing %s locally", byte_range)
            return content[byte_range.start : byte_range.end + 1]
        raise self._failed(
            UpstreamUnavailable(
                f"Upstream returned {len(content)} bytes for "
                f"{byte_range.header_value}, expected {byte_range.length}"
            )
        )

    @staticmethod
    def _failed(error: ProxyError) -> ProxyError:
        UPSTREAM_FAILURES.labels(code=error.code).inc()
        LOG.warning("upstream failure (%s): %s", error.code, error.message)
        return error
