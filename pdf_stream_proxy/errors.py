from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    UNSATISFIABLE_RANGE = "UNSATISFIABLE_RANGE"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    INVALID_DOCUMENT = "INVALID_DOCUMENT"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"


class ProxyError(Exception):
    """Expected failure while serving a proxied PDF request.

    Raised by the fetcher and the request handler, caught once in
    ``PdfStreamProxy.handle`` and turned into a plain-text response
    carrying ``status_code``.
    """

    code: ErrorCode
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ProxyError):
    code = ErrorCode.INVALID_INPUT
    status_code = 400


class UnsatisfiableRange(ProxyError):
    code = ErrorCode.UNSATISFIABLE_RANGE
    status_code = 416

    def __init__(self, message: str, total: int) -> None:
        super().__init__(message)
        self.total = total


class UpstreamUnavailable(ProxyError):
    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = 502


class EmptyResponse(ProxyError):
    code = ErrorCode.EMPTY_RESPONSE
    status_code = 502


class InvalidDocument(ProxyError):
    """Full-file body did not look like a PDF; ``text`` holds the decoded body."""

    code = ErrorCode.INVALID_DOCUMENT
    status_code = 422

    def __init__(self, message: str, text: str) -> None:
        super().__init__(message)
        self.text = text


class UpstreamTimeout(ProxyError):
    code = ErrorCode.UPSTREAM_TIMEOUT
    status_code = 504
