"""Range-aware PDF streaming proxy with an in-process chunk cache."""

from .app import create_app
from .cache import CacheKey, ChunkCache
from .config import ProxySettings
from .proxy import PdfStreamProxy
from .ranges import ByteRange, parse_range
from .upstream import UpstreamFetcher

__all__ = [
    "ByteRange",
    "CacheKey",
    "ChunkCache",
    "PdfStreamProxy",
    "ProxySettings",
    "UpstreamFetcher",
    "create_app",
    "parse_range",
]
