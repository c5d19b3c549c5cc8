from __future__ import annotations

from prometheus_client import Counter

CACHE_HITS = Counter(
    "pdf_stream_proxy_cache_hits_total",
    "Proxy requests answered from the chunk cache.",
    ["scope_kind"],
)
CACHE_MISSES = Counter(
    "pdf_stream_proxy_cache_misses_total",
    "Proxy requests that had to go upstream.",
    ["scope_kind"],
)
CACHE_EVICTIONS = Counter(
    "pdf_stream_proxy_cache_evictions_total",
    "Chunk cache entries removed by eviction or expiry.",
    ["reason"],
)
UPSTREAM_FAILURES = Counter(
    "pdf_stream_proxy_upstream_failures_total",
    "Upstream requests that failed, by error code.",
    ["code"],
)
