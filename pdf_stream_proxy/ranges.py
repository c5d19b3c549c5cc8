"""Single byte-range parsing for HTTP ``Range`` headers (RFC 7233)."""

from __future__ import annotations

import re
from dataclasses import dataclass

_RANGE_SPEC = re.compile(r"([0-9]*)-([0-9]*)")


@dataclass(frozen=True, slots=True)
class ByteRange:
    """Inclusive byte interval ``start..end`` of a resource of ``total`` bytes."""

    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"

    @property
    def header_value(self) -> str:
        return f"bytes={self.start}-{self.end}"


def unsatisfied_content_range(total: int) -> str:
    return f"bytes */{total}"


def parse_range(range_header: str | None, total_size: int) -> ByteRange | None:
    """Parse ``range_header`` against a resource of ``total_size`` bytes.

    Supports ``N-``, ``-K`` and ``N-M``. Returns ``None`` for anything that
    cannot be satisfied as a single range: other units, multiple ranges,
    non-numeric parts, ``start > end`` or ``end >= total_size``.
    """
    if not range_header or not range_header.startswith("bytes="):
        return None
    if total_size <= 0:
        return None

    spec = range_header[len("bytes=") :]
    if "," in spec:
        return None

    match = _RANGE_SPEC.fullmatch(spec.strip())
    if match is None:
        return None
    start_str, end_str = match.groups()

    if start_str and end_str:
        start = int(start_str)
        end = int(end_str)
    elif start_str:
        start = int(start_str)
        end = total_size - 1
    elif end_str:
        suffix = int(end_str)
        start = max(0, total_size - suffix)
        end = total_size - 1
    else:
        return None

    if start < 0 or end >= total_size or start > end:
        return None
    return ByteRange(start=start, end=end, total=total_size)
