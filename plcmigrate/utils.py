"""
Shared text helpers for the Structured Text analyzers.
"""

import hashlib
import re
from bisect import bisect_right
from typing import Any, Iterable, List, Optional, Sequence, Tuple


def coerce_source(source: Any) -> str:
    """Return source as text; ``None`` and non-text input become an empty string."""
    if source is None:
        return ""
    if isinstance(source, bytes):
        return source.decode("utf-8", errors="ignore")
    if not isinstance(source, str):
        return ""
    return source


def make_id(prefix: str, *parts: Any) -> str:
    """
    Build a deterministic identifier from its parts.

    Args:
        prefix: Short entity prefix such as ``pou`` or ``var``
        *parts: Values that identify the entity (file, name, line ...)

    Returns:
        ``<prefix>_<12 hex chars>`` derived from a SHA-1 of the parts
    """
    key = "\x1f".join(str(p) for p in parts)
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}_{digest}"


class LineIndex:
    """Maps absolute character offsets to 1-based line/column pairs."""

    def __init__(self, text: str):
        self.text = text
        self._starts = [0]
        for match in re.finditer(r"\n", text):
            self._starts.append(match.end())

    @property
    def line_count(self) -> int:
        return len(self._starts)

    def line_of(self, offset: int) -> int:
        return bisect_right(self._starts, offset)

    def column_of(self, offset: int) -> int:
        line = self.line_of(offset)
        return offset - self._starts[line - 1] + 1

    def position(self, offset: int) -> Tuple[int, int]:
        line = self.line_of(offset)
        return line, offset - self._starts[line - 1] + 1

    def line_text(self, line: int) -> str:
        if line < 1 or line > len(self._starts):
            return ""
        start = self._starts[line - 1]
        end = self._starts[line] - 1 if line < len(self._starts) else len(self.text)
        return self.text[start:end]


def blank_spans(text: str, spans: Iterable[Tuple[int, int]]) -> str:
    """Replace each ``(start, end)`` span with spaces, keeping newlines intact."""
    chars = list(text)
    for start, end in spans:
        for i in range(start, min(end, len(chars))):
            if chars[i] != "\n":
                chars[i] = " "
    return "".join(chars)


def context_lines(lines: List[str], line: int, radius: int = 3) -> str:
    """Return up to ``radius`` lines around ``line`` (1-based), joined by newlines."""
    start = max(0, line - 1 - radius)
    end = min(len(lines), line + radius)
    return "\n".join(lines[start:end])


def find_enclosing(pous, line: int, file_path: Optional[str] = None):
    """Return the POU whose source range contains ``line``, if any."""
    for pou in pous or []:
        if file_path is not None and pou.location.file != file_path:
            continue
        if pou.location.line <= line <= pou.body_end_line:
            return pou
    return None


def belongs_to(pou, pou_id: Optional[str], location) -> bool:
    """Whether a finding is owned by ``pou``, by id when known, else by source range."""
    if pou_id is not None:
        return pou_id == pou.id
    return (location.file == pou.location.file
            and pou.location.line <= location.line <= pou.body_end_line)


def involves(pou, pou_ids: Sequence[str], location) -> bool:
    """Whether a finding used in several POUs touches ``pou``; falls back to its source range."""
    if pou_ids:
        return pou.id in pou_ids
    return belongs_to(pou, None, location)
