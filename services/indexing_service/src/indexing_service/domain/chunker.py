from __future__ import annotations

import bisect
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import NamedTuple

import structlog
import tiktoken

from indexing_service.domain.models import Document, DocumentChunk

logger = structlog.get_logger(__name__)

# Paragraph separator: a line break followed by an empty (or blank) line.
_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n\s*")
_HEADING_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]+\S[^\n]*|(?:kapitel|chapter|teil|abschnitt|section)[ \t]+\w[^\n]*)$",
    re.IGNORECASE | re.MULTILINE,
)


class TokenCounter(ABC):
    @abstractmethod
    def count(self, text: str) -> int: ...


class CharEstimateCounter(TokenCounter):
    """1 token ≈ 4 characters, for when no tokenizer is configured."""

    def __init__(self, chars_per_token: int = 4) -> None:
        self._chars_per_token = chars_per_token

    def count(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self._chars_per_token)


class TiktokenCounter(TokenCounter):
    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self._enc = tiktoken.get_encoding(encoding_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text, disallowed_special=()))


def build_token_counter(encoding_name: str | None) -> TokenCounter:
    if encoding_name:
        return TiktokenCounter(encoding_name)
    return CharEstimateCounter()


class _Span(NamedTuple):
    overlap_start: int
    start: int
    end: int


class ChunkingService:
    """Token-bounded, structure-aware text chunking with overlap.

    Every chunk's text is a contiguous slice ``source[overlap_start:end]``:
    the trailing ``overlap_tokens`` of the previous chunk followed by the
    chunk's own region ``source[start:end]``. Own regions tile the source
    without gaps, and no chunk's text exceeds ``max_tokens``.
    """

    def __init__(
        self,
        max_tokens: int = 600,
        overlap_tokens: int = 150,
        preserve_structure: bool = True,
        token_counter: TokenCounter | None = None,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be positive")
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError("overlap_tokens must be >= 0 and smaller than max_tokens")
        self._max_tokens = max_tokens
        self._overlap = overlap_tokens
        self._preserve_structure = preserve_structure
        self._counter = token_counter or CharEstimateCounter()

    @property
    def counter(self) -> TokenCounter:
        return self._counter

    def chunk(self, document: Document) -> list[DocumentChunk]:
        return list(self.iter_chunks(document))

    def iter_chunks(self, document: Document) -> Iterator[DocumentChunk]:
        text = document.text
        if not text.strip():
            logger.debug("chunking.skipped.empty", document_id=document.document_id)
            return

        spans = self._plan(text)
        headings = [m.start() for m in _HEADING_RE.finditer(text)] if self._preserve_structure else []
        base_metadata = _inherited_metadata(document)
        total = len(spans)

        logger.debug(
            "chunking.completed",
            document_id=document.document_id,
            char_count=len(text),
            chunk_count=total,
        )

        for index, span in enumerate(spans):
            chunk_text = text[span.overlap_start : span.end]
            metadata = {
                **base_metadata,
                "section_title": _section_title(text, headings, span),
                "chunk_of_total": f"{index + 1}/{total}",
            }
            yield DocumentChunk(
                document_id=document.document_id,
                chunk_index=index,
                text=chunk_text,
                token_count=self._counter.count(chunk_text),
                overlap_chars=span.start - span.overlap_start,
                start_char=span.start,
                end_char=span.end,
                metadata=metadata,
            )

    def _plan(self, text: str) -> list[_Span]:
        n = len(text)
        if self._counter.count(text) <= self._max_tokens:
            return [_Span(0, 0, n)]

        unit_ends = self._unit_ends(text)
        spans: list[_Span] = []
        start = 0
        while start < n:
            overlap_start = self._overlap_start(text, spans[-1].overlap_start, start) if spans else start
            # The overlap must leave room for at least one character of new text.
            if overlap_start < start and not self._fits(text, overlap_start, start + 1):
                overlap_start = start

            end = start
            for unit_end in unit_ends[bisect.bisect_right(unit_ends, start) :]:
                if not self._fits(text, overlap_start, unit_end):
                    break
                end = unit_end

            if end == start:
                next_end = unit_ends[bisect.bisect_right(unit_ends, start)]
                end = self._hard_split(text, overlap_start, start, next_end)

            spans.append(_Span(overlap_start, start, end))
            start = end

        return spans

    def _fits(self, text: str, start: int, end: int) -> bool:
        return self._counter.count(text[start:end]) <= self._max_tokens

    def _unit_ends(self, text: str) -> list[int]:
        """End offsets of the structural units, the last one being ``len(text)``."""
        n = len(text)
        if not self._preserve_structure:
            return [n]
        ends = {m.end() for m in _BLANK_LINE_RE.finditer(text)}
        ends.update(m.start() for m in _HEADING_RE.finditer(text))
        ends.add(n)
        return sorted(e for e in ends if 0 < e <= n)

    def _overlap_start(self, text: str, floor: int, start: int) -> int:
        """Earliest offset in ``[floor, start]`` whose suffix fits ``overlap_tokens``."""
        if self._overlap == 0:
            return start
        lo, hi = floor, start
        while lo < hi:
            mid = (lo + hi) // 2
            if self._counter.count(text[mid:start]) <= self._overlap:
                hi = mid
            else:
                lo = mid + 1
        # Start the overlap on a word boundary when one is available.
        if lo > floor and not text[lo - 1].isspace():
            match = re.search(r"\s", text[lo:start])
            if match is not None:
                lo = lo + match.end()
        return lo

    def _hard_split(self, text: str, overlap_start: int, start: int, limit: int) -> int:
        """Largest cut in ``(start, limit]`` that keeps the chunk within max_tokens."""
        lo, hi = start + 1, limit
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._fits(text, overlap_start, mid):
                lo = mid
            else:
                hi = mid - 1
        cut = lo

        # Prefer cutting after whitespace in the back half of the piece.
        if cut < limit:
            piece = text[start:cut]
            ws = max(piece.rfind(" "), piece.rfind("\n"), piece.rfind("\t"))
            if ws >= len(piece) // 2:
                cut = start + ws + 1
        return cut


def _inherited_metadata(document: Document) -> dict:
    meta = document.metadata
    inherited: dict = dict(meta.extra)
    inherited["title"] = meta.title
    inherited["document_type"] = meta.document_type
    return inherited


def _section_title(text: str, headings: list[int], span: _Span) -> str | None:
    if not headings:
        return None
    pos = bisect.bisect_right(headings, span.start) - 1
    if pos < 0:
        # No heading before the chunk; use the first one inside it, if any.
        if headings[0] >= span.end:
            return None
        pos = 0
    line_start = headings[pos]
    line_end = text.find("\n", line_start)
    line = text[line_start : line_end if line_end != -1 else len(text)]
    return line.strip().lstrip("#").strip() or None
