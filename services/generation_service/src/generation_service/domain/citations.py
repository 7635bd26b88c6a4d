from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from shared.schemas.documents import Citation, SearchResult, Source, sort_by_score

logger = structlog.get_logger(__name__)

# A sentence runs to terminal punctuation (plus any markers right after it) followed by
# whitespace, or to the end of its line.
_SENTENCE_RE = re.compile(
    r"\S.*?(?:[.!?]+(?:[ \t]?\[\d{1,3}\])*(?=\s)|[.!?]+(?:[ \t]?\[\d{1,3}\])*$|$)", re.MULTILINE
)
_WORD_RE = re.compile(r"\w+")
# Marker runs at the end of a sentence, before or after its terminal punctuation.
_TRAILING_MARKERS_RE = re.compile(r"(?:[ \t]?\[\d{1,3}\])+([.!?]*)(?:[ \t]?\[\d{1,3}\])*$")
_QUOTE_RE = re.compile(r"[\"„“»«]([^\"„“”»«\n]{20,})[\"“”«»]")

_MIN_WORD_LENGTH = 4
_EXCERPT_LIMIT = 300
_STOPWORDS = frozenset(
    {
        "about", "also", "been", "from", "have", "into", "more", "other", "such",
        "than", "that", "their", "there", "these", "they", "this", "were", "what",
        "when", "which", "while", "will", "with", "would",
        "aber", "auch", "dass", "denn", "dies", "diese", "dieser", "durch", "eine",
        "einem", "einen", "einer", "eines", "haben", "hat", "nach", "nicht", "noch",
        "oder", "sehr", "sich", "sind", "über", "unter", "wenn", "werden", "wird",
        "wurde", "zwischen",
    }
)


def content_words(text: str) -> set[str]:
    words = (w.lower() for w in _WORD_RE.findall(text))
    return {w for w in words if len(w) >= _MIN_WORD_LENGTH and not w.isdigit() and w not in _STOPWORDS}


def _normalise(text: str) -> str:
    return " ".join(text.split()).lower()


def _truncate(text: str, limit: int = _EXCERPT_LIMIT) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


@dataclass(frozen=True)
class _Passage:
    result: SearchResult
    words: frozenset[str]
    normalised: str


@dataclass
class DocumentContext:
    """All passages retrieved for one document, best-scoring first."""

    document_id: str
    title: str | None
    document_type: str | None
    passages: list[_Passage] = field(default_factory=list)

    @property
    def best(self) -> SearchResult:
        return self.passages[0].result


def build_document_context(results: list[SearchResult]) -> list[DocumentContext]:
    """One entry per unique document id, in first-seen order."""
    entries: dict[str, DocumentContext] = {}
    seen: set[tuple[str, int]] = set()
    for result in results:
        if result.key in seen:
            continue
        seen.add(result.key)
        entry = entries.get(result.document_id)
        if entry is None:
            entry = DocumentContext(
                document_id=result.document_id,
                title=result.title,
                document_type=result.metadata.get("document_type"),
            )
            entries[result.document_id] = entry
        entry.passages.append(
            _Passage(
                result=result,
                words=frozenset(content_words(result.chunk_text)),
                normalised=_normalise(result.chunk_text),
            )
        )

    for entry in entries.values():
        ordered = sort_by_score([p.result for p in entry.passages])
        by_key = {p.result.key: p for p in entry.passages}
        entry.passages = [by_key[r.key] for r in ordered]
    return list(entries.values())


@dataclass(frozen=True)
class CitationOutcome:
    annotated_answer: str
    citations: list[Citation]
    sources: list[Source]
    uncited_document_ids: list[str]


class CitationProcessor:
    """Attributes sentences of a generated answer to retrieved passages.

    A sentence is attributed to a passage when it quotes at least 20
    characters of it verbatim, or when at least ``min_shared_words`` of its
    content words appear in the passage and they make up at least
    ``min_overlap_ratio`` of the sentence's content words. Attributed
    sentences get inline ``[n]`` markers; ``n`` is assigned the first time a
    document is cited and reused afterwards.
    """

    def __init__(
        self,
        min_overlap_ratio: float = 0.5,
        min_shared_words: int = 3,
        max_sources_per_sentence: int = 2,
    ) -> None:
        self._min_overlap_ratio = min_overlap_ratio
        self._min_shared_words = min_shared_words
        self._max_sources_per_sentence = max_sources_per_sentence

    def process(self, answer_text: str, results: list[SearchResult]) -> CitationOutcome:
        if not results:
            return CitationOutcome(
                annotated_answer=answer_text,
                citations=[],
                sources=[],
                uncited_document_ids=[],
            )

        entries = build_document_context(results)

        source_indexes: dict[str, int] = {}
        citations: list[Citation] = []
        cited_spans: set[tuple[str, str]] = set()
        pieces: list[str] = []
        cursor = 0

        for match in _SENTENCE_RE.finditer(answer_text):
            raw_sentence = match.group(0).rstrip()
            if raw_sentence.startswith("#"):
                continue
            # Markers the model wrote itself cannot be trusted to line up with our numbering.
            sentence = _TRAILING_MARKERS_RE.sub(r"\1", raw_sentence)
            if not sentence:
                continue
            attributions = self._attribute(sentence, entries)
            if not attributions:
                continue

            markers: list[int] = []
            for entry, passage in attributions:
                source_index = source_indexes.setdefault(entry.document_id, len(source_indexes) + 1)
                if source_index not in markers:
                    markers.append(source_index)
                if (entry.document_id, sentence) in cited_spans:
                    continue
                cited_spans.add((entry.document_id, sentence))
                citations.append(
                    Citation(
                        source_index=source_index,
                        document_id=entry.document_id,
                        chunk_index=passage.result.chunk_index,
                        matched_span=sentence,
                        passage_excerpt=self._excerpt(passage.result.chunk_text, sentence),
                        score=passage.result.score,
                    )
                )

            separator = " " if sentence[-1].isalnum() else ""
            pieces.append(answer_text[cursor : match.start()])
            pieces.append(sentence + separator + "".join(f"[{n}]" for n in markers))
            cursor = match.start() + len(raw_sentence)

        pieces.append(answer_text[cursor:])

        by_document = {entry.document_id: entry for entry in entries}
        sources = [
            Source(
                source_index=source_index,
                document_id=document_id,
                title=by_document[document_id].title,
                document_type=by_document[document_id].document_type,
                excerpt=_truncate(by_document[document_id].best.chunk_text),
                score=by_document[document_id].best.score,
            )
            for document_id, source_index in sorted(source_indexes.items(), key=lambda item: item[1])
        ]
        uncited = [entry.document_id for entry in entries if entry.document_id not in source_indexes]
        if uncited:
            logger.info(
                "citations.documents.uncited",
                uncited_count=len(uncited),
                document_ids=uncited,
            )

        logger.info(
            "citations.processed",
            citation_count=len(citations),
            source_count=len(sources),
        )
        return CitationOutcome(
            annotated_answer="".join(pieces),
            citations=citations,
            sources=sources,
            uncited_document_ids=uncited,
        )

    def _attribute(
        self, sentence: str, entries: list[DocumentContext]
    ) -> list[tuple[DocumentContext, _Passage]]:
        words = content_words(sentence)
        quotes = [_normalise(q) for q in _QUOTE_RE.findall(sentence)]
        if len(words) < self._min_shared_words and not quotes:
            return []

        scored: list[tuple[float, DocumentContext, _Passage]] = []
        for entry in entries:
            best: tuple[float, _Passage] | None = None
            for passage in entry.passages:
                strength = self._strength(words, quotes, passage)
                if strength > 0 and (best is None or strength > best[0]):
                    best = (strength, passage)
            if best is not None:
                scored.append((best[0], entry, best[1]))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [(entry, passage) for _, entry, passage in scored[: self._max_sources_per_sentence]]

    def _strength(self, words: set[str], quotes: list[str], passage: _Passage) -> float:
        # Verbatim quotes outrank any lexical overlap.
        if any(quote in passage.normalised for quote in quotes):
            return 2.0
        if not words:
            return 0.0
        shared = len(words & passage.words)
        if shared < self._min_shared_words:
            return 0.0
        ratio = shared / len(words)
        return ratio if ratio >= self._min_overlap_ratio else 0.0

    @staticmethod
    def _excerpt(passage_text: str, sentence: str) -> str:
        """The passage sentence sharing the most content words with ``sentence``."""
        words = content_words(sentence)
        best_text = passage_text
        best_overlap = -1
        for match in _SENTENCE_RE.finditer(passage_text):
            overlap = len(words & content_words(match.group(0)))
            if overlap > best_overlap:
                best_text, best_overlap = match.group(0), overlap
        return _truncate(best_text)
