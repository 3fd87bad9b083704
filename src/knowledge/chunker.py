"""
Text Chunker
============

Splits document text into overlapping spans for embedding.

Rules:
- Paragraph boundaries first, then sentences, then words, then a hard cut
- Adjacent chunks share up to `overlap` characters of context
- Offsets are exact: dropping each chunk's leading overlap and joining
  the rest reproduces the source text
- Stable chunking (same input = same chunks)
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .config import ChunkingConfig

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*\s+")

Range = Tuple[int, int]


@dataclass(frozen=True)
class ChunkSpan:
    """One chunk of a document, addressed by character offsets."""
    index: int
    text: str
    start: int
    end: int
    overlap: int  # leading characters shared with the previous span

    @property
    def core(self) -> str:
        """Text owned by this span alone."""
        return self.text[self.overlap:]


def reconstruct(spans: List[ChunkSpan]) -> str:
    """Rebuild the source text from its spans."""
    if not spans:
        return ""
    return spans[0].text + "".join(span.core for span in spans[1:])


def hash_content(content: str) -> str:
    """SHA256 of chunk content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class TextChunker:
    """
    Splits text into overlapping chunks.

    Preserves context by:
    1. Respecting paragraph and sentence boundaries when possible
    2. Overlapping characters between chunks, snapped to a word start
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()

    def size_for(self, length: int) -> Tuple[int, int]:
        """Pick (target_size, overlap) for a text of the given length."""
        if length < self.config.small_doc_threshold:
            return self.config.small_chunk_size, self.config.small_overlap
        return self.config.chunk_size, self.config.overlap

    def chunk(
        self,
        text: str,
        target_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> List[ChunkSpan]:
        """
        Split text into ordered, overlapping spans.

        Args:
            text: Source text
            target_size: Max characters per chunk core (adaptive if None)
            overlap: Characters of leading context (adaptive if None)

        Returns:
            List of ChunkSpan; empty for empty or whitespace-only text
        """
        if not text or not text.strip():
            return []

        adaptive_size, adaptive_overlap = self.size_for(len(text))
        target_size = adaptive_size if target_size is None else target_size
        overlap = adaptive_overlap if overlap is None else overlap

        if target_size <= 0:
            raise ValueError("target_size must be positive")
        if not 0 <= overlap < target_size:
            raise ValueError("overlap must be non-negative and smaller than target_size")

        pieces = list(self._split_pieces(text, target_size))
        cores = self._pack(text, pieces, target_size)
        spans = self._with_overlap(text, cores, overlap)

        logger.debug(f"Chunked {len(text)} chars into {len(spans)} spans (size={target_size}, overlap={overlap})")
        return spans

    def _split_pieces(self, text: str, target_size: int) -> Iterator[Range]:
        """Yield contiguous ranges covering the text, none longer than target_size unless unsplittable."""
        for start, end in self._paragraphs(text):
            if end - start <= target_size:
                yield start, end
                continue
            for s_start, s_end in self._sentences(text, start, end):
                if s_end - s_start <= target_size:
                    yield s_start, s_end
                else:
                    yield from self._hard_split(text, s_start, s_end, target_size)

    def _paragraphs(self, text: str) -> Iterator[Range]:
        """Paragraphs with their trailing blank-line separator attached."""
        prev = 0
        for match in PARAGRAPH_BREAK.finditer(text):
            if match.end() > prev:
                yield prev, match.end()
                prev = match.end()
        if prev < len(text):
            yield prev, len(text)

    def _sentences(self, text: str, start: int, end: int) -> Iterator[Range]:
        prev = start
        for match in SENTENCE_END.finditer(text, start, end):
            yield prev, match.end()
            prev = match.end()
        if prev < end:
            yield prev, end

    def _hard_split(self, text: str, start: int, end: int, size: int) -> Iterator[Range]:
        """Split an oversized sentence at word boundaries, or mid-word as a last resort."""
        pos = start
        while end - pos > size:
            cut = pos + size
            space = max(text.rfind(" ", pos + 1, cut), text.rfind("\n", pos + 1, cut))
            if space > pos + size // 2:
                cut = space + 1
            yield pos, cut
            pos = cut
        yield pos, end

    def _pack(self, text: str, pieces: List[Range], size: int) -> List[Range]:
        """Greedily merge pieces into chunk cores. Blank pieces never start a new core."""
        cores: List[Range] = []
        cur_start: Optional[int] = None
        cur_end = 0

        for start, end in pieces:
            if cur_start is None:
                cur_start, cur_end = start, end
                continue

            blank = not text[start:end].strip()
            cur_blank = not text[cur_start:cur_end].strip()
            if blank or cur_blank or end - cur_start <= size:
                cur_end = end
            else:
                cores.append((cur_start, cur_end))
                cur_start, cur_end = start, end

        if cur_start is not None:
            cores.append((cur_start, cur_end))
        return cores

    def _with_overlap(self, text: str, cores: List[Range], overlap: int) -> List[ChunkSpan]:
        spans = []
        for i, (core_start, core_end) in enumerate(cores):
            start = core_start
            if i > 0 and overlap > 0:
                prev_start = cores[i - 1][0]
                start = max(core_start - overlap, prev_start)
                start = self._snap_to_word(text, start, core_start)
            spans.append(ChunkSpan(
                index=i,
                text=text[start:core_end],
                start=start,
                end=core_end,
                overlap=core_start - start,
            ))
        return spans

    @staticmethod
    def _snap_to_word(text: str, lo: int, hi: int) -> int:
        """First word start in [lo, hi), so overlaps do not begin mid-word."""
        for j in range(lo, hi):
            if j == 0 or (text[j - 1].isspace() and not text[j].isspace()):
                return j
        return lo
