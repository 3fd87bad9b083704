"""
Tests for the text chunker.

Covers:
- Empty and whitespace-only input
- Adaptive sizing for short and long documents
- Exact reconstruction from offsets
- Overlap between neighbouring chunks
- Determinism

Usage:
    pytest tests/test_chunker.py -v
"""

import pytest

from src.knowledge.chunker import TextChunker, hash_content, reconstruct
from src.knowledge.config import ChunkingConfig


SENTENCE = "The quick brown fox jumps over the lazy dog near the river bank. "


def make_paragraphs(count: int, sentences: int = 4) -> str:
    return "\n\n".join(SENTENCE * sentences for _ in range(count))


RECONSTRUCTION_CASES = {
    "paragraphs": make_paragraphs(8) + "\n\nTrailing line without period",
    "sentence_fallback": SENTENCE * 40,
    "hard_split_no_spaces": "x" * 1700,
    "hard_split_long_words": "pneumonoultramicroscopicsilicovolcanoconiosis " * 40,
    "leading_whitespace": "\n\n   \t" + make_paragraphs(5),
    "crlf": "\r\n\r\n".join(SENTENCE * 4 for _ in range(8)),
    "mixed_blank_lines": ("Short line.\n\n\n\n" + SENTENCE * 6 + "\n \n\t\n") * 5 + "   ",
    "short_note": "Buy oat milk.",
}


class TestChunkBoundaries:
    """Tests for how text is split."""

    def setup_method(self):
        self.chunker = TextChunker(ChunkingConfig())

    def test_empty_text_has_no_chunks(self):
        """Empty input is not an error."""
        assert self.chunker.chunk("") == []

    def test_whitespace_only_has_no_chunks(self):
        assert self.chunker.chunk("   \n\n\t  ") == []

    def test_short_text_is_single_chunk(self):
        """A 200-character note fits in one small chunk."""
        text = ("Lisbon trip notes: pastel de nata at Manteigaria. " * 4).strip()
        spans = self.chunker.chunk(text)

        assert len(spans) == 1
        assert spans[0].text == text
        assert spans[0].start == 0
        assert spans[0].end == len(text)
        assert spans[0].overlap == 0

    def test_long_text_chunk_count(self):
        """A 2000-character document produces 4 or more chunks at the default size."""
        text = (SENTENCE * 40)[:2000]
        spans = self.chunker.chunk(text)

        assert len(spans) >= 4
        for span in spans:
            assert len(span.core) <= 500

    @pytest.mark.parametrize("text", RECONSTRUCTION_CASES.values(), ids=list(RECONSTRUCTION_CASES))
    def test_reconstruction_is_exact(self, text):
        spans = self.chunker.chunk(text)

        assert spans
        assert reconstruct(spans) == text
        assert [s.index for s in spans] == list(range(len(spans)))
        for span in spans:
            assert text[span.start:span.end] == span.text

    def test_long_inputs_split(self):
        for name in ("paragraphs", "sentence_fallback", "hard_split_no_spaces", "crlf"):
            assert len(self.chunker.chunk(RECONSTRUCTION_CASES[name])) > 1, name

    def test_offsets_match_text(self):
        text = make_paragraphs(6)
        for span in self.chunker.chunk(text):
            assert text[span.start:span.end] == span.text

    def test_indexes_are_contiguous(self):
        spans = self.chunker.chunk(make_paragraphs(6))
        assert [s.index for s in spans] == list(range(len(spans)))

    def test_no_blank_chunks(self):
        """Whitespace runs attach to the previous chunk."""
        text = "First paragraph here.\n\n\n\n\n\n" + "Second paragraph. " * 60
        for span in self.chunker.chunk(text):
            assert span.text.strip()

    def test_unbroken_text_is_hard_split(self):
        """A single word longer than the chunk size is cut mid-word."""
        text = "x" * 1250
        spans = self.chunker.chunk(text)

        assert len(spans) >= 3
        assert reconstruct(spans) == text


class TestOverlap:
    """Tests for context shared between neighbours."""

    def setup_method(self):
        self.chunker = TextChunker(ChunkingConfig())

    def test_chunks_after_first_overlap_previous(self):
        text = SENTENCE * 40
        spans = self.chunker.chunk(text)

        assert spans[0].overlap == 0
        for prev, span in zip(spans, spans[1:]):
            assert 0 < span.overlap <= 50
            assert span.start < prev.end

    def test_overlap_starts_at_word(self):
        text = SENTENCE * 40
        for span in self.chunker.chunk(text)[1:]:
            assert text[span.start - 1].isspace()

    def test_explicit_overlap_zero(self):
        spans = self.chunker.chunk(SENTENCE * 40, target_size=300, overlap=0)
        assert all(s.overlap == 0 for s in spans)

    def test_invalid_overlap(self):
        with pytest.raises(ValueError):
            self.chunker.chunk(SENTENCE * 10, target_size=100, overlap=100)


class TestAdaptiveSize:
    """Tests for size selection by document length."""

    def test_small_document_uses_small_size(self):
        chunker = TextChunker(ChunkingConfig())
        assert chunker.size_for(999) == (300, 50)

    def test_large_document_uses_default_size(self):
        chunker = TextChunker(ChunkingConfig())
        assert chunker.size_for(5000) == (500, 50)

    def test_config_overrides(self):
        config = ChunkingConfig(chunk_size=800, overlap=100)
        assert TextChunker(config).size_for(5000) == (800, 100)

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            ChunkingConfig(chunk_size=100, overlap=100)


class TestDeterminism:

    def test_same_input_same_spans(self):
        text = make_paragraphs(10)
        first = TextChunker().chunk(text)
        second = TextChunker().chunk(text)
        assert first == second

    def test_hash_content(self):
        assert hash_content("abc") == hash_content("abc")
        assert hash_content("abc") != hash_content("abd")
        assert len(hash_content("abc")) == 64
