import math
import random
import string

import pytest

from tutor_rag.errors import ChunkingConfigError
from tutor_rag.ingest.chunking import TextChunker, estimate_tokens


def generate_text(sentences: int = 60, seed: int = 42) -> str:
    rng = random.Random(seed)
    parts = []
    for index in range(sentences):
        words = [
            "".join(rng.choice(string.ascii_lowercase) for _ in range(rng.randint(3, 10)))
            for _ in range(rng.randint(5, 14))
        ]
        sentence = " ".join(words).capitalize() + "."
        parts.append(sentence)
        if index % 7 == 6:
            parts.append("\n")
    return " ".join(parts)


def test_estimate_tokens_uses_ceiling_of_quarter_length():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("x" * 4001) == 1001


def test_short_text_yields_single_trimmed_chunk():
    chunker = TextChunker(max_tokens=800, overlap_tokens=100)
    text = "  A short paragraph about cells.  \n"

    drafts = chunker.chunk(text)

    assert len(drafts) == 1
    assert drafts[0].index == 0
    assert drafts[0].content == text.strip()
    assert drafts[0].token_count == estimate_tokens(text.strip())


def test_blank_text_yields_no_chunks():
    chunker = TextChunker()
    assert chunker.chunk("") == []
    assert chunker.chunk("   \n\t ") == []


@pytest.mark.parametrize("overlap", [10, 11, 50])
def test_overlap_not_smaller_than_max_is_rejected(overlap):
    with pytest.raises(ChunkingConfigError):
        TextChunker(max_tokens=10, overlap_tokens=overlap)


def test_non_positive_budget_is_rejected():
    with pytest.raises(ChunkingConfigError):
        TextChunker(max_tokens=0, overlap_tokens=0)


def test_sentence_split_snaps_to_full_stop():
    chunker = TextChunker(max_tokens=5, overlap_tokens=1)
    text = "Sentence one. Sentence two. Sentence three."

    drafts = chunker.chunk(text)

    assert len(drafts) > 1
    assert drafts[0].content == "Sentence one."
    for draft in drafts:
        assert draft.content.endswith(".")
    assert drafts[-1].content.endswith("Sentence three.")


def test_naive_cut_kept_when_break_is_too_early():
    chunker = TextChunker(max_tokens=10, overlap_tokens=2)
    text = "A." + "x" * 100

    drafts = chunker.chunk(text)

    assert drafts[0].content == text[:40]


def test_long_text_chunks_cover_input_in_order():
    chunker = TextChunker(max_tokens=40, overlap_tokens=8)
    text = generate_text()

    drafts = chunker.chunk(text)

    assert [draft.index for draft in drafts] == list(range(len(drafts)))
    previous_start = -1
    previous_end = 0
    for draft in drafts:
        assert 0 < len(draft.content) <= chunker.max_chars + 1
        assert draft.token_count == math.ceil(len(draft.content) / 4)
        start = text.find(draft.content, previous_start + 1)
        assert start > previous_start
        if start > previous_end:
            assert text[previous_end:start].strip() == ""
        previous_start = start
        previous_end = max(previous_end, start + len(draft.content))

    assert previous_end == len(text.rstrip())


def test_consecutive_chunks_overlap():
    chunker = TextChunker(max_tokens=40, overlap_tokens=8)
    text = generate_text(seed=7)

    drafts = chunker.chunk(text)

    for current, following in zip(drafts, drafts[1:]):
        head = following.content[:10]
        assert head in current.content


def test_chunking_terminates_with_large_overlap_and_no_breaks():
    chunker = TextChunker(max_tokens=10, overlap_tokens=9)
    text = "y" * 1000

    drafts = chunker.chunk(text)

    assert drafts
    assert drafts[-1].content.endswith("y")
    assert sum(len(draft.content) for draft in drafts) >= len(text)
