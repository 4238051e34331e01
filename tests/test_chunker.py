"""Tests for the structure-aware document chunker."""

import re

from catalog_pipeline.knowledge.chunker import (
    DocumentChunker,
    PageText,
    estimate_tokens,
    is_fire_test_line,
    is_section_header,
    is_table_line,
    split_at,
)

SENTENCES = re.compile(r"(?<=[.!?])\s+")

DATASHEET_PAGE = "\n".join(
    [
        "1 Product Overview",
        "QuelStop collars seal plastic pipes passing through walls and floors.",
        "The intumescent core expands above 180C and closes the pipe.",
        "Size | Rating | Code | Finish",
        "110 | 120 | QS-110 | Grey",
        "160 | 120 | QS-160 | Grey",
        "3 Fire Test Results",
        "Tested to EN 1366-3 achieving integrity and insulation of 120 minutes.",
        "Specimen A: 110mm PVC pipe through a 150mm aerated concrete wall.",
        "Specimen B: 160mm PVC pipe through a 150mm aerated concrete floor.",
        "4 Installation",
        "Wrap the collar around the pipe. Fix with the supplied anchors. "
        "Check the gap is no more than 10mm. Label the penetration.",
    ]
)


def test_line_classifiers():
    assert is_table_line("a | b | c | d")
    assert is_table_line("a\tb\tc")
    assert not is_table_line("a | b")
    assert is_section_header("1.2 Fire Test Results")
    assert is_section_header("Appendix B")
    assert is_section_header("INSTALLATION GUIDE")
    assert not is_section_header("The collar is grey.")
    assert is_fire_test_line("Classified to BS 476 Part 20")
    assert not is_fire_test_line("Wrap the collar around the pipe.")


def test_split_at_sentence_boundaries():
    assert split_at("aaa. bbb. ccc.", SENTENCES, max_tokens=2) == ["aaa.", "bbb.", "ccc."]
    assert split_at("aaa. bbb. ccc.", SENTENCES, max_tokens=3) == ["aaa. bbb.", "ccc."]


def test_split_at_keeps_oversized_segment_whole():
    assert split_at("x" * 100, SENTENCES, max_tokens=5) == ["x" * 100]


def test_no_text_is_lost():
    for max_tokens, min_tokens in [(500, 50), (30, 10), (20, 1)]:
        chunks = DocumentChunker(max_tokens=max_tokens, min_tokens=min_tokens).chunk_pages(
            [PageText(page_number=1, text=DATASHEET_PAGE)]
        )
        rebuilt = " ".join(chunk.text for chunk in chunks)
        assert rebuilt.split() == DATASHEET_PAGE.split()


def test_fire_test_block_is_never_split():
    chunker = DocumentChunker(max_tokens=20, min_tokens=1)
    chunks = chunker.chunk_pages([PageText(page_number=1, text=DATASHEET_PAGE)])

    fire_chunks = [chunk for chunk in chunks if chunk.is_fire_test_block]
    assert len(fire_chunks) == 1
    fire_chunk = fire_chunks[0]
    assert fire_chunk.text.startswith("3 Fire Test Results")
    assert "Specimen B" in fire_chunk.text
    assert estimate_tokens(fire_chunk.text) > 20
    assert "Installation" not in fire_chunk.text


def test_oversized_text_is_split_by_sentence():
    chunker = DocumentChunker(max_tokens=20, min_tokens=1)
    chunks = chunker.chunk_pages([PageText(page_number=1, text=DATASHEET_PAGE)])

    installation = [chunk for chunk in chunks if "anchors" in chunk.text or "Label" in chunk.text]
    assert len(installation) > 1
    assert all(estimate_tokens(chunk.text) <= 20 for chunk in installation)


def test_tables_are_isolated_from_text():
    chunks = DocumentChunker(max_tokens=500, min_tokens=50).chunk_pages(
        [PageText(page_number=1, text=DATASHEET_PAGE)]
    )

    tables = [chunk for chunk in chunks if chunk.chunk_type == "table"]
    assert len(tables) == 1
    assert all(is_table_line(line) for line in tables[0].text.split("\n"))
    assert all("|" not in chunk.text for chunk in chunks if chunk.chunk_type == "text")


def test_short_text_before_table_is_emitted_on_its_own():
    page = "Intro.\nSize | Rating | Code | Finish\n110 | 120 | QS-110 | Grey\nClosing remarks."
    chunks = DocumentChunker(max_tokens=500, min_tokens=50).chunk_pages(
        [PageText(page_number=1, text=page)]
    )

    assert [(chunk.chunk_type, chunk.text.split("\n")[0]) for chunk in chunks] == [
        ("text", "Intro."),
        ("table", "Size | Rating | Code | Finish"),
        ("text", "Closing remarks."),
    ]


def test_short_text_is_carried_into_next_text_block():
    page = "1 Scope\nShort.\n2 Details\n" + "The collar fits pipes up to 160mm. " * 10
    chunks = DocumentChunker(max_tokens=500, min_tokens=50).chunk_pages(
        [PageText(page_number=1, text=page)]
    )

    assert len(chunks) == 1
    assert chunks[0].text.startswith("1 Scope\nShort.\n2 Details")


def test_carried_fire_test_flag_survives_merge():
    page = "3 Fire Test\nEN 1366-3.\n4 Notes\n" + "Store the collars in a dry place. " * 10
    chunks = DocumentChunker(max_tokens=500, min_tokens=50).chunk_pages(
        [PageText(page_number=1, text=page)]
    )

    assert len(chunks) == 1
    assert chunks[0].is_fire_test_block


def test_chunk_indexes_run_across_pages():
    chunks = DocumentChunker(max_tokens=20, min_tokens=1).chunk_pages(
        [
            PageText(page_number=1, text=DATASHEET_PAGE),
            PageText(page_number=3, text="APPENDIX\nContact the manufacturer for details."),
        ]
    )

    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert chunks[-1].page_number == 3
    assert chunks[-1].to_record()["chunk_index"] == len(chunks) - 1
