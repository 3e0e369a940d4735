"""Tests for reanchor.structural — structural addresses and lookup."""
from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import duckdb
import pytest

from reanchor.anchor_types import (
    AnnotationPosition,
    ContextInfo,
    PositionMetadata,
    PrimaryAnchor,
    StructuralPath,
)
from reanchor.structural import (
    BucketStructuralIndex,
    DuckDBStructuralIndex,
    analyze_structure,
    find_by_structural_path,
    paragraph_index_for,
)


def _position(selected: str, structural: StructuralPath, start: int = 0) -> AnnotationPosition:
    return AnnotationPosition(
        primary=PrimaryAnchor(start, start + len(selected), selected),
        context=ContextInfo(before="", after="", hash="0"),
        structural=structural,
        fingerprint="0",
        metadata=PositionMetadata(
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            text_length=len(selected),
            confidence=0.5,
        ),
    )


def _create_structure_db(path: Path) -> None:
    con = duckdb.connect(str(path))
    con.execute(
        """
        CREATE TABLE chapters (
            doc_id VARCHAR,
            chapter_id VARCHAR,
            char_start INTEGER,
            char_end INTEGER
        )
        """
    )
    con.execute(
        """
        CREATE TABLE articles (
            doc_id VARCHAR,
            article_id VARCHAR,
            char_start INTEGER,
            char_end INTEGER
        )
        """
    )
    con.execute(
        "INSERT INTO chapters VALUES "
        "('law-1', 'ch-1', 0, 1200), ('law-1', 'ch-2', 1200, 5000), "
        "('law-2', 'ch-9', 0, 5000)"
    )
    con.execute(
        "INSERT INTO articles VALUES "
        "('law-1', 'art-1', 0, 300), ('law-1', 'art-2', 300, 1200)"
    )
    con.close()


class TestBucketStructuralIndex:
    def test_bucket_ids(self) -> None:
        idx = BucketStructuralIndex()
        assert idx.chapter_id("doc", 0) == "chapter_0"
        assert idx.chapter_id("doc", 12_345) == "chapter_2"
        assert idx.article_id("doc", 12_345) == "article_12"
        assert idx.section_id("doc", 12_345) is None


class TestAnalyzeStructure:
    def test_default_buckets(self) -> None:
        path = analyze_structure("doc", 6_100, 6_120)
        assert path.paragraph_index == 20
        assert path.chapter_id == "chapter_1"
        assert path.article_id == "article_6"
        assert path.section_id is None
        assert path.element_path is None

    def test_element_path_kept(self) -> None:
        path = analyze_structure("doc", 10, 20, "article > p:nth-child(3)")
        assert path.element_path == "article > p:nth-child(3)"
        assert path.is_locatable

    def test_paragraph_zero_is_locatable(self) -> None:
        assert analyze_structure("doc", 0, 4).is_locatable

    def test_failing_index_reads_as_unknown(self) -> None:
        class BrokenIndex:
            def chapter_id(self, document_id: str, offset: int) -> str | None:
                raise RuntimeError("index offline")

            def article_id(self, document_id: str, offset: int) -> str | None:
                return "art-7"

            def section_id(self, document_id: str, offset: int) -> str | None:
                return None

        path = analyze_structure("doc", 10, 20, index=BrokenIndex())
        assert path.chapter_id is None
        assert path.article_id == "art-7"

    def test_paragraph_index_for_negative_offset(self) -> None:
        assert paragraph_index_for(-5) == 0


class TestDuckDBStructuralIndex:
    def test_lookup_by_offset(self, tmp_path: Path) -> None:
        db = tmp_path / "structure.duckdb"
        _create_structure_db(db)
        with DuckDBStructuralIndex(db) as idx:
            assert idx.chapter_id("law-1", 50) == "ch-1"
            assert idx.chapter_id("law-1", 1200) == "ch-2"
            assert idx.article_id("law-1", 299) == "art-1"
            assert idx.article_id("law-1", 300) == "art-2"
            assert idx.article_id("law-1", 4000) is None
            assert idx.chapter_id("law-3", 10) is None

    def test_missing_table_is_unknown(self, tmp_path: Path) -> None:
        db = tmp_path / "structure.duckdb"
        _create_structure_db(db)
        with DuckDBStructuralIndex(db) as idx:
            assert idx.section_id("law-1", 50) is None

    def test_feeds_analyze_structure(self, tmp_path: Path) -> None:
        db = tmp_path / "structure.duckdb"
        _create_structure_db(db)
        with DuckDBStructuralIndex(db) as idx:
            path = analyze_structure("law-1", 450, 470, index=idx)
        assert path.chapter_id == "ch-1"
        assert path.article_id == "art-2"
        assert path.paragraph_index == 1

    def test_missing_database(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            DuckDBStructuralIndex(tmp_path / "absent.duckdb")


class TestFindByStructuralPath:
    def test_paragraph_window_hit(self) -> None:
        doc = "x" * 640 + "indemnification clause" + "y" * 300
        pos = _position("indemnification clause", StructuralPath(paragraph_index=2))
        found = find_by_structural_path(doc, pos)
        assert found is not None
        assert found.start_offset == 640
        assert found.end_offset == 640 + len("indemnification clause")
        assert found.confidence == 0.8

    def test_paragraph_window_excludes_far_text(self) -> None:
        doc = "x" * 2000 + "indemnification clause"
        pos = _position("indemnification clause", StructuralPath(paragraph_index=0))
        assert find_by_structural_path(doc, pos) is None

    def test_window_starts_before_bucket(self) -> None:
        doc = "x" * 520 + "grace period" + "x" * 500
        # bucket 2 begins at 600; the window reaches back 100 chars
        pos = _position("grace period", StructuralPath(paragraph_index=2))
        found = find_by_structural_path(doc, pos)
        assert found is not None and found.start_offset == 520

    def test_element_path_searches_whole_document(self) -> None:
        doc = "x" * 5000 + "grace period"
        pos = _position("grace period", StructuralPath(element_path="main > p"))
        found = find_by_structural_path(doc, pos)
        assert found is not None
        assert found.start_offset == 5000
        assert found.confidence == 0.9

    def test_nothing_to_search_with(self) -> None:
        pos = _position("grace period", StructuralPath(chapter_id="chapter_0"))
        assert find_by_structural_path("grace period", pos) is None
