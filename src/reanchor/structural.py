"""Coarse structural addressing for annotated spans.

The paragraph index is a fixed-size bucket (one index per 300 chars), not a
true paragraph boundary. Chapter/article/section ids come from a
StructuralIndex collaborator:

    BucketStructuralIndex   — bucket ids (chapter_N per 5000 chars,
                              article_N per 1000 chars), no I/O
    DuckDBStructuralIndex   — boundaries from a DuckDB database with
                              chapters / articles / sections tables
"""
from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from reanchor.anchor_types import AnnotationPosition, StructuralPath, TextRange

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")

logger = logging.getLogger(__name__)

DEFAULT_PARAGRAPH_CHARS = 300
PARAGRAPH_SEARCH_BEFORE = 100
PARAGRAPH_SEARCH_AFTER = 600
PARAGRAPH_CONFIDENCE = 0.8
ELEMENT_PATH_CONFIDENCE = 0.9


class StructuralIndex(Protocol):
    """Lookup of structural ids by document and char offset."""

    def chapter_id(self, document_id: str, offset: int) -> str | None: ...

    def article_id(self, document_id: str, offset: int) -> str | None: ...

    def section_id(self, document_id: str, offset: int) -> str | None: ...


@dataclass(frozen=True, slots=True)
class BucketStructuralIndex:
    """Bucket ids derived from the offset alone."""

    chapter_chars: int = 5000
    article_chars: int = 1000

    def chapter_id(self, document_id: str, offset: int) -> str | None:
        return f"chapter_{max(0, offset) // self.chapter_chars}"

    def article_id(self, document_id: str, offset: int) -> str | None:
        return f"article_{max(0, offset) // self.article_chars}"

    def section_id(self, document_id: str, offset: int) -> str | None:
        return None


class DuckDBStructuralIndex:
    """Read-only structural boundaries stored in DuckDB.

    Each of the optional tables ``chapters``, ``articles`` and ``sections``
    has columns ``(doc_id, <kind>_id, char_start, char_end)``; a row covers
    ``[char_start, char_end)``. Missing tables answer None.
    """

    _TABLES: dict[str, str] = {
        "chapter": "chapters",
        "article": "articles",
        "section": "sections",
    }

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        if not db_path.exists():
            raise FileNotFoundError(f"Structural index database not found: {db_path}")
        self._conn: Any = _duckdb_mod.connect(str(db_path), read_only=True)
        rows = self._conn.execute("SHOW TABLES").fetchall()
        self._table_names = {str(r[0]) for r in rows}

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> DuckDBStructuralIndex:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    def _lookup(self, kind: str, document_id: str, offset: int) -> str | None:
        table = self._TABLES[kind]
        if table not in self._table_names:
            return None
        row = self._conn.execute(
            f"SELECT {kind}_id FROM {table} "
            "WHERE doc_id = ? AND char_start <= ? AND ? < char_end "
            "ORDER BY char_start DESC LIMIT 1",
            [document_id, offset, offset],
        ).fetchone()
        if not row or row[0] is None:
            return None
        return str(row[0])

    def chapter_id(self, document_id: str, offset: int) -> str | None:
        return self._lookup("chapter", document_id, offset)

    def article_id(self, document_id: str, offset: int) -> str | None:
        return self._lookup("article", document_id, offset)

    def section_id(self, document_id: str, offset: int) -> str | None:
        return self._lookup("section", document_id, offset)


def paragraph_index_for(offset: int, *, paragraph_chars: int = DEFAULT_PARAGRAPH_CHARS) -> int:
    return max(0, offset) // paragraph_chars


def _safe_lookup(lookup: Any, document_id: str, offset: int) -> str | None:
    """Run one index lookup; a failing index reads as "unknown"."""
    try:
        return lookup(document_id, offset)
    except Exception as exc:
        logger.warning("structural index lookup failed for %s@%d: %s", document_id, offset, exc)
        return None


def analyze_structure(
    document_id: str,
    start_offset: int,
    end_offset: int,
    element_path: str | None = None,
    *,
    index: StructuralIndex | None = None,
    paragraph_chars: int = DEFAULT_PARAGRAPH_CHARS,
) -> StructuralPath:
    """Structural address of the span starting at ``start_offset``."""
    idx = index if index is not None else BucketStructuralIndex()
    return StructuralPath(
        chapter_id=_safe_lookup(idx.chapter_id, document_id, start_offset),
        article_id=_safe_lookup(idx.article_id, document_id, start_offset),
        section_id=_safe_lookup(idx.section_id, document_id, start_offset),
        paragraph_index=paragraph_index_for(start_offset, paragraph_chars=paragraph_chars),
        element_path=element_path or None,
    )


def find_by_structural_path(
    document: str,
    position: AnnotationPosition,
    *,
    paragraph_chars: int = DEFAULT_PARAGRAPH_CHARS,
) -> TextRange | None:
    """Search for the selected text near its structural address.

    With a paragraph index, only the window around the bucket's estimated
    offset (100 chars before, 600 after) is searched. With only an element
    path, the whole document is searched.
    """
    structural = position.structural
    target = position.primary.selected_text
    if not target:
        return None

    if structural.paragraph_index is not None:
        estimated = structural.paragraph_index * paragraph_chars
        search_start = max(0, estimated - PARAGRAPH_SEARCH_BEFORE)
        search_end = min(len(document), estimated + PARAGRAPH_SEARCH_AFTER)
        idx = document[search_start:search_end].find(target)
        if idx < 0:
            return None
        start = search_start + idx
        return TextRange(start, start + len(target), target, PARAGRAPH_CONFIDENCE)

    if structural.element_path:
        idx = document.find(target)
        if idx < 0:
            return None
        return TextRange(idx, idx + len(target), target, ELEMENT_PATH_CONFIDENCE)

    return None
