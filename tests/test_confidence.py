"""Tests for creation confidence and the match-confidence blend."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest

from reanchor.anchor_types import (
    AnnotationPosition,
    ContextInfo,
    PositionMetadata,
    PrimaryAnchor,
    SelectionData,
    StructuralPath,
    TextRange,
)
from reanchor.confidence import (
    MATCH_WEIGHTS,
    context_agreement,
    creation_confidence,
    length_consistency,
    position_accuracy,
    score_match,
)

DOC = "Recitals. The borrower shall repay the principal in full. Signed."
TARGET = "The borrower shall repay the principal"


def _position(document: str, start: int, end: int, *, context_chars: int = 10) -> AnnotationPosition:
    return AnnotationPosition(
        primary=PrimaryAnchor(start, end, document[start:end]),
        context=ContextInfo(
            before=document[max(0, start - context_chars):start],
            after=document[end:end + context_chars],
            hash="0",
        ),
        structural=StructuralPath(paragraph_index=0),
        fingerprint="0",
        metadata=PositionMetadata(
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            text_length=end - start,
            confidence=0.5,
        ),
    )


class TestWeights:
    def test_weights_sum_to_one(self) -> None:
        assert sum(MATCH_WEIGHTS.values()) == pytest.approx(1.0)

    def test_weight_values(self) -> None:
        assert MATCH_WEIGHTS == {
            "text_similarity": 0.4,
            "position_accuracy": 0.3,
            "length_consistency": 0.2,
            "context_match": 0.1,
        }


class TestCreationConfidence:
    def test_bare_selection(self) -> None:
        assert creation_confidence(SelectionData("short", 0, 5)) == 0.5

    def test_rich_selection_is_capped(self) -> None:
        selection = SelectionData(
            selected_text="x" * 60,
            start_offset=30,
            end_offset=90,
            context_before="b" * 30,
            context_after="a" * 30,
            element_path="main > p:nth-child(2)",
        )
        assert creation_confidence(selection) == 1.0

    def test_partial_signals(self) -> None:
        selection = SelectionData(
            selected_text="x" * 20,
            start_offset=25,
            end_offset=45,
            context_before="b" * 25,
        )
        assert creation_confidence(selection) == 0.7


class TestComponents:
    def test_position_accuracy_exact(self) -> None:
        pos = _position("x" * 300, 100, 200)
        assert position_accuracy(TextRange(100, 200, "x" * 100), pos) == 1.0

    def test_position_accuracy_decays_within_tolerance(self) -> None:
        # span 100 -> tolerance 10 chars; 5 chars off on both ends
        pos = _position("x" * 300, 100, 200)
        assert position_accuracy(TextRange(105, 205, "x" * 100), pos) == pytest.approx(0.5)

    def test_position_accuracy_floor_tolerance(self) -> None:
        # span 4 -> tolerance floored at 10 chars
        pos = _position("x" * 300, 100, 104)
        assert position_accuracy(TextRange(120, 124, "xxxx"), pos) == 0.0

    def test_length_consistency(self) -> None:
        pos = _position("x" * 300, 100, 200)
        assert length_consistency(TextRange(0, 50, "x" * 50), pos) == 0.5

    def test_context_agreement_identical(self) -> None:
        ctx = ContextInfo(before="abc", after="def", hash="")
        assert context_agreement("abcXYZdef", TextRange(3, 6, "XYZ"), ctx) == 1.0

    def test_context_agreement_one_side_changed(self) -> None:
        ctx = ContextInfo(before="zzz", after="def", hash="")
        assert context_agreement("abcXYZdef", TextRange(3, 6, "XYZ"), ctx) == 0.5

    def test_context_agreement_empty_context(self) -> None:
        ctx = ContextInfo(before="", after="", hash="")
        assert context_agreement("abcXYZdef", TextRange(3, 6, "XYZ"), ctx) == 1.0


class TestScoreMatch:
    def test_unchanged_document_scores_one(self) -> None:
        start = DOC.index(TARGET)
        pos = _position(DOC, start, start + len(TARGET))
        scored = score_match(DOC, TextRange(start, start + len(TARGET), TARGET), pos)
        assert scored.final == 1.0
        assert scored.context_match == 1.0

    def test_fixed_context_mode(self) -> None:
        start = DOC.index(TARGET)
        pos = _position(DOC, start, start + len(TARGET))
        scored = score_match(
            DOC,
            TextRange(start, start + len(TARGET), TARGET),
            pos,
            context_mode="fixed",
            fixed_context_score=0.8,
        )
        assert scored.context_match == 0.8
        assert scored.final == 0.98

    def test_drifted_candidate(self) -> None:
        start = DOC.index(TARGET)
        pos = _position(DOC, start, start + len(TARGET))
        edited = "x" * 200 + DOC
        moved = start + 200
        scored = score_match(edited, TextRange(moved, moved + len(TARGET), TARGET), pos)
        assert scored.position_accuracy == 0.0
        # 0.4 text + 0.2 length + 0.1 context
        assert scored.final == 0.7

    def test_breakdown_keys(self) -> None:
        start = DOC.index(TARGET)
        pos = _position(DOC, start, start + len(TARGET))
        scored = score_match(DOC, TextRange(start, start + len(TARGET), TARGET), pos)
        assert set(scored.as_dict()) == set(MATCH_WEIGHTS) | {"final"}
