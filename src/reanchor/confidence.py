"""Confidence helpers for locator creation and candidate scoring.

Two unrelated scores live here:
- creation confidence: how well-anchored a new locator is likely to be,
  from signal richness only (text length, context length, element path)
- match confidence: weighted blend for a validated resolution candidate

Match blend weights:
    text_similarity     0.4
    position_accuracy   0.3
    length_consistency  0.2
    context_match       0.1
"""

from __future__ import annotations

from dataclasses import dataclass

from reanchor.anchor_types import (
    AnnotationPosition,
    ContextInfo,
    SelectionData,
    TextRange,
)
from reanchor.config import ContextMatchMode
from reanchor.textmatch import length_similarity, text_similarity


MATCH_WEIGHTS: dict[str, float] = {
    "text_similarity": 0.4,
    "position_accuracy": 0.3,
    "length_consistency": 0.2,
    "context_match": 0.1,
}

_TOTAL_WEIGHT = sum(MATCH_WEIGHTS.values())
assert abs(_TOTAL_WEIGHT - 1.0) < 1e-9, f"Weights sum to {_TOTAL_WEIGHT}, expected 1.0"

BASE_CREATION_CONFIDENCE = 0.5


@dataclass(frozen=True, slots=True)
class MatchConfidence:
    text_similarity: float
    position_accuracy: float
    length_consistency: float
    context_match: float
    final: float

    def as_dict(self) -> dict[str, float]:
        return {
            "text_similarity": self.text_similarity,
            "position_accuracy": self.position_accuracy,
            "length_consistency": self.length_consistency,
            "context_match": self.context_match,
            "final": self.final,
        }


def _bounded(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def creation_confidence(selection: SelectionData) -> float:
    """Heuristic anchoring strength of a fresh selection (not a match score)."""
    confidence = BASE_CREATION_CONFIDENCE
    if len(selection.selected_text) > 10:
        confidence += 0.1
    if len(selection.selected_text) > 50:
        confidence += 0.1
    if len(selection.context_before) > 20:
        confidence += 0.1
    if len(selection.context_after) > 20:
        confidence += 0.1
    if selection.element_path:
        confidence += 0.2
    return round(min(confidence, 1.0), 4)


def position_accuracy(found: TextRange, position: AnnotationPosition) -> float:
    """Mean start/end accuracy against the stored offsets.

    Each offset loses accuracy linearly up to a tolerance of 10% of the
    stored span length, floored at 10 chars.
    """
    original_start = position.primary.start_offset
    original_end = position.primary.end_offset
    tolerance = max((original_end - original_start) * 0.1, 10.0)
    start_accuracy = max(0.0, 1.0 - abs(found.start_offset - original_start) / tolerance)
    end_accuracy = max(0.0, 1.0 - abs(found.end_offset - original_end) / tolerance)
    return (start_accuracy + end_accuracy) / 2


def length_consistency(found: TextRange, position: AnnotationPosition) -> float:
    return length_similarity(len(found.text), len(position.primary.selected_text))


def _side_agreement(stored: str, observed: str) -> float:
    if stored == observed:
        return 1.0
    return text_similarity(stored, observed)


def context_agreement(document: str, found: TextRange, context: ContextInfo) -> float:
    """How well the stored context matches the text around ``found``.

    Compares the stored ``before`` with the same number of chars preceding
    the candidate, and ``after`` with the chars following it.
    """
    start = found.start_offset
    end = found.end_offset
    observed_before = document[max(0, start - len(context.before)):start]
    observed_after = document[end:end + len(context.after)]
    return (
        _side_agreement(context.before, observed_before)
        + _side_agreement(context.after, observed_after)
    ) / 2


def score_match(
    document: str,
    found: TextRange,
    position: AnnotationPosition,
    *,
    context_mode: ContextMatchMode = "compare",
    fixed_context_score: float = 0.8,
) -> MatchConfidence:
    """Weighted confidence for a validated candidate."""
    components = {
        "text_similarity": text_similarity(found.text, position.primary.selected_text),
        "position_accuracy": position_accuracy(found, position),
        "length_consistency": length_consistency(found, position),
        "context_match": (
            context_agreement(document, found, position.context)
            if context_mode == "compare"
            else fixed_context_score
        ),
    }
    value = sum(components[key] * weight for key, weight in MATCH_WEIGHTS.items())
    return MatchConfidence(
        text_similarity=round(components["text_similarity"], 4),
        position_accuracy=round(components["position_accuracy"], 4),
        length_consistency=round(components["length_consistency"], 4),
        context_match=round(components["context_match"], 4),
        final=round(_bounded(value), 4),
    )
