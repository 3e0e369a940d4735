"""Text-matching strategies for re-anchoring a locator in a document.

Pure text operations over in-memory strings. Three independent strategies,
each returning a TextRange or None:

- context match: stored before/after context joined by a bounded gap
- fingerprint match: sliding window gated by trigram-shingle overlap
- fuzzy match: whitespace-tolerant regex, then normalized substring search

Shared similarity helpers (normalization, token Jaccard, length and position
similarity) live here too; the confidence blend reuses them.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from reanchor.anchor_types import AnnotationPosition, ContextInfo, TextRange
from reanchor.hashing import shingle_jaccard, trigram_shingles

logger = logging.getLogger(__name__)

# Neither a word character, a CJK ideograph nor whitespace.
_STRIP_CHAR_RE = re.compile(r"[^\w\u4e00-\u9fff\s]")

DEFAULT_CONTEXT_GAP_CHARS = 200
FINGERPRINT_GATE = 0.3
FINGERPRINT_MIN_SIMILARITY = 0.8
FUZZY_MIN_SIMILARITY = 0.6
NORMALIZED_SUBSTRING_CONFIDENCE = 0.8
EXACT_IN_WINDOW_CONFIDENCE = 0.95
WHOLE_WINDOW_CONFIDENCE = 0.7


# ---------------------------------------------------------------------------
# Normalization and similarity
# ---------------------------------------------------------------------------

def normalize_with_offsets(text: str) -> tuple[str, list[int]]:
    """Normalize ``text`` and map each normalized char back to its raw offset.

    Strips every char that is neither a word char nor a CJK ideograph,
    collapses whitespace runs to one space (also across stripped chars),
    lowercases, and trims. ``offsets[i]`` is the raw index that produced
    normalized char ``i``.
    """
    chars: list[str] = []
    offsets: list[int] = []
    pending_space = -1
    for i, ch in enumerate(text or ""):
        if ch.isspace():
            if chars and pending_space < 0:
                pending_space = i
            continue
        if _STRIP_CHAR_RE.match(ch):
            continue
        if pending_space >= 0:
            chars.append(" ")
            offsets.append(pending_space)
            pending_space = -1
        # lower() may expand one char into several; all map to the same raw index
        for low in ch.lower():
            chars.append(low)
            offsets.append(i)
    return "".join(chars), offsets


def normalize_text(text: str) -> str:
    """Normalized form used for equality and token comparison."""
    return normalize_with_offsets(text)[0]


def text_similarity(a: str, b: str) -> float:
    """Similarity of two strings in [0, 1].

    1.0 when identical, 0.95 when identical after normalization, otherwise
    the Jaccard similarity of the normalized token sets.
    """
    if a == b:
        return 1.0
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if norm_a == norm_b:
        return 0.95
    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def length_similarity(len_a: int, len_b: int) -> float:
    """``min / max`` of two lengths (1.0 when both are zero)."""
    longest = max(len_a, len_b)
    if longest == 0:
        return 1.0
    return min(len_a, len_b) / longest


def position_similarity(candidate_start: int, original_start: int) -> float:
    """Closeness of a candidate start to the stored start.

    The tolerance grows with the offset: 10% of the original start, but
    never less than 1000 chars.
    """
    distance = abs(candidate_start - original_start)
    tolerance = max(1000.0, original_start * 0.1)
    return max(0.0, 1.0 - distance / tolerance)


# ---------------------------------------------------------------------------
# Context match
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ContextWindow:
    """A document region matched by the context pattern."""

    start_offset: int
    end_offset: int
    text: str


def build_context_pattern(
    context: ContextInfo,
    *,
    gap_chars: int = DEFAULT_CONTEXT_GAP_CHARS,
) -> re.Pattern[str] | None:
    """Pattern ``<before>.{0,gap}<after>``; None when no context was stored."""
    if not context.before and not context.after:
        return None
    before = re.escape(context.before)
    after = re.escape(context.after)
    return re.compile(
        f"{before}.{{0,{gap_chars}}}{after}",
        re.IGNORECASE | re.DOTALL,
    )


def find_context_windows(
    document: str,
    context: ContextInfo,
    *,
    gap_chars: int = DEFAULT_CONTEXT_GAP_CHARS,
) -> list[ContextWindow]:
    """All non-overlapping context-pattern matches, in document order."""
    pattern = build_context_pattern(context, gap_chars=gap_chars)
    if pattern is None:
        return []
    return [
        ContextWindow(m.start(), m.end(), m.group(0))
        for m in pattern.finditer(document)
    ]


def score_context_window(window: ContextWindow, position: AnnotationPosition) -> float:
    """Tie-break score: 0.3 position + 0.4 text + 0.3 length similarity."""
    selected = position.primary.selected_text
    return (
        0.3 * position_similarity(window.start_offset, position.primary.start_offset)
        + 0.4 * text_similarity(window.text, selected)
        + 0.3 * length_similarity(len(window.text), len(selected))
    )


def select_best_window(
    windows: list[ContextWindow],
    position: AnnotationPosition,
) -> ContextWindow:
    """Highest-scoring window; the earliest wins ties."""
    if not windows:
        raise ValueError("select_best_window requires at least one window")
    if len(windows) == 1:
        return windows[0]
    return max(windows, key=lambda w: score_context_window(w, position))


def locate_in_window(
    document: str,
    window: ContextWindow,
    target: str,
) -> TextRange:
    """Exact ``target`` inside ``window``, else the whole window."""
    idx = window.text.find(target) if target else -1
    if idx >= 0:
        start = window.start_offset + idx
        return TextRange(
            start_offset=start,
            end_offset=start + len(target),
            text=document[start:start + len(target)],
            confidence=EXACT_IN_WINDOW_CONFIDENCE,
        )
    return TextRange(
        start_offset=window.start_offset,
        end_offset=window.end_offset,
        text=window.text,
        confidence=WHOLE_WINDOW_CONFIDENCE,
    )


def find_by_context_match(
    document: str,
    position: AnnotationPosition,
    *,
    gap_chars: int = DEFAULT_CONTEXT_GAP_CHARS,
) -> TextRange | None:
    """Locate the span between the stored before/after context."""
    windows = find_context_windows(document, position.context, gap_chars=gap_chars)
    if not windows:
        return None
    best = select_best_window(windows, position)
    return locate_in_window(document, best, position.primary.selected_text)


# ---------------------------------------------------------------------------
# Fingerprint match
# ---------------------------------------------------------------------------

def _stored_shingles(position: AnnotationPosition) -> list[str]:
    if position.trigrams:
        return [t.lower() for t in position.trigrams]
    # Digest-only locator: the digest itself is the only "shingle".
    return [position.fingerprint]


def find_by_fingerprint(
    document: str,
    position: AnnotationPosition,
    *,
    gate: float = FINGERPRINT_GATE,
    min_similarity: float = FINGERPRINT_MIN_SIMILARITY,
) -> TextRange | None:
    """Slide a window of the selected text's length over the document.

    Windows whose shingle overlap with the stored fingerprint exceeds
    ``gate`` are compared to the selected text; the first one more similar
    than ``min_similarity`` wins, with that similarity as confidence.
    """
    target = position.primary.selected_text
    size = len(target)
    if size == 0 or size > len(document):
        return None
    stored = _stored_shingles(position)
    step = max(1, size // 4)
    for i in range(0, len(document) - size + 1, step):
        candidate = document[i:i + size]
        if shingle_jaccard(stored, trigram_shingles(candidate.lower())) <= gate:
            continue
        similarity = text_similarity(target, candidate)
        if similarity > min_similarity:
            return TextRange(
                start_offset=i,
                end_offset=i + size,
                text=candidate,
                confidence=similarity,
            )
    return None


# ---------------------------------------------------------------------------
# Fuzzy match
# ---------------------------------------------------------------------------

def build_fuzzy_pattern(target: str) -> re.Pattern[str] | None:
    """Words of ``target`` joined by optional whitespace, case-insensitive."""
    words = target.split()
    if not words:
        return None
    return re.compile(r"\s*".join(re.escape(w) for w in words), re.IGNORECASE)


def find_normalized_substring(document: str, target: str) -> TextRange | None:
    """Plain substring search over normalized text, mapped back to raw offsets."""
    norm_target = normalize_text(target)
    if not norm_target:
        return None
    norm_doc, offsets = normalize_with_offsets(document)
    idx = norm_doc.find(norm_target)
    if idx < 0:
        return None
    start = offsets[idx]
    end = offsets[idx + len(norm_target) - 1] + 1
    return TextRange(
        start_offset=start,
        end_offset=end,
        text=document[start:end],
        confidence=NORMALIZED_SUBSTRING_CONFIDENCE,
    )


def find_by_fuzzy_match(
    document: str,
    position: AnnotationPosition,
    *,
    min_similarity: float = FUZZY_MIN_SIMILARITY,
) -> TextRange | None:
    """Whitespace-tolerant regex search, then normalized substring search."""
    target = position.primary.selected_text
    try:
        pattern = build_fuzzy_pattern(target)
        if pattern is not None:
            for m in pattern.finditer(document):
                similarity = text_similarity(target, m.group(0))
                if similarity > min_similarity:
                    return TextRange(
                        start_offset=m.start(),
                        end_offset=m.end(),
                        text=m.group(0),
                        confidence=similarity,
                    )
    except re.error as exc:
        logger.debug("fuzzy regex failed, using normalized search: %s", exc)
    return find_normalized_substring(document, target)
