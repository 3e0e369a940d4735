"""Position service: build locators and resolve them against documents.

``calculate_position`` turns a captured selection into a multi-signal
AnnotationPosition. ``find_annotation_position`` resolves a stored locator
against a (possibly edited) document snapshot by running a fixed cascade:

1. primary_position  — stored offsets still hold the stored text
2. context_match     — stored before/after context brackets the span
3. text_fingerprint  — sliding window gated by trigram overlap
4. structural_path   — search near the paragraph bucket / element path
5. fuzzy_match       — whitespace-tolerant regex, normalized substring

Every candidate is validated, then rescored with the match-confidence
blend. The first candidate at or above the threshold wins immediately;
otherwise the best candidate at or above the low-confidence floor is
returned as a low-confidence success. Failure is returned as data.

The cascade runs sequentially; callers parallelise across
annotations (see ``reanchor_all``), never within one resolution.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import Any, TypeAlias

from reanchor.anchor_types import (
    CASCADE_ORDER,
    AnnotationMatch,
    AnnotationPosition,
    FailureKind,
    PositioningMethod,
    PositioningResult,
    PositionMetadata,
    PrimaryAnchor,
    ResultMetadata,
    SelectionData,
    TextRange,
)
from reanchor.config import DEFAULT_CONFIG, PositioningConfig
from reanchor.confidence import creation_confidence, score_match
from reanchor.context import context_from_capture
from reanchor.hashing import build_fingerprint
from reanchor.structural import (
    BucketStructuralIndex,
    StructuralIndex,
    analyze_structure,
    find_by_structural_path,
)
from reanchor.textmatch import (
    find_by_fingerprint,
    find_by_fuzzy_match,
    find_context_windows,
    locate_in_window,
    normalize_text,
    select_best_window,
    text_similarity,
)

logger = logging.getLogger(__name__)

MIN_LENGTH_RATIO = 0.5
MAX_LENGTH_RATIO = 2.0
MIN_VALID_SIMILARITY = 0.6
_TIMEOUT_POLL_SECONDS = 0.05

StrategyOutcome: TypeAlias = tuple[TextRange | None, dict[str, Any]]


def find_by_primary_position(document: str, position: AnnotationPosition) -> TextRange | None:
    """Recheck the stored offsets.

    1.0 when the slice equals the stored text, 0.9 when equal after
    normalization. Out-of-bounds or empty offsets simply find nothing.
    """
    start = position.primary.start_offset
    end = position.primary.end_offset
    if start < 0 or end > len(document) or start >= end:
        return None
    extracted = document[start:end]
    selected = position.primary.selected_text
    if extracted == selected:
        return TextRange(start, end, extracted, 1.0)
    if normalize_text(extracted) == normalize_text(selected):
        return TextRange(start, end, extracted, 0.9)
    return None


def validate_position(found: TextRange, position: AnnotationPosition) -> bool:
    """Sanity gate for a candidate before it is scored.

    Rejects empty text, a length ratio outside [0.5, 2.0] against the stored
    text, and text similarity below 0.6.
    """
    if not found.text:
        return False
    original = position.primary.selected_text
    if not original:
        return False
    ratio = len(found.text) / len(original)
    if ratio < MIN_LENGTH_RATIO or ratio > MAX_LENGTH_RATIO:
        return False
    return text_similarity(found.text, original) >= MIN_VALID_SIMILARITY


class PositionService:
    """Creates and resolves annotation locators.

    Stateless between calls: one instance may serve concurrent resolutions.
    """

    def __init__(
        self,
        config: PositioningConfig | None = None,
        *,
        structural_index: StructuralIndex | None = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.structural_index: StructuralIndex = structural_index or BucketStructuralIndex(
            chapter_chars=self.config.chapter_chars,
            article_chars=self.config.article_chars,
        )

    # -- creation -----------------------------------------------------------

    def calculate_position(self, document_id: str, selection: SelectionData) -> AnnotationPosition:
        """Build a locator from a captured selection. Never fails."""
        cfg = self.config
        context = context_from_capture(
            selection.context_before,
            selection.selected_text,
            selection.context_after,
            window_chars=cfg.context_window_chars,
            store_chars=cfg.context_store_chars,
        )
        structural = analyze_structure(
            document_id,
            selection.start_offset,
            selection.end_offset,
            selection.element_path,
            index=self.structural_index,
            paragraph_chars=cfg.paragraph_chars,
        )
        fp = build_fingerprint(
            selection.context_before + selection.selected_text + selection.context_after
        )
        return AnnotationPosition(
            primary=PrimaryAnchor(
                start_offset=selection.start_offset,
                end_offset=selection.end_offset,
                selected_text=selection.selected_text,
            ),
            context=context,
            structural=structural,
            fingerprint=fp.hash,
            metadata=PositionMetadata(
                created_at=datetime.now(UTC),
                text_length=len(selection.selected_text),
                confidence=creation_confidence(selection),
            ),
            trigrams=fp.trigrams,
        )

    # -- resolution ---------------------------------------------------------

    def _context_match(self, document: str, position: AnnotationPosition) -> StrategyOutcome:
        windows = find_context_windows(
            document, position.context, gap_chars=self.config.context_gap_chars,
        )
        if not windows:
            return None, {}
        best = select_best_window(windows, position)
        details: dict[str, Any] = {"contextWindows": len(windows)}
        if len(windows) > 1:
            details["ambiguity"] = "ambiguous_match"
        return locate_in_window(document, best, position.primary.selected_text), details

    def _run_strategy(
        self,
        method: PositioningMethod,
        document: str,
        position: AnnotationPosition,
    ) -> StrategyOutcome:
        match method:
            case "primary_position":
                return find_by_primary_position(document, position), {}
            case "context_match":
                return self._context_match(document, position)
            case "text_fingerprint":
                return find_by_fingerprint(document, position), {}
            case "structural_path":
                return find_by_structural_path(
                    document, position, paragraph_chars=self.config.paragraph_chars,
                ), {}
            case "fuzzy_match":
                return find_by_fuzzy_match(document, position), {}
        raise ValueError(f"Unknown positioning method: {method!r}")

    def find_annotation_position(
        self,
        document_text: str,
        position: AnnotationPosition,
        min_confidence: float | None = None,
    ) -> PositioningResult:
        """Resolve ``position`` against ``document_text``.

        Never raises for a failed search; inspect ``result.success``.
        """
        cfg = self.config
        threshold = cfg.min_confidence if min_confidence is None else min_confidence
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {threshold}")

        started = time.perf_counter()
        matches: list[AnnotationMatch] = []
        errors: list[str] = []
        used: list[PositioningMethod] = []

        def finish(
            *,
            chosen: AnnotationMatch | None,
            reported: Sequence[AnnotationMatch],
            failure: FailureKind | None,
        ) -> PositioningResult:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
            confidence = chosen.confidence if chosen is not None else 0.0
            logger.debug(
                "resolution %s via %s (confidence=%.4f, attempts=%d, %.3f ms)",
                "succeeded" if chosen is not None else "failed",
                chosen.method if chosen is not None else "-",
                confidence, len(used), elapsed_ms,
            )
            return PositioningResult(
                success=chosen is not None,
                position=position.with_range(chosen.range) if chosen is not None else None,
                matches=tuple(reported),
                errors=tuple(errors),
                failure=failure,
                chosen=chosen,
                metadata=ResultMetadata(
                    total_attempts=len(used),
                    strategies_used=tuple(used),
                    processing_time_ms=elapsed_ms,
                    confidence=confidence,
                ),
            )

        for method in CASCADE_ORDER:
            if not cfg.is_enabled(method):
                continue
            if method == "structural_path" and not position.structural.is_locatable:
                continue
            used.append(method)
            try:
                found, details = self._run_strategy(method, document_text, position)
            except Exception as exc:
                errors.append(f"{method}: {exc}")
                logger.debug("strategy %s raised: %s", method, exc)
                continue
            if found is None:
                errors.append(f"{method}: no candidate")
                continue
            if not validate_position(found, position):
                errors.append(f"{method}: candidate rejected by validation")
                logger.debug(
                    "strategy %s candidate [%d, %d) rejected",
                    method, found.start_offset, found.end_offset,
                )
                continue

            scored = score_match(
                document_text,
                found,
                position,
                context_mode=cfg.context_match_mode,
                fixed_context_score=cfg.fixed_context_score,
            )
            candidate = AnnotationMatch(
                range=found,
                confidence=scored.final,
                method=method,
                metadata={
                    "strategy": method,
                    "validationPassed": True,
                    "strategyConfidence": found.confidence,
                    "breakdown": scored.as_dict(),
                    **details,
                },
            )
            matches.append(candidate)
            logger.debug(
                "strategy %s candidate [%d, %d) confidence=%.4f",
                method, found.start_offset, found.end_offset, scored.final,
            )
            if scored.final >= threshold:
                return finish(chosen=candidate, reported=(candidate,), failure=None)

        if matches:
            # max() keeps the earliest strategy on ties
            best = max(matches, key=lambda m: m.confidence)
            if best.confidence >= cfg.low_confidence_floor:
                return finish(chosen=best, reported=matches, failure="low_confidence")

        return finish(chosen=None, reported=matches, failure="text_not_found")

    # -- async boundary -----------------------------------------------------

    async def calculate_position_async(
        self, document_id: str, selection: SelectionData,
    ) -> AnnotationPosition:
        return await asyncio.to_thread(self.calculate_position, document_id, selection)

    async def find_annotation_position_async(
        self,
        document_text: str,
        position: AnnotationPosition,
        min_confidence: float | None = None,
    ) -> PositioningResult:
        return await asyncio.to_thread(
            self.find_annotation_position, document_text, position, min_confidence,
        )


def _timed_out_result(timeout_seconds: float) -> PositioningResult:
    return PositioningResult(
        success=False,
        errors=(f"timeout: exceeded {timeout_seconds} s",),
        failure="text_not_found",
        metadata=ResultMetadata(
            total_attempts=0,
            strategies_used=(),
            processing_time_ms=round(timeout_seconds * 1000, 3),
            confidence=0.0,
        ),
    )


def reanchor_all(
    document_text: str,
    positions: Sequence[AnnotationPosition],
    *,
    service: PositionService | None = None,
    min_confidence: float | None = None,
    max_workers: int | None = None,
    timeout_seconds: float | None = None,
) -> list[PositioningResult]:
    """Resolve many locators against one document snapshot.

    One resolution per worker thread; results come back in input order. A
    resolution running longer than ``timeout_seconds`` (default: the service
    config) is reported as unresolved with a timeout diagnostic. The clock
    of each item starts when a worker picks it up, so items queued behind a
    slow one keep their full budget.
    """
    svc = service or PositionService()
    timeout = timeout_seconds if timeout_seconds is not None else svc.config.timeout_seconds
    if not positions:
        return []

    started: dict[int, float] = {}

    def run(index: int, position: AnnotationPosition) -> PositioningResult:
        started[index] = time.monotonic()
        return svc.find_annotation_position(document_text, position, min_confidence)

    results: list[PositioningResult | None] = [None] * len(positions)
    pool = ThreadPoolExecutor(max_workers=max_workers)
    try:
        pending: dict[Future[PositioningResult], int] = {
            pool.submit(run, i, pos): i for i, pos in enumerate(positions)
        }
        while pending:
            wait_for: float | None = None
            if timeout is not None:
                now = time.monotonic()
                remaining = [
                    started[i] + timeout - now for i in pending.values() if i in started
                ]
                wait_for = max(0.0, min([*remaining, _TIMEOUT_POLL_SECONDS]))
            done, _ = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
            for fut in done:
                results[pending.pop(fut)] = fut.result()
            if timeout is None:
                continue
            now = time.monotonic()
            for fut, i in list(pending.items()):
                if i in started and now - started[i] >= timeout:
                    logger.warning("re-anchoring annotation %d timed out after %s s", i, timeout)
                    del pending[fut]
                    results[i] = _timed_out_result(float(timeout))
        return [r for r in results if r is not None]
    finally:
        # Only timed-out resolutions can still be running here; they finish
        # in the background and the executor joins them at interpreter exit.
        pool.shutdown(wait=False, cancel_futures=True)
