"""Core types for annotation anchoring.

Every layer shares these types. All offsets are absolute char positions in
the full document text (never paragraph- or section-relative). All
dataclasses use slots=True.

Type hierarchy:
  SelectionData      — Raw user selection captured at annotation time
  PrimaryAnchor      — Absolute offsets + selected text (best-known location)
  ContextInfo        — Truncated before/after context + context hash
  StructuralPath     — Coarse structural address (chapter/article/paragraph)
  PositionMetadata   — Creation timestamp, text length, anchoring confidence
  AnnotationPosition — The persisted locator (all of the above)
  TextRange          — A located span in one document snapshot
  AnnotationMatch    — A scored candidate produced by one strategy
  PositioningResult  — Full outcome of a resolution attempt

Persisted records round-trip through ``to_dict`` / ``from_dict`` using the
camelCase wire shape stored by the annotation service.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

import orjson

LOCATOR_VERSION = "1"

PositioningMethod: TypeAlias = Literal[
    "primary_position",
    "context_match",
    "text_fingerprint",
    "structural_path",
    "fuzzy_match",
]

# Resolution order; strategies are tried first to last.
CASCADE_ORDER: tuple[PositioningMethod, ...] = (
    "primary_position",
    "context_match",
    "text_fingerprint",
    "structural_path",
    "fuzzy_match",
)

# Failure categories reported as data, never raised.
FailureKind: TypeAlias = Literal["text_not_found", "ambiguous_match", "low_confidence"]

ResolutionState: TypeAlias = Literal["resolved", "resolved_low", "unresolved"]


def _require(payload: dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise ValueError(f"Missing required field: {key!r}")
    return payload[key]


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# Selection input
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SelectionData:
    """A user selection as captured by the UI collaborator.

    Offsets are not validated here: a malformed selection still yields a
    locator, whose primary-position check then simply finds nothing.
    """

    selected_text: str
    start_offset: int
    end_offset: int
    context_before: str = ""
    context_after: str = ""
    element_path: str | None = None
    page_url: str | None = None

    @classmethod
    def from_document(
        cls,
        document: str,
        start_offset: int,
        end_offset: int,
        *,
        context_chars: int = 100,
        element_path: str | None = None,
        page_url: str | None = None,
    ) -> SelectionData:
        """Build a selection by slicing ``document`` (used by tools and tests)."""
        return cls(
            selected_text=document[start_offset:end_offset],
            start_offset=start_offset,
            end_offset=end_offset,
            context_before=document[max(0, start_offset - context_chars):start_offset],
            context_after=document[end_offset:end_offset + context_chars],
            element_path=element_path,
            page_url=page_url,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "selectedText": self.selected_text,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "contextBefore": self.context_before,
            "contextAfter": self.context_after,
        }
        if self.element_path is not None:
            out["elementPath"] = self.element_path
        if self.page_url is not None:
            out["pageUrl"] = self.page_url
        return out

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SelectionData:
        return cls(
            selected_text=str(_require(payload, "selectedText")),
            start_offset=int(_require(payload, "startOffset")),
            end_offset=int(_require(payload, "endOffset")),
            context_before=str(payload.get("contextBefore", "")),
            context_after=str(payload.get("contextAfter", "")),
            element_path=_optional_str(payload.get("elementPath")),
            page_url=_optional_str(payload.get("pageUrl")),
        )


# ---------------------------------------------------------------------------
# Locator parts
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PrimaryAnchor:
    """Best-known absolute location of the annotated span."""

    start_offset: int
    end_offset: int
    selected_text: str

    @property
    def span_length(self) -> int:
        return self.end_offset - self.start_offset


@dataclass(frozen=True, slots=True)
class ContextInfo:
    """Stored display context (<= 50 chars each side) and the context hash.

    ``hash`` covers the wider 100-char windows, so it is a stronger identity
    check than the stored ``before``/``after`` strings.
    """

    before: str
    after: str
    hash: str


@dataclass(frozen=True, slots=True)
class StructuralPath:
    """Coarse structural address. Every field is optional."""

    chapter_id: str | None = None
    article_id: str | None = None
    section_id: str | None = None
    paragraph_index: int | None = None
    element_path: str | None = None

    @property
    def is_locatable(self) -> bool:
        """True when the structural strategy has something to search with."""
        return self.paragraph_index is not None or bool(self.element_path)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.chapter_id is not None:
            out["chapterId"] = self.chapter_id
        if self.article_id is not None:
            out["articleId"] = self.article_id
        if self.section_id is not None:
            out["sectionId"] = self.section_id
        if self.paragraph_index is not None:
            out["paragraphIndex"] = self.paragraph_index
        if self.element_path is not None:
            out["elementPath"] = self.element_path
        return out

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StructuralPath:
        paragraph_index = payload.get("paragraphIndex")
        return cls(
            chapter_id=_optional_str(payload.get("chapterId")),
            article_id=_optional_str(payload.get("articleId")),
            section_id=_optional_str(payload.get("sectionId")),
            paragraph_index=int(paragraph_index) if paragraph_index is not None else None,
            element_path=_optional_str(payload.get("elementPath")),
        )


@dataclass(frozen=True, slots=True)
class PositionMetadata:
    """Creation-time metadata. ``confidence`` estimates signal richness."""

    created_at: datetime
    text_length: int
    confidence: float
    version: str | None = LOCATOR_VERSION


# ---------------------------------------------------------------------------
# AnnotationPosition — the persisted locator
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AnnotationPosition:
    """Multi-signal locator for an annotated text span.

    Invariant at creation time: ``len(primary.selected_text) ==
    primary.end_offset - primary.start_offset``. After drift the stored
    offsets may no longer point at the text; resolution corrects them.

    ``trigrams`` holds the shingles behind ``fingerprint``. Older locators
    carry only the digest and leave it empty.
    """

    primary: PrimaryAnchor
    context: ContextInfo
    structural: StructuralPath
    fingerprint: str
    metadata: PositionMetadata
    trigrams: tuple[str, ...] = ()

    def with_range(self, found: TextRange) -> AnnotationPosition:
        """Corrected copy pointing at ``found``.

        Context, structural address and fingerprint are carried forward
        unchanged; only ``primary`` and ``metadata.confidence`` move.
        """
        confidence = found.confidence if found.confidence is not None else 0.8
        return replace(
            self,
            primary=PrimaryAnchor(
                start_offset=found.start_offset,
                end_offset=found.end_offset,
                selected_text=found.text,
            ),
            metadata=replace(self.metadata, confidence=confidence),
        )

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "createdAt": self.metadata.created_at.isoformat(),
            "textLength": self.metadata.text_length,
            "confidence": self.metadata.confidence,
        }
        if self.metadata.version is not None:
            metadata["version"] = self.metadata.version
        out: dict[str, Any] = {
            "primary": {
                "startOffset": self.primary.start_offset,
                "endOffset": self.primary.end_offset,
                "selectedText": self.primary.selected_text,
            },
            "context": {
                "before": self.context.before,
                "after": self.context.after,
                "hash": self.context.hash,
            },
            "structural": self.structural.to_dict(),
            "fingerprint": self.fingerprint,
            "metadata": metadata,
        }
        if self.trigrams:
            out["trigrams"] = list(self.trigrams)
        return out

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AnnotationPosition:
        if not isinstance(payload, dict):
            raise ValueError("AnnotationPosition payload must be an object")
        primary = _require(payload, "primary")
        context = payload.get("context") or {}
        meta = payload.get("metadata") or {}
        created_raw = meta.get("createdAt")
        if isinstance(created_raw, datetime):
            created_at = created_raw
        elif created_raw:
            created_at = datetime.fromisoformat(str(created_raw))
        else:
            created_at = datetime.now(UTC)
        selected_text = str(_require(primary, "selectedText"))
        return cls(
            primary=PrimaryAnchor(
                start_offset=int(_require(primary, "startOffset")),
                end_offset=int(_require(primary, "endOffset")),
                selected_text=selected_text,
            ),
            context=ContextInfo(
                before=str(context.get("before", "")),
                after=str(context.get("after", "")),
                hash=str(context.get("hash", "")),
            ),
            structural=StructuralPath.from_dict(payload.get("structural") or {}),
            fingerprint=str(payload.get("fingerprint", "")),
            metadata=PositionMetadata(
                created_at=created_at,
                text_length=int(meta.get("textLength", len(selected_text))),
                confidence=float(meta.get("confidence", 0.5)),
                version=_optional_str(meta.get("version")),
            ),
            trigrams=tuple(str(t) for t in payload.get("trigrams") or ()),
        )


def dumps_position(position: AnnotationPosition) -> bytes:
    """Serialize a locator to JSON bytes."""
    return orjson.dumps(position.to_dict())


def loads_position(data: bytes | str) -> AnnotationPosition:
    """Parse a locator from JSON."""
    return AnnotationPosition.from_dict(orjson.loads(data))


# ---------------------------------------------------------------------------
# Resolution types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TextRange:
    """A located span in one specific document snapshot."""

    start_offset: int
    end_offset: int
    text: str
    confidence: float | None = None

    def __post_init__(self) -> None:
        if self.start_offset < 0:
            raise ValueError(
                f"TextRange.start_offset must be >= 0, got {self.start_offset}"
            )
        if self.end_offset < self.start_offset:
            raise ValueError(
                f"TextRange.end_offset ({self.end_offset}) must be >= "
                f"start_offset ({self.start_offset})"
            )
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(
                f"TextRange.confidence must be in [0, 1], got {self.confidence}"
            )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "text": self.text,
        }
        if self.confidence is not None:
            out["confidence"] = self.confidence
        return out


@dataclass(frozen=True, slots=True)
class AnnotationMatch:
    """A validated, scored candidate from one strategy."""

    range: TextRange
    confidence: float
    method: PositioningMethod
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": self.range.to_dict(),
            "confidence": self.confidence,
            "method": self.method,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class ResultMetadata:
    total_attempts: int
    strategies_used: tuple[PositioningMethod, ...]
    processing_time_ms: float
    confidence: float


@dataclass(frozen=True, slots=True)
class PositioningResult:
    """Outcome of one resolution call. Failure is data, never an exception."""

    success: bool
    metadata: ResultMetadata
    position: AnnotationPosition | None = None
    matches: tuple[AnnotationMatch, ...] = ()
    errors: tuple[str, ...] = ()
    failure: FailureKind | None = None
    chosen: AnnotationMatch | None = None

    @property
    def method(self) -> PositioningMethod | None:
        return self.chosen.method if self.chosen is not None else None

    @property
    def confidence(self) -> float:
        return self.metadata.confidence

    @property
    def state(self) -> ResolutionState:
        if not self.success:
            return "unresolved"
        if self.failure == "low_confidence":
            return "resolved_low"
        return "resolved"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "state": self.state,
            "method": self.method,
            "matches": [m.to_dict() for m in self.matches],
            "errors": list(self.errors),
            "failure": self.failure,
            "metadata": {
                "totalAttempts": self.metadata.total_attempts,
                "strategiesUsed": list(self.metadata.strategies_used),
                "processingTime": self.metadata.processing_time_ms,
                "confidence": self.metadata.confidence,
            },
        }
        if self.position is not None:
            out["position"] = self.position.to_dict()
        return out
