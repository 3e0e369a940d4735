"""Positioning configuration.

Thresholds, window sizes and the enabled strategy set, loadable from a JSON
file so deployments can tune the cascade without code changes. Defaults
reproduce the behaviour of the annotation service the locators come from.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Literal, TypeAlias

import orjson

from reanchor.anchor_types import CASCADE_ORDER, PositioningMethod

ContextMatchMode: TypeAlias = Literal["compare", "fixed"]


@dataclass(frozen=True, slots=True)
class PositioningConfig:
    """Tunable parameters for locator creation and resolution."""

    min_confidence: float = 0.7
    low_confidence_floor: float = 0.5
    enabled_methods: tuple[PositioningMethod, ...] = CASCADE_ORDER
    context_store_chars: int = 50
    context_window_chars: int = 100
    context_gap_chars: int = 200
    paragraph_chars: int = 300
    article_chars: int = 1000
    chapter_chars: int = 5000
    # "compare" scores the stored context against the document; "fixed"
    # uses fixed_context_score for every candidate.
    context_match_mode: ContextMatchMode = "compare"
    fixed_context_score: float = 0.8
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        for name in ("min_confidence", "low_confidence_floor", "fixed_context_score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.low_confidence_floor > self.min_confidence:
            raise ValueError(
                f"low_confidence_floor ({self.low_confidence_floor}) must not "
                f"exceed min_confidence ({self.min_confidence})"
            )
        unknown = [m for m in self.enabled_methods if m not in CASCADE_ORDER]
        if unknown:
            raise ValueError(f"Unknown positioning methods: {unknown}")
        for name in (
            "context_store_chars", "context_window_chars", "context_gap_chars",
            "paragraph_chars", "article_chars", "chapter_chars",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.context_store_chars > self.context_window_chars:
            raise ValueError("context_store_chars must not exceed context_window_chars")
        if self.context_match_mode not in ("compare", "fixed"):
            raise ValueError(
                f"Invalid context_match_mode: {self.context_match_mode!r}"
            )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0 when set")

    def is_enabled(self, method: PositioningMethod) -> bool:
        return method in self.enabled_methods

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PositioningConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown positioning config keys: {unknown}")
        kwargs = dict(data)
        if "enabled_methods" in kwargs:
            # Cascade order is fixed; the config only selects members.
            wanted = set(kwargs["enabled_methods"])
            bad = sorted(wanted - set(CASCADE_ORDER))
            if bad:
                raise ValueError(f"Unknown positioning methods: {bad}")
            kwargs["enabled_methods"] = tuple(m for m in CASCADE_ORDER if m in wanted)
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Path) -> PositioningConfig:
        """Load from a positioning config JSON file."""
        data = orjson.loads(path.read_bytes())
        if not isinstance(data, dict):
            raise ValueError(f"Positioning config must be a JSON object: {path}")
        return cls.from_dict(data)


DEFAULT_CONFIG = PositioningConfig()
