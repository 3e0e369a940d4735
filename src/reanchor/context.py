"""Context windows around an annotated span.

The stored context keeps the last/first 50 chars on each side for display
and matching, while the hash covers the full 100-char windows. Both sizes
come from PositioningConfig.
"""

from __future__ import annotations

from reanchor.anchor_types import ContextInfo
from reanchor.hashing import rolling_hash

DEFAULT_WINDOW_CHARS = 100
DEFAULT_STORE_CHARS = 50


def _build(
    before_full: str,
    selected_text: str,
    after_full: str,
    store_chars: int,
) -> ContextInfo:
    return ContextInfo(
        before=before_full[-store_chars:],
        after=after_full[:store_chars],
        hash=rolling_hash(before_full + selected_text + after_full),
    )


def analyze_context(
    document: str,
    start_offset: int,
    end_offset: int,
    *,
    window_chars: int = DEFAULT_WINDOW_CHARS,
    store_chars: int = DEFAULT_STORE_CHARS,
) -> ContextInfo:
    """Extract context around ``document[start_offset:end_offset]``.

    Windows are clamped at the document boundaries.
    """
    start = max(0, start_offset)
    end = max(start, end_offset)
    before_full = document[max(0, start - window_chars):start]
    after_full = document[end:end + window_chars]
    return _build(before_full, document[start:end], after_full, store_chars)


def context_from_capture(
    context_before: str,
    selected_text: str,
    context_after: str,
    *,
    window_chars: int = DEFAULT_WINDOW_CHARS,
    store_chars: int = DEFAULT_STORE_CHARS,
) -> ContextInfo:
    """Context from strings captured with the selection.

    Used at creation time, when the document itself may not be available.
    Captured context longer than the window is clipped to it, so the hash
    agrees with ``analyze_context`` over the same document.
    """
    before_full = (context_before or "")[-window_chars:]
    after_full = (context_after or "")[:window_chars]
    return _build(before_full, selected_text or "", after_full, store_chars)
