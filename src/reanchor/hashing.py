"""Deterministic content hashing and word-trigram fingerprints.

The digest is the 32-bit polynomial rolling hash (``h = h * 31 + unit``,
wrapped to a signed 32-bit integer, absolute value rendered as lowercase hex)
computed over UTF-16 code units. Locators persisted by earlier versions of the
annotation service carry digests in exactly this form, so the arithmetic is
reproduced bit for bit rather than replaced by a cryptographic hash.

Pure text operations with zero domain dependencies.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

_SHINGLE_SIZE = 3
_MIN_TOKEN_CHARS = 3  # tokens of length <= 2 are dropped
_SHINGLE_SEP = "|"


@dataclass(frozen=True, slots=True)
class TextFingerprint:
    """Trigram fingerprint plus the shingles it was computed from."""

    hash: str
    trigrams: tuple[str, ...]
    length: int
    word_count: int


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_units(text: str) -> Iterable[int]:
    data = text.encode("utf-16-le", "surrogatepass")
    for lo, hi in zip(data[0::2], data[1::2], strict=True):
        yield lo | (hi << 8)


def rolling_hash(text: str) -> str:
    """Hash ``text`` into a short hex digest.

    Deterministic and order-sensitive, not cryptographically secure.
    ``rolling_hash("") == "0"``.
    """
    h = 0
    for unit in _utf16_units(text or ""):
        h = _to_int32((h << 5) - h + unit)
    return format(abs(h), "x")


def trigram_shingles(text: str) -> list[str]:
    """Word 3-gram shingles of ``text``.

    Splits on whitespace, drops tokens shorter than three characters and
    slides a window of three consecutive tokens. Fewer than three surviving
    tokens yield no shingles.
    """
    words = [w for w in (text or "").split() if len(w) >= _MIN_TOKEN_CHARS]
    return [
        " ".join(words[i:i + _SHINGLE_SIZE])
        for i in range(len(words) - _SHINGLE_SIZE + 1)
    ]


def fingerprint(text: str) -> str:
    """Hash of the ``|``-joined trigram shingles of ``text``."""
    return rolling_hash(_SHINGLE_SEP.join(trigram_shingles(text)))


def build_fingerprint(text: str) -> TextFingerprint:
    """Full fingerprint record for ``text``."""
    trigrams = tuple(trigram_shingles(text))
    return TextFingerprint(
        hash=rolling_hash(_SHINGLE_SEP.join(trigrams)),
        trigrams=trigrams,
        length=len(text or ""),
        word_count=len((text or "").split()),
    )


def shingle_jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard similarity of two shingle collections (0.0 when both empty)."""
    set_a = set(a)
    set_b = set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)
