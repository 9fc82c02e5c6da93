"""Numeric, dot-segment-wise version comparison."""

from __future__ import annotations

import re

from bootrun.manifest.model import Comparator

_LEADING_DIGITS = re.compile(r"^(\d+)")
_VERSION_IN_TEXT = re.compile(r"v?(\d+(?:\.\d+)+)")


def parse_version(raw: str) -> tuple[int, ...]:
    """``"v18.2.0"`` -> ``(18, 2, 0)``; ``"2.39.2.windows.1"`` -> ``(2, 39, 2)``.

    Parsing stops at the first segment without leading digits. Segments like
    ``"0-rc1"`` keep their numeric prefix.
    """
    text = raw.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    parts: list[int] = []
    for segment in text.split("."):
        m = _LEADING_DIGITS.match(segment)
        if not m:
            break
        parts.append(int(m.group(1)))
    return tuple(parts)


def extract_version(text: str) -> str | None:
    """Return the first dotted version number found in *text*."""
    if not text:
        return None
    m = _VERSION_IN_TEXT.search(text)
    return m.group(1) if m else None


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1. Missing trailing segments count as zero."""
    pa, pb = parse_version(a), parse_version(b)
    width = max(len(pa), len(pb))
    pa += (0,) * (width - len(pa))
    pb += (0,) * (width - len(pb))
    return (pa > pb) - (pa < pb)


def satisfies(current: str, required: str, comparator: Comparator | str = Comparator.MIN) -> bool:
    """Check *current* against *required* using ``min``, ``max`` or ``exact``.

    Unparseable versions and unknown comparators never satisfy.
    """
    if not parse_version(current) or not parse_version(required):
        return False
    try:
        cmp = Comparator(comparator)
    except ValueError:
        return False
    order = compare_versions(current, required)
    match cmp:
        case Comparator.MIN:
            return order >= 0
        case Comparator.MAX:
            return order <= 0
        case Comparator.EXACT:
            return order == 0
    return False
