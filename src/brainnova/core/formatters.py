from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

_ACCENT_FOLD = str.maketrans(
    {
        "á": "a", "à": "a", "ä": "a", "â": "a",
        "é": "e", "è": "e", "ë": "e", "ê": "e",
        "í": "i", "ì": "i", "ï": "i", "î": "i",
        "ó": "o", "ò": "o", "ö": "o", "ô": "o",
        "ú": "u", "ù": "u", "ü": "u", "û": "u",
    }
)

_WHITESPACE_RE = re.compile(r"\s+")


def slugify(name: str) -> str:
    """
    Identifier derived from a dimension name.

    Lowercase, whitespace runs become a single hyphen, accented vowels are
    folded to their base letter. Other characters (ñ, punctuation) are kept.

        "Educación" -> "educacion"
        "Capital Humano" -> "capital-humano"
    """
    s = str(name or "").lower()
    s = _WHITESPACE_RE.sub("-", s)
    return s.translate(_ACCENT_FOLD)


def to_float(value: Any) -> Optional[float]:
    """Coerce a backend numeric (number, numeric string, None) to float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def to_int(value: Any) -> Optional[int]:
    f = to_float(value)
    if f is None:
        return None
    return int(f)


def to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in {"true", "t", "1", "yes", "si", "sí"}:
        return True
    if s in {"false", "f", "0", "no"}:
        return False
    return None


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_score(value: float) -> float:
    return min(100.0, max(0.0, float(value)))


def normalized_value(value: Optional[float]) -> float:
    """
    0-100 value shown next to an indicator's latest value.

    Missing or zero values render as 0; anything else is clamped.
    """
    if not value:
        return 0.0
    return clamp_score(value)


def format_value(value: Optional[float]) -> str:
    """Latest value as shown in the indicator table ("—" when missing)."""
    if value is None:
        return "—"
    suffix = "%" if value > 1 else ""
    return f"{value:.1f}{suffix}"
