import re
import unicodedata
from typing import Iterable

ALLOWED_SEASONS = {"spring", "summer", "fall", "autumn", "winter", "all-season"}
ALLOWED_CONDITIONS = {"excellent", "good", "fair", "poor"}
DEFAULT_SEASON_TAGS = ["all-season"]
MAX_STYLE_TAGS = 10


def normalize_tag(s: str) -> str:
    s = unicodedata.normalize("NFKD", s or "").encode("ascii", "ignore").decode()
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    if not (1 <= len(s) <= 24):
        raise ValueError("invalid_length")
    return s


def normalize_many(xs: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for x in xs or []:
        t = normalize_tag(x)
        if t and t not in seen:
            seen.add(t)
            out.append(t)
    return out


def normalize_season_tags(xs: Iterable[str] | None) -> list[str]:
    if not xs:
        return list(DEFAULT_SEASON_TAGS)
    out = [t for t in normalize_many(xs) if t in ALLOWED_SEASONS]
    return out or list(DEFAULT_SEASON_TAGS)


def normalize_condition(value: str | None) -> str:
    v = (value or "good").strip().lower()
    if v not in ALLOWED_CONDITIONS:
        raise ValueError("invalid_condition")
    return v
