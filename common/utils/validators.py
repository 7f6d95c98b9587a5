import re
import time
import unicodedata
from datetime import date, datetime
from typing import Optional


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^(0|\+84)\d{9,10}$")


def ensure_positive_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer") from None
    if number <= 0:
        raise ValueError(f"{field} must be > 0")
    return number


def optional_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.match(value.strip()))


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def parse_datetime(value, field: str) -> Optional[datetime]:
    """Accept ISO strings (``2025-01-31`` or ``2025-01-31T08:00``) or datetimes."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", ""))
    except ValueError:
        raise ValueError(f"{field} must be an ISO date") from None


def parse_date(value, field: str) -> Optional[date]:
    parsed = parse_datetime(value, field)
    return parsed.date() if parsed else None


def strip_accents(text: str) -> str:
    text = text.replace("đ", "d").replace("Đ", "D")
    normalized = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def slugify(text: str, *, unique_suffix: bool = True) -> str:
    """``Áo Thun Đen`` -> ``ao-thun-den-1712345678901``."""
    base = strip_accents(text or "").lower()
    base = re.sub(r"[^a-z0-9]+", "-", base).strip("-") or "item"
    if unique_suffix:
        return f"{base}-{int(time.time() * 1000)}"
    return base
