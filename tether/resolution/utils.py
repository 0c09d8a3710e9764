"""Utility functions for resolution."""

from typing import Any, Dict, Optional
import re

from tether.observability import get_event_recorder
from tether.records.base import normalize_text

RESOLUTION_RECORDER = get_event_recorder("resolution")

_EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)
_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def _record_resolution_event(name: str, payload: Dict[str, Any]) -> None:
    """Record a resolution event."""
    RESOLUTION_RECORDER.record(name=name, payload=payload)


def is_valid_email(value: Any) -> bool:
    """Return True when ``value`` is a syntactically valid email address."""
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    if len(candidate) > 254 or ".." in candidate:
        return False
    return bool(_EMAIL_PATTERN.match(candidate))


def looks_like_email(value: Any) -> bool:
    """Loose check used to reorder search fields, not to validate."""
    return isinstance(value, str) and "@" in value


def is_email_field_name(name: str) -> bool:
    return "email" in name.lower()


def slugify(value: str) -> str:
    """Lowercase ASCII slug: ``"John Doe" -> "john-doe"``."""
    text = value.strip().lower().replace("@", " at ")
    slug = _NON_SLUG.sub("-", text).strip("-")
    return slug or "record"


def normalize_key(value: Any) -> str:
    """Case- and whitespace-insensitive form used for uniqueness checks."""
    return normalize_text(value)


def normalize_entity_name(name: str) -> str:
    """Collapse whitespace and title-case names typed in a single case."""
    cleaned = _WHITESPACE.sub(" ", name.strip())
    if cleaned == cleaned.lower() or cleaned == cleaned.upper():
        cleaned = " ".join(word.capitalize() for word in cleaned.split(" "))
    return cleaned


def derive_search_field(field_name: str) -> str:
    """``customer_id -> customer``; names without the suffix are returned unchanged."""
    if field_name.endswith("_id") and len(field_name) > 3:
        return field_name[:-3]
    return field_name


def join_path(prefix: str, field_name: str) -> str:
    if not prefix:
        return field_name
    return f"{prefix}.{field_name}"


def item_path(array_field: str, index: int, prefix: str = "") -> str:
    return join_path(prefix, f"{array_field}[{index}]")


def extract_text(field_map: Dict[str, Any], key: Optional[str]) -> Optional[str]:
    """Return the stripped string stored under ``key``, or None."""
    if key is None:
        return None
    value = field_map.get(key)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None
