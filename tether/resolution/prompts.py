"""Human-facing text for pending choices, and parsing of the replies."""

import re
from typing import Any, Optional, Sequence, Union

from tether.resolution.models import CREATE_NEW, AwaitingChoice, FieldResolutionSpec

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_USE_REPLIES = ("use", "yes", "y")
_CREATE_REPLIES = ("new", "create")


def pluralize(word: str) -> str:
    """Naive English plural: ``category -> categories``, ``box -> boxes``."""
    if not word:
        return word
    lower = word.lower()
    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def friendly_entity_name(
    record_type: str,
    spec: Optional[FieldResolutionSpec] = None,
    *,
    plural: bool = False,
) -> str:
    """``invoice_line`` / ``InvoiceLine`` -> ``invoice line``, unless ``friendly_name`` overrides it."""
    if spec is not None and spec.friendly_name:
        name = spec.friendly_name
    else:
        name = _CAMEL_BOUNDARY.sub(" ", record_type).replace("_", " ").replace("-", " ")
        name = " ".join(name.lower().split())
    return pluralize(name) if plural else name


def _label(data: dict, spec: Optional[FieldResolutionSpec]) -> str:
    if spec is not None:
        for name in (spec.primary_search_field,) + tuple(spec.search_fields):
            if data.get(name):
                return str(data[name])
    for name in ("name", "title", "email"):
        if data.get(name):
            return str(data[name])
    return "(unnamed)"


def _extra(data: dict, spec: Optional[FieldResolutionSpec]) -> str:
    if spec is None:
        return ""
    for name in spec.display_fields:
        if data.get(name):
            return f" - {data[name]}"
    return ""


def describe_choice(
    decision: AwaitingChoice,
    spec: Optional[FieldResolutionSpec] = None,
    *,
    record_type: Optional[str] = None,
    value: Optional[str] = None,
) -> str:
    """Render an AwaitingChoice as a question for a human."""
    entity = friendly_entity_name(record_type or (spec.record_type if spec else "record"), spec)
    candidates = decision.candidates
    subject = f' for "{value}"' if value else ""

    if len(candidates) == 1:
        candidate = candidates[0]
        lines = [
            f"Found existing {entity}{subject}: {_label(candidate.data, spec)}"
            f" (match: {round(candidate.score * 100)}%){_extra(candidate.data, spec)}",
            "",
            "Would you like to:",
            f"1. Use this {entity} (reply 'use' or 'yes')",
            f"2. Create a new {entity} (reply 'new' or 'create')",
        ]
        return "\n".join(lines)

    lines = [f"Found {len(candidates)} similar {pluralize(entity)}{subject}:", ""]
    for position, candidate in enumerate(candidates, start=1):
        lines.append(
            f"{position}. {_label(candidate.data, spec)}"
            f" ({round(candidate.score * 100)}% match){_extra(candidate.data, spec)}"
        )
    lines.extend([
        "",
        "Would you like to:",
        f"- Use one of these (reply with number 1-{len(candidates)})",
        f"- Create a new {entity} (reply 'new' or 'create')",
    ])
    return "\n".join(lines)


def parse_choice_reply(reply: str, candidates: Union[AwaitingChoice, Sequence[Any]]) -> Optional[Any]:
    """Turn a free-text reply into a chosen id, CREATE_NEW, or None if unclear."""
    if isinstance(candidates, AwaitingChoice):
        candidates = candidates.candidates
    text = reply.strip().lower().rstrip(".!")
    if not text:
        return None
    if text in _CREATE_REPLIES:
        return CREATE_NEW
    if text in _USE_REPLIES:
        return candidates[0].id if candidates else None
    match = re.fullmatch(r"#?(\d+)", text)
    if match:
        position = int(match.group(1))
        if 1 <= position <= len(candidates):
            return candidates[position - 1].id
    return None
