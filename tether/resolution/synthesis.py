"""Field-map synthesis for records created during resolution."""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from tether.errors import CreationValidationFailure
from tether.resolution.models import FieldResolutionSpec
from tether.resolution.utils import (
    is_email_field_name,
    is_valid_email,
    looks_like_email,
    normalize_entity_name,
    slugify,
)

if TYPE_CHECKING:
    from tether.schema import FieldSchema, RecordTypeRegistry, RecordTypeSchema

GENERATED_EMAIL_DOMAIN = "generated.local"


def resolve_temporal(value: Any, now: datetime) -> Any:
    """``"now"`` becomes ``now``, ``"today"`` its date; anything else is returned as is."""
    if isinstance(value, str):
        marker = value.strip().lower()
        if marker == "now":
            return now
        if marker == "today":
            return now.date()
    return value


def _is_unset(data: Mapping[str, Any], name: str) -> bool:
    return data.get(name) in (None, "")


class RecordSynthesizer:
    """Builds the field-map of a record that resolution is about to create.

    Values are layered in this order, each layer only filling what is still
    unset unless stated otherwise:

    1. the raw value under the field spec's primary search field
    2. the value again under an email field, when it is a valid address
    3. literal and temporal defaults from the record type schema
    4. spec defaults (overwrite earlier layers when ``override_defaults``)
    5. spec filters, so the new record satisfies its own search constraints
    6. session context fields the schema declares (``workspace_id`` ...)
    7. per-type values for required fields that are still missing

    Args:
        registry: Schemas for record types; without one only layers 1, 2, 4
            and 5 apply
        context_fields: Values such as the acting user or workspace
        normalize_names: Tidy whitespace and casing of the primary value
    """

    def __init__(
        self,
        registry: Optional["RecordTypeRegistry"] = None,
        *,
        context_fields: Optional[Mapping[str, Any]] = None,
        normalize_names: bool = False,
    ):
        self.registry = registry
        self.context_fields = dict(context_fields or {})
        self.normalize_names = normalize_names

    def _schema(self, record_type: str) -> Optional["RecordTypeSchema"]:
        if self.registry is None:
            return None
        return self.registry.get(record_type)

    def _email_target(self, spec: FieldResolutionSpec, schema: Optional["RecordTypeSchema"]) -> str:
        for name in spec.search_fields:
            if is_email_field_name(name):
                return name
        if schema is not None:
            email_fields = schema.email_fields()
            if email_fields:
                return email_fields[0]
        return "email"

    def build(self, value: str, spec: FieldResolutionSpec) -> Dict[str, Any]:
        now = datetime.now()
        schema = self._schema(spec.record_type)
        text = value.strip()
        primary = spec.primary_search_field

        if self.normalize_names and not looks_like_email(text):
            text = normalize_entity_name(text)
        data: Dict[str, Any] = {primary: text}

        if is_valid_email(text) and not is_email_field_name(primary):
            data.setdefault(self._email_target(spec, schema), text)

        if schema is not None:
            for name, field_schema in schema.fields.items():
                if field_schema.has_default and _is_unset(data, name):
                    data[name] = resolve_temporal(field_schema.default, now)

        for name, default in spec.defaults.items():
            if spec.override_defaults or _is_unset(data, name):
                data[name] = resolve_temporal(default, now)

        for name, expected in spec.filters.items():
            if _is_unset(data, name):
                data[name] = expected

        if schema is not None:
            for name, context_value in self.context_fields.items():
                if name in schema.fields and _is_unset(data, name):
                    data[name] = context_value

            for field_schema in schema.required_fields():
                if not _is_unset(data, field_schema.name):
                    continue
                generated = self.generate_default(field_schema, text, now)
                if generated is not None:
                    data[field_schema.name] = generated

        return data

    def generate_default(self, field: "FieldSchema", value: str, now: Optional[datetime] = None) -> Any:
        """Minimal value for a required field nobody supplied, or None."""
        now = now or datetime.now()
        if field.type == "email" or is_email_field_name(field.name):
            return f"{slugify(value)}@{GENERATED_EMAIL_DOMAIN}"
        if field.type == "boolean":
            return False
        if field.type in ("integer", "number"):
            return 0
        if field.type == "date":
            return now.date()
        if field.type == "datetime":
            return now
        if field.type == "enum":
            return field.options[0]
        if field.type in ("string", "text") and "name" in field.name.lower():
            return value
        return None

    def validate(self, data: Mapping[str, Any], spec: FieldResolutionSpec) -> None:
        """Raise CreationValidationFailure when ``data`` breaks the target's constraints.

        Relationship fields are exempt from the required check: a created
        record's own relationships are resolved after it is stored.
        """
        primary = spec.primary_search_field
        missing: List[str] = []
        invalid: Dict[str, Any] = {}
        if _is_unset(data, primary):
            missing.append(primary)

        schema = self._schema(spec.record_type)
        if schema is not None:
            for name, field_schema in schema.fields.items():
                if field_schema.type in ("relationship", "array"):
                    continue
                if field_schema.required and _is_unset(data, name) and name not in missing:
                    missing.append(name)
                if (
                    field_schema.type == "enum"
                    and not _is_unset(data, name)
                    and data[name] not in field_schema.options
                ):
                    invalid[name] = data[name]

        if missing or invalid:
            detail = {"record_type": spec.record_type, "missing": missing, "invalid": invalid}
            raise CreationValidationFailure(
                f"Cannot create {spec.record_type}: "
                f"missing {missing or 'nothing'}, invalid {sorted(invalid) or 'nothing'}",
                detail,
            )
