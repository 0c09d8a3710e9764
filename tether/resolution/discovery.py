"""Where a relationship's text comes from, and which fields are relationships."""

from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from tether.resolution.models import ArrayFieldSpec, FieldResolutionSpec
from tether.resolution.utils import derive_search_field

if TYPE_CHECKING:
    from tether.schema import HasFieldSpecs, RecordTypeRegistry

SpecMap = Dict[str, Union[FieldResolutionSpec, ArrayFieldSpec]]


def _holds_text(field_map: Mapping[str, Any], key: Optional[str]) -> bool:
    if key is None:
        return False
    value = field_map.get(key)
    return isinstance(value, str) and bool(value.strip())


def select_search_source(
    field_name: str,
    spec: FieldResolutionSpec,
    field_map: Mapping[str, Any],
) -> Optional[str]:
    """Return the key of ``field_map`` holding the text to resolve for ``field_name``.

    Precedence:

    1. the field spec's explicit ``source_field``
    2. a sibling key named after one of the field spec's search fields
       (``{"email": "a@b.c"}`` for ``search_fields=["email", "name"]``)
    3. the field name with its ``_id`` suffix stripped (``customer_id -> customer``)
    4. the relationship field itself, when it still holds text
    """
    if spec.source_field is not None:
        return spec.source_field if _holds_text(field_map, spec.source_field) else None
    for name in spec.search_fields:
        if name != field_name and _holds_text(field_map, name):
            return name
    derived = derive_search_field(field_name)
    if derived != field_name and _holds_text(field_map, derived):
        return derived
    if _holds_text(field_map, field_name):
        return field_name
    return None


def discover_field_specs(
    schema: "HasFieldSpecs",
    *,
    registry: Optional["RecordTypeRegistry"] = None,
    field_map: Optional[Mapping[str, Any]] = None,
) -> SpecMap:
    """Collect relationship and array specs for a record type.

    Declared specs come from the schema. With a registry and a field-map,
    undeclared ``<type>_id`` keys holding text are also picked up when
    ``<type>`` is a registered record type; those resolve by ``name`` and
    never create records.
    """
    specs: SpecMap = {}
    specs.update(schema.field_specs())
    specs.update(schema.array_specs())
    if registry is None or not field_map:
        return specs
    for key, value in field_map.items():
        if key in specs or not key.endswith("_id") or not isinstance(value, str):
            continue
        record_type = derive_search_field(key)
        if record_type in registry:
            specs[key] = FieldResolutionSpec(record_type=record_type, search_fields=("name",))
    return specs
