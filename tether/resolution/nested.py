"""Resolution of relationship fields inside array items."""

from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from tether.resolution.models import ArrayFieldSpec, ResolutionLog, Unresolved, UnresolvedReason
from tether.resolution.utils import _record_resolution_event, item_path, join_path

if TYPE_CHECKING:
    from tether.resolution.engine import ResolutionEngine


class NestedArrayResolver:
    """Runs the engine over every relationship sub-field of every array item.

    Items are independent: an item whose resolution fails, even with an
    unexpected exception, is logged at ``items[i].sub_field`` and the
    remaining items still resolve. Items are mutated in place; callers pass
    a copy.
    """

    def __init__(self, engine: "ResolutionEngine"):
        self.engine = engine

    def resolve(
        self,
        field_map: Dict[str, Any],
        array_specs: Mapping[str, ArrayFieldSpec],
        log: ResolutionLog,
        *,
        prefix: str = "",
        choices: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        choices = choices or {}
        for array_field, array_spec in array_specs.items():
            items = field_map.get(array_field)
            if not isinstance(items, list):
                if array_spec.required:
                    log.record(
                        join_path(prefix, array_field),
                        Unresolved(UnresolvedReason.MISSING_VALUE),
                        required=True,
                    )
                continue

            for index, item in enumerate(items):
                if not isinstance(item, dict):
                    continue
                base_path = item_path(array_field, index, prefix)
                for sub_field, spec in array_spec.item_specs.items():
                    path = join_path(base_path, sub_field)
                    try:
                        self.engine.resolve_field(
                            item,
                            sub_field,
                            spec,
                            log,
                            path=path,
                            choice=choices.get(path),
                        )
                    except Exception as exc:
                        _record_resolution_event(
                            "nested.item.error",
                            {"field_path": path, "error": str(exc)},
                        )
                        log.record(
                            path,
                            Unresolved(
                                UnresolvedReason.RESOLUTION_ERROR,
                                {"error": str(exc), "error_type": type(exc).__name__},
                            ),
                            required=spec.required,
                        )

            _record_resolution_event(
                "nested.array.complete",
                {"field": join_path(prefix, array_field), "item_count": len(items)},
            )
        return field_map
