"""Protocol — Schema validator.

Validates a parsed candidate action against the ``ActionSchema`` of its kind
and returns a ``ValidationResult`` with itemised errors, warnings and
suggestions.  Suggestions are keyed to the kind of each error (missing field,
pattern mismatch, type mismatch, bounds, unknown field, formula value) so
that callers can show actionable guidance.

The validator is pure: it never mutates its input and returns equal results
for equal inputs.  The two companion helpers (``strip_undeclared_fields`` and
``filter_row_columns``) return new objects plus the warnings describing what
they removed.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sheetguard.protocol.constants import FORMULA_PREFIX_RE
from sheetguard.protocol.models import ValidationResult
from sheetguard.protocol.schema import (
    ActionSchema,
    FieldSpec,
    SchemaRegistry,
    get_schema_registry,
)


class IssueKind(str, Enum):
    MISSING = "missing"
    TYPE = "type"
    PATTERN = "pattern"
    BOUNDS = "bounds"
    ENUM = "enum"
    UNKNOWN = "unknown"
    FORMULA = "formula"
    NESTED_BATCH = "nested_batch"


@dataclass(frozen=True)
class Issue:
    kind: IssueKind
    path: str
    message: str
    spec: FieldSpec | None = None


_TYPE_NAMES = {
    str: "string",
    bool: "boolean",
    int: "number",
    float: "number",
    dict: "object",
    list: "array",
    type(None): "null",
}


def _type_name(value: Any) -> str:
    return _TYPE_NAMES.get(type(value), type(value).__name__)


def _matches_type(value: Any, type_: str) -> bool:
    if type_ == "any":
        return True
    if type_ == "string":
        return isinstance(value, str)
    if type_ == "boolean":
        return isinstance(value, bool)
    # bool is a subclass of int; JSON booleans are never numbers.
    if type_ == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_ == "integer":
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    if type_ == "object":
        return isinstance(value, dict)
    if type_ == "array":
        return isinstance(value, list)
    return False


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def is_formula(value: Any) -> bool:
    """True when a spreadsheet would evaluate *value* as a formula."""
    return isinstance(value, str) and FORMULA_PREFIX_RE.match(value.lstrip()) is not None


class SchemaValidator:
    """Validate candidate actions against the schema registry.

    Args:
        registry: Schema registry to validate against.  Defaults to the
                  built-in spreadsheet action schemas.
    """

    def __init__(self, registry: SchemaRegistry | None = None) -> None:
        self._registry = registry or get_schema_registry()

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    def validate(self, action: Any) -> ValidationResult:
        valid_actions = f"Valid actions: {', '.join(self._registry.names())}"

        if not isinstance(action, dict):
            return ValidationResult(
                valid=False,
                errors=["Input must be a JSON object"],
                suggestions=[valid_actions],
            )

        name = action.get("action")
        if name is None or name == "":
            return ValidationResult(
                valid=False,
                errors=["Missing required field: action"],
                suggestions=[valid_actions],
            )
        if not isinstance(name, str) or name not in self._registry:
            return ValidationResult(
                valid=False,
                action=name if isinstance(name, str) else None,
                errors=[f"Unknown action: {name}"],
                suggestions=[valid_actions],
            )

        schema = self._registry.get(name)
        assert schema is not None
        errors: list[Issue] = []
        warnings: list[str] = []
        self._check_action(action, schema, "", errors, warnings, nested=False)

        return ValidationResult(
            valid=not errors,
            action=name,
            errors=[issue.message for issue in errors],
            warnings=warnings,
            suggestions=_suggest(errors, schema),
        )

    # ------------------------------------------------------------------
    # Walkers
    # ------------------------------------------------------------------

    def _check_action(
        self,
        action: dict[str, Any],
        schema: ActionSchema,
        path: str,
        errors: list[Issue],
        warnings: list[str],
        *,
        nested: bool,
    ) -> None:
        self._check_object(
            action, schema.as_object, path, errors, warnings, formulas=False, nested=nested
        )

    def _check_object(
        self,
        obj: dict[str, Any],
        spec: FieldSpec,
        path: str,
        errors: list[Issue],
        warnings: list[str],
        *,
        formulas: bool,
        nested: bool = False,
    ) -> None:
        for field in spec.fields:
            field_path = _join(path, field.name)
            if field.name not in obj or obj[field.name] is None:
                if not field.required:
                    continue
                if field.contextual:
                    warnings.append(
                        f"Missing contextual field: {field_path} "
                        "(resolved from the active selection at execution time)"
                    )
                else:
                    errors.append(
                        Issue(IssueKind.MISSING, field_path, f"Missing required field: {field_path}", field)
                    )
                continue
            self._check_value(
                obj[field.name],
                field,
                field_path,
                errors,
                warnings,
                formulas=formulas or field.reject_formulas,
                nested=nested,
            )

        for key in obj:
            if key in spec.declared:
                continue
            key_path = _join(path, key)
            if spec.additional_properties:
                if spec.fields:
                    warnings.append(f"Unexpected field: {key_path}")
                if formulas:
                    self._check_formulas(obj[key], key_path, errors)
            else:
                errors.append(Issue(IssueKind.UNKNOWN, key_path, f"Unknown field: {key_path}"))

    def _check_value(
        self,
        value: Any,
        spec: FieldSpec,
        path: str,
        errors: list[Issue],
        warnings: list[str],
        *,
        formulas: bool,
        nested: bool,
    ) -> None:
        types = spec.variants if spec.type == "one_of" else (spec.type,)
        matched = next((t for t in types if _matches_type(value, t)), None)
        if matched is None:
            expected = " or ".join(types)
            errors.append(
                Issue(
                    IssueKind.TYPE,
                    path,
                    f"Field {path} must be of type {expected}, got {_type_name(value)}",
                    spec,
                )
            )
            return

        if spec.enum is not None and value not in spec.enum:
            allowed = ", ".join(str(v) for v in spec.enum)
            errors.append(
                Issue(IssueKind.ENUM, path, f"Field {path} must be one of: {allowed}", spec)
            )

        if isinstance(value, str):
            self._check_string(value, spec, path, errors, formulas=formulas)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            self._check_number(value, spec, path, errors)
        elif isinstance(value, dict):
            self._check_size(len(value), spec, path, errors, "entries")
            self._check_object(value, spec, path, errors, warnings, formulas=formulas)
        elif isinstance(value, list):
            self._check_size(len(value), spec, path, errors, "items")
            if spec.items == "action":
                self._check_batch_items(value, path, errors, warnings, nested=nested)
            elif formulas:
                self._check_formulas(value, path, errors)

    def _check_string(
        self,
        value: str,
        spec: FieldSpec,
        path: str,
        errors: list[Issue],
        *,
        formulas: bool,
    ) -> None:
        if spec.pattern is not None and re.fullmatch(spec.pattern, value) is None:
            errors.append(
                Issue(IssueKind.PATTERN, path, f"Field {path} has invalid format: {value!r}", spec)
            )
        if spec.min_length is not None and len(value) < spec.min_length:
            errors.append(
                Issue(
                    IssueKind.BOUNDS,
                    path,
                    f"Field {path} must be at least {spec.min_length} characters",
                    spec,
                )
            )
        if spec.max_length is not None and len(value) > spec.max_length:
            errors.append(
                Issue(
                    IssueKind.BOUNDS,
                    path,
                    f"Field {path} must be at most {spec.max_length} characters",
                    spec,
                )
            )
        if formulas and is_formula(value):
            errors.append(Issue(IssueKind.FORMULA, path, f"Formula-like value rejected at {path}", spec))

    def _check_number(
        self,
        value: float,
        spec: FieldSpec,
        path: str,
        errors: list[Issue],
    ) -> None:
        if spec.minimum is not None and value < spec.minimum:
            errors.append(
                Issue(IssueKind.BOUNDS, path, f"Field {path} must be >= {spec.minimum:g}, got {value}", spec)
            )
        if spec.maximum is not None and value > spec.maximum:
            errors.append(
                Issue(IssueKind.BOUNDS, path, f"Field {path} must be <= {spec.maximum:g}, got {value}", spec)
            )

    def _check_size(
        self,
        size: int,
        spec: FieldSpec,
        path: str,
        errors: list[Issue],
        unit: str,
    ) -> None:
        if spec.min_length is not None and size < spec.min_length:
            errors.append(
                Issue(
                    IssueKind.BOUNDS,
                    path,
                    f"Field {path} must contain at least {spec.min_length} {unit}",
                    spec,
                )
            )
        if spec.max_length is not None and size > spec.max_length:
            errors.append(
                Issue(
                    IssueKind.BOUNDS,
                    path,
                    f"Field {path} must contain at most {spec.max_length} {unit}",
                    spec,
                )
            )

    def _check_formulas(self, value: Any, path: str, errors: list[Issue]) -> None:
        if isinstance(value, str):
            if is_formula(value):
                errors.append(Issue(IssueKind.FORMULA, path, f"Formula-like value rejected at {path}"))
        elif isinstance(value, dict):
            for key, item in value.items():
                self._check_formulas(item, _join(path, key), errors)
        elif isinstance(value, list):
            for i, item in enumerate(value):
                self._check_formulas(item, f"{path}[{i}]", errors)

    def _check_batch_items(
        self,
        items: list[Any],
        path: str,
        errors: list[Issue],
        warnings: list[str],
        *,
        nested: bool,
    ) -> None:
        for i, item in enumerate(items):
            item_path = f"{path}[{i}]"
            if not isinstance(item, dict):
                errors.append(
                    Issue(
                        IssueKind.TYPE,
                        item_path,
                        f"Field {item_path} must be of type object, got {_type_name(item)}",
                    )
                )
                continue
            name = item.get("action")
            if name is None:
                errors.append(
                    Issue(
                        IssueKind.MISSING,
                        _join(item_path, "action"),
                        f"Missing required field: {_join(item_path, 'action')}",
                    )
                )
                continue
            if name == "batch" or nested:
                errors.append(
                    Issue(
                        IssueKind.NESTED_BATCH,
                        item_path,
                        f"Nested batch actions are not allowed at {item_path}",
                    )
                )
                continue
            schema = self._registry.get(name) if isinstance(name, str) else None
            if schema is None:
                errors.append(
                    Issue(
                        IssueKind.ENUM,
                        _join(item_path, "action"),
                        f"Unknown action at {_join(item_path, 'action')}: {name}",
                    )
                )
                continue
            self._check_action(item, schema, item_path, errors, warnings, nested=True)


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def _suggest(issues: list[Issue], schema: ActionSchema) -> list[str]:
    """Build de-duplicated, error-specific suggestions in discovery order."""
    suggestions: list[str] = []

    def add(text: str) -> None:
        if text and text not in suggestions:
            suggestions.append(text)

    missing = [i.path for i in issues if i.kind is IssueKind.MISSING]
    if len(missing) > 1:
        add(f"Add missing fields: {', '.join(missing)}")

    for issue in issues:
        spec = issue.spec
        if issue.kind is IssueKind.MISSING:
            add(spec.hint if spec and spec.hint else f"Add the {issue.path} field")
        elif issue.kind is IssueKind.PATTERN:
            add(spec.hint if spec and spec.hint else 'Check format requirements (e.g., cell ranges like "A1")')
        elif issue.kind is IssueKind.TYPE:
            expected = spec.type if spec and spec.type != "one_of" else "value of the expected type"
            add(f"Check data types: {issue.path} should be a {expected}")
        elif issue.kind is IssueKind.BOUNDS:
            add(f"Keep {issue.path} within its allowed limits")
        elif issue.kind is IssueKind.ENUM:
            add(f"Use one of the supported values for {issue.path}")
        elif issue.kind is IssueKind.UNKNOWN:
            declared = ", ".join(sorted(schema.declared - {"action"}))
            add(f"Remove fields not defined for {schema.name} (allowed: {declared})")
        elif issue.kind is IssueKind.FORMULA:
            add("Values starting with =, +, - or @ are treated as formulas; prefix with an apostrophe (') to store them as text")
        elif issue.kind is IssueKind.NESTED_BATCH:
            add("Flatten nested batches into a single list of actions")
    return suggestions


# ---------------------------------------------------------------------------
# Pure companion helpers
# ---------------------------------------------------------------------------


def strip_undeclared_fields(
    action: dict[str, Any],
    registry: SchemaRegistry | None = None,
) -> tuple[dict[str, Any], list[str]]:
    """Return a copy of *action* without keys its schema does not declare.

    Only closed objects are pruned (the action itself, ``updateCell.data``);
    open payloads such as ``addRow.data`` and ``options`` are left intact.
    Unknown action kinds are returned unchanged.
    """
    registry = registry or get_schema_registry()
    result = copy.deepcopy(action)
    warnings: list[str] = []
    schema = registry.get(result.get("action")) if isinstance(result.get("action"), str) else None
    if schema is None:
        return result, warnings
    _prune(result, schema.as_object, "", registry, warnings)
    return result, warnings


def _prune(
    obj: dict[str, Any],
    spec: FieldSpec,
    path: str,
    registry: SchemaRegistry,
    warnings: list[str],
) -> None:
    if not spec.additional_properties:
        for key in [k for k in obj if k not in spec.declared]:
            del obj[key]
            warnings.append(f"Removed undeclared field: {_join(path, key)}")

    for field in spec.fields:
        value = obj.get(field.name)
        field_path = _join(path, field.name)
        if isinstance(value, dict) and field.type == "object":
            _prune(value, field, field_path, registry, warnings)
        elif isinstance(value, list) and field.items == "action":
            for i, item in enumerate(value):
                name = item.get("action") if isinstance(item, dict) else None
                item_schema = registry.get(name) if isinstance(name, str) else None
                if item_schema is not None:
                    _prune(item, item_schema.as_object, f"{field_path}[{i}]", registry, warnings)


def filter_row_columns(
    action: dict[str, Any],
    headers: list[str] | None,
) -> tuple[dict[str, Any], list[str]]:
    """Drop ``addRow`` data keys that are not known column headers.

    Matching is exact after trimming surrounding whitespace.  A missing or
    empty header list disables the filter.  Batch items are filtered too.
    """
    result = copy.deepcopy(action)
    warnings: list[str] = []
    known = {h.strip() for h in headers or [] if h and h.strip()}
    if not known:
        return result, warnings

    def _filter(item: dict[str, Any]) -> None:
        data = item.get("data")
        if item.get("action") != "addRow" or not isinstance(data, dict):
            return
        for key in list(data):
            if key.strip() not in known:
                del data[key]
                warnings.append(f"Removed unknown column: {key}")

    if result.get("action") == "batch" and isinstance(result.get("data"), list):
        for item in result["data"]:
            if isinstance(item, dict):
                _filter(item)
    else:
        _filter(result)
    return result, warnings
