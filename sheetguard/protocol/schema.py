"""Protocol — Action schema registry.

Every spreadsheet action kind is described by an ``ActionSchema``: a named,
versioned list of ``FieldSpec`` entries.  The registry is built once, checked
for consistency at construction (a malformed definition raises
``SchemaRegistryError`` immediately) and is read-only afterwards, so that
concurrent pipeline runs can share it without locking.

Adding an action kind means adding a schema to ``DEFAULT_SCHEMAS`` — no
pipeline code changes are needed.  ``SchemaRegistry.to_json_schema`` exports
the definitions in JSON Schema form for the CLI and for remote normalizers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Literal, Mapping

from sheetguard.exceptions import SchemaRegistryError
from sheetguard.protocol.constants import (
    CELL_PATTERN,
    DISCOVER_MAX_RESULTS,
    FETCH_SAMPLE_MAX_ROWS,
    MAX_BATCH_ACTIONS,
    MAX_CELL_VALUE_LEN,
    RANGE_PATTERN,
    SCHEMA_VERSION,
    SPREADSHEET_ID_PATTERN,
    TAB_NAME_MAX_LEN,
)

FieldType = Literal["string", "number", "integer", "boolean", "object", "array", "any", "one_of"]

_SCALAR_TYPES = {"string", "number", "integer", "boolean", "any"}
_CONTAINER_TYPES = {"object", "array"}


class _NestedFields:
    """Lookup over a ``fields`` tuple, shared by actions and object fields."""

    fields: tuple[FieldSpec, ...]

    def field(self, name: str) -> FieldSpec | None:
        return next((spec for spec in self.fields if spec.name == name), None)

    @property
    def declared(self) -> frozenset[str]:
        return frozenset(spec.name for spec in self.fields)


@dataclass(frozen=True)
class FieldSpec(_NestedFields):
    """Constraints for one field of an action (or of a nested object).

    ``contextual`` marks fields that the execution layer can resolve from the
    user's active selection: when absent they produce a warning, not an error.
    ``reject_formulas`` applies to every string value at or below the field.
    For ``object`` and ``array`` fields, ``min_length``/``max_length`` bound
    the number of entries.  ``items="action"`` makes an array of nested
    actions, each validated against its own schema.
    """

    name: str
    type: FieldType
    required: bool = False
    contextual: bool = False
    description: str = ""
    hint: str = ""
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    enum: tuple[Any, ...] | None = None
    fields: tuple["FieldSpec", ...] = ()
    additional_properties: bool = True
    variants: tuple[FieldType, ...] = ()
    items: Literal["any", "action"] = "any"
    reject_formulas: bool = False


@dataclass(frozen=True)
class ActionSchema(_NestedFields):
    """Definition of one action kind.  Top level never accepts undeclared keys."""

    name: str
    fields: tuple[FieldSpec, ...]
    description: str = ""
    version: str = SCHEMA_VERSION
    additional_properties: bool = False

    @property
    def required(self) -> list[str]:
        """Required field names in declaration order, contextual ones included."""
        return [spec.name for spec in self.fields if spec.required]

    @property
    def as_object(self) -> FieldSpec:
        """View the action as a closed object field (used by recursive walkers)."""
        return FieldSpec(
            name="",
            type="object",
            fields=self.fields,
            additional_properties=self.additional_properties,
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SchemaRegistry:
    """Immutable mapping of action name → ActionSchema."""

    def __init__(self, schemas: Iterable[ActionSchema]) -> None:
        table: dict[str, ActionSchema] = {}
        for schema in schemas:
            if schema.name in table:
                raise SchemaRegistryError(
                    f"Duplicate action schema: {schema.name}",
                    context={"action": schema.name},
                )
            _check_schema(schema)
            table[schema.name] = schema
        if not table:
            raise SchemaRegistryError("Schema registry is empty")
        self._schemas: Mapping[str, ActionSchema] = MappingProxyType(table)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def get(self, name: str) -> ActionSchema | None:
        return self._schemas.get(name)

    def names(self) -> list[str]:
        return list(self._schemas)

    def to_json_schema(self, name: str | None = None) -> dict[str, Any]:
        """Return JSON Schema for one action, or for all of them keyed by name."""
        if name is not None:
            schema = self._schemas.get(name)
            if schema is None:
                return {}
            return _action_to_json_schema(schema)
        return {n: _action_to_json_schema(s) for n, s in self._schemas.items()}

    def vocabulary(self) -> str:
        """One line per action listing its required fields (used in model prompts)."""
        lines = []
        for schema in self._schemas.values():
            required = ", ".join(schema.required)
            lines.append(f"- {schema.name}: {required}")
        return "\n".join(lines)


def _check_schema(schema: ActionSchema) -> None:
    if not schema.name:
        raise SchemaRegistryError("Action schema without a name")
    action_field = schema.field("action")
    if action_field is None or not action_field.required:
        raise SchemaRegistryError(
            f"Schema {schema.name} must declare a required 'action' field",
            context={"action": schema.name},
        )
    if action_field.enum != (schema.name,):
        raise SchemaRegistryError(
            f"Schema {schema.name}: 'action' enum must be ({schema.name!r},)",
            context={"action": schema.name},
        )
    _check_fields(schema.fields, schema.name)


def _check_fields(fields: tuple[FieldSpec, ...], where: str) -> None:
    seen: set[str] = set()
    for spec in fields:
        path = f"{where}.{spec.name}"
        if spec.name in seen:
            raise SchemaRegistryError(f"Duplicate field {path}")
        seen.add(spec.name)

        if spec.type not in _SCALAR_TYPES | _CONTAINER_TYPES | {"one_of"}:
            raise SchemaRegistryError(f"{path}: unknown field type {spec.type!r}")
        if spec.type == "one_of":
            if len(spec.variants) < 2:
                raise SchemaRegistryError(f"{path}: one_of needs at least two variants")
            if any(v == "one_of" for v in spec.variants):
                raise SchemaRegistryError(f"{path}: nested one_of is not supported")
        elif spec.variants:
            raise SchemaRegistryError(f"{path}: variants are only valid on one_of fields")

        if spec.fields and spec.type not in ("object", "one_of"):
            raise SchemaRegistryError(f"{path}: nested fields require an object type")
        if spec.items == "action" and spec.type != "array":
            raise SchemaRegistryError(f"{path}: items='action' requires an array type")
        if spec.pattern is not None:
            try:
                re.compile(spec.pattern)
            except re.error as exc:
                raise SchemaRegistryError(f"{path}: invalid pattern ({exc})") from exc
        if (
            spec.minimum is not None
            and spec.maximum is not None
            and spec.minimum > spec.maximum
        ):
            raise SchemaRegistryError(f"{path}: minimum is greater than maximum")
        if (
            spec.min_length is not None
            and spec.max_length is not None
            and spec.min_length > spec.max_length
        ):
            raise SchemaRegistryError(f"{path}: min_length is greater than max_length")
        if spec.contextual and not spec.required:
            raise SchemaRegistryError(f"{path}: contextual fields must be required")

        _check_fields(spec.fields, path)


# ---------------------------------------------------------------------------
# JSON Schema export
# ---------------------------------------------------------------------------


_JSON_TYPES = {
    "string": "string",
    "number": "number",
    "integer": "integer",
    "boolean": "boolean",
    "object": "object",
    "array": "array",
}


def _field_to_json_schema(spec: FieldSpec) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if spec.type == "one_of":
        out["oneOf"] = [{"type": _JSON_TYPES[v]} for v in spec.variants if v in _JSON_TYPES]
    elif spec.type in _JSON_TYPES:
        out["type"] = _JSON_TYPES[spec.type]
    if spec.description:
        out["description"] = spec.description
    if spec.enum is not None:
        out["enum"] = list(spec.enum)
    if spec.pattern is not None:
        out["pattern"] = spec.pattern
    if spec.minimum is not None:
        out["minimum"] = spec.minimum
    if spec.maximum is not None:
        out["maximum"] = spec.maximum
    if spec.type == "string":
        if spec.min_length is not None:
            out["minLength"] = spec.min_length
        if spec.max_length is not None:
            out["maxLength"] = spec.max_length
    elif spec.type == "array":
        if spec.min_length is not None:
            out["minItems"] = spec.min_length
        if spec.max_length is not None:
            out["maxItems"] = spec.max_length
        if spec.items == "action":
            out["items"] = {"$ref": "#/definitions/action"}
    if spec.fields:
        out["properties"] = {f.name: _field_to_json_schema(f) for f in spec.fields}
        required = [f.name for f in spec.fields if f.required]
        if required:
            out["required"] = required
    if spec.type == "object":
        out["additionalProperties"] = spec.additional_properties
    return out


def _action_to_json_schema(schema: ActionSchema) -> dict[str, Any]:
    out = _field_to_json_schema(schema.as_object)
    out["title"] = schema.name
    out["version"] = schema.version
    if schema.description:
        out["description"] = schema.description
    contextual = [f.name for f in schema.fields if f.contextual]
    if contextual:
        out["x-contextual"] = contextual
    return out


# ---------------------------------------------------------------------------
# Built-in action schemas
# ---------------------------------------------------------------------------


def _action(name: str) -> FieldSpec:
    return FieldSpec(name="action", type="string", required=True, enum=(name,))


_SPREADSHEET_ID = FieldSpec(
    name="spreadsheetId",
    type="string",
    required=True,
    contextual=True,
    pattern=SPREADSHEET_ID_PATTERN,
    description="Google Sheets document ID (the segment after /spreadsheets/d/ in the URL).",
    hint="SpreadsheetId should be the Google Sheets ID from the URL",
)

_TAB_NAME = FieldSpec(
    name="tabName",
    type="string",
    required=True,
    contextual=True,
    min_length=1,
    max_length=TAB_NAME_MAX_LEN,
    description="Name of the tab (sheet) inside the spreadsheet.",
    hint='TabName should be the exact sheet name, e.g. "Sheet1"',
)

_AUTHOR = FieldSpec(name="author", type="string", max_length=200)
_DRY_RUN = FieldSpec(name="dryRun", type="boolean")
_SKIP_SNAPSHOT = FieldSpec(name="skipSnapshot", type="boolean")


def _options(*extra: FieldSpec) -> FieldSpec:
    return FieldSpec(name="options", type="object", fields=(*extra, _AUTHOR))


DEFAULT_SCHEMAS: tuple[ActionSchema, ...] = (
    ActionSchema(
        name="listTabs",
        description="List the tabs of a spreadsheet.",
        fields=(_action("listTabs"), _SPREADSHEET_ID, _options()),
    ),
    ActionSchema(
        name="fetchTabData",
        description="Fetch the rows of one tab.",
        fields=(
            _action("fetchTabData"),
            _SPREADSHEET_ID,
            _TAB_NAME,
            _options(
                FieldSpec(
                    name="sampleMaxRows",
                    type="integer",
                    minimum=1,
                    maximum=FETCH_SAMPLE_MAX_ROWS,
                ),
            ),
        ),
    ),
    ActionSchema(
        name="updateCell",
        description="Write one value into a single cell.",
        fields=(
            _action("updateCell"),
            _SPREADSHEET_ID,
            _TAB_NAME,
            FieldSpec(
                name="range",
                type="string",
                required=True,
                pattern=CELL_PATTERN,
                description="Target cell in A1 notation.",
                hint='Range should be in A1 notation like "B5"',
            ),
            FieldSpec(
                name="data",
                type="object",
                required=True,
                additional_properties=False,
                hint='Data should be an object like {"value": "Updated Value"}',
                fields=(
                    FieldSpec(
                        name="value",
                        type="any",
                        required=True,
                        max_length=MAX_CELL_VALUE_LEN,
                        reject_formulas=True,
                        hint='Provide the new cell content as data.value, e.g. {"value": 42}',
                    ),
                ),
            ),
            _options(_DRY_RUN, _SKIP_SNAPSHOT),
        ),
    ),
    ActionSchema(
        name="addRow",
        description="Append one row; data is a list of values or a column → value object.",
        fields=(
            _action("addRow"),
            _SPREADSHEET_ID,
            _TAB_NAME,
            FieldSpec(
                name="data",
                type="one_of",
                variants=("object", "array"),
                required=True,
                min_length=1,
                reject_formulas=True,
                hint='Data should map column headers to values, e.g. {"Product": "iPhone"}',
            ),
            _options(_DRY_RUN, _SKIP_SNAPSHOT),
        ),
    ),
    ActionSchema(
        name="readRange",
        description="Read a cell range.",
        fields=(
            _action("readRange"),
            _SPREADSHEET_ID,
            _TAB_NAME,
            FieldSpec(
                name="range",
                type="string",
                required=True,
                pattern=RANGE_PATTERN,
                description="A1 notation: a cell, a rectangle (A1:C10) or columns (A:C).",
                hint='Range should be in A1 notation like "A1:C10"',
            ),
            _options(),
        ),
    ),
    ActionSchema(
        name="discoverAll",
        description="List every spreadsheet the backend can reach.",
        fields=(
            _action("discoverAll"),
            _options(
                FieldSpec(
                    name="maxResults",
                    type="integer",
                    minimum=1,
                    maximum=DISCOVER_MAX_RESULTS,
                ),
            ),
        ),
    ),
    ActionSchema(
        name="batch",
        description="Run several actions in order; each item follows its own schema.",
        fields=(
            _action("batch"),
            FieldSpec(
                name="data",
                type="array",
                required=True,
                items="action",
                min_length=1,
                max_length=MAX_BATCH_ACTIONS,
                hint='Data should be a list of actions, e.g. [{"action": "listTabs"}]',
            ),
            _options(_DRY_RUN),
        ),
    ),
    ActionSchema(
        name="health",
        description="Backend health check.",
        fields=(_action("health"), _options()),
    ),
)


# Module-level singleton
_registry: SchemaRegistry | None = None


def get_schema_registry() -> SchemaRegistry:
    global _registry
    if _registry is None:
        _registry = SchemaRegistry(DEFAULT_SCHEMAS)
    return _registry
