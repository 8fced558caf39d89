# schema.py
# JSON Schema -> runtime-validated call signatures.
#
# Tool input schemas come from the remote provider and are not under our
# control. Each node is classified once into a SchemaKind, then translated
# into a pydantic-validatable annotation. A bad or unknown schema never
# raises here: it degrades to "accept anything".

import copy
import enum
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import (
    AfterValidator,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
)
from typing_extensions import NotRequired, Required, TypedDict


class SchemaKind(str, enum.Enum):
    OBJECT = "object"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    NULL = "null"
    UNION = "union"
    ANY = "any"


_TYPE_TAGS: dict[str, SchemaKind] = {
    "object": SchemaKind.OBJECT,
    "string": SchemaKind.STRING,
    "number": SchemaKind.NUMBER,
    "integer": SchemaKind.NUMBER,
    "boolean": SchemaKind.BOOLEAN,
    "array": SchemaKind.ARRAY,
    "null": SchemaKind.NULL,
}

Numeric = Union[StrictInt, StrictFloat]


# ---------------------------------------------------------------------------
# Signature
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Signature:
    """
    Runtime-checkable form of one schema node.

    Built once per tool at discovery time and reused for every call.
    `required` and `optional` are only populated for object signatures.
    """

    kind: SchemaKind
    annotation: Any
    required: frozenset[str] = frozenset()
    optional: frozenset[str] = frozenset()
    adapter: TypeAdapter = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "adapter", TypeAdapter(self.annotation))

    def validate(self, value: Any) -> Any:
        """Return the validated value. Raises pydantic.ValidationError."""
        return self.adapter.validate_python(value)

    def accepts(self, value: Any) -> bool:
        try:
            self.validate(value)
        except ValidationError:
            return False
        return True


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


_COMBINATORS = ("anyOf", "oneOf")


def _names(value: Any) -> list[str]:
    return [name for name in value if isinstance(name, str)] if isinstance(value, list) else []


def _base(node: dict) -> dict | None:
    """The node without anyOf/oneOf, if it still declares a type or properties of its own."""
    if not any(isinstance(node.get(key), list) for key in _COMBINATORS):
        return None
    base = {k: v for k, v in node.items() if k not in _COMBINATORS}
    if isinstance(base.get("type"), (str, list)) or isinstance(base.get("properties"), dict):
        return base
    return None


def _merge(base: dict, alternative: Any) -> dict:
    """Apply one anyOf/oneOf alternative on top of the shape it sits next to."""
    if not isinstance(alternative, dict):
        return base
    merged = {**base, **alternative}
    if isinstance(base.get("properties"), dict) and isinstance(alternative.get("properties"), dict):
        merged["properties"] = {**base["properties"], **alternative["properties"]}
    required = _names(base.get("required")) + _names(alternative.get("required"))
    if required:
        merged["required"] = list(dict.fromkeys(required))
    return merged


def _union_options(node: dict) -> list[Any] | None:
    for key in _COMBINATORS:
        options = node.get(key)
        if isinstance(options, list):
            base = _base(node)
            if base is None:
                return options
            # Every alternative inherits the surrounding type, properties and required.
            return [_merge(base, option) for option in options] or [base]
    tag = node.get("type")
    if isinstance(tag, list):
        # {"type": ["string", "null"], ...} is a union of single-tag variants.
        return [{**node, "type": t} for t in tag]
    return None


def classify(node: Any) -> SchemaKind:
    """Map a schema node onto exactly one SchemaKind."""
    if not isinstance(node, dict):
        return SchemaKind.ANY
    if _union_options(node) is not None:
        return SchemaKind.UNION
    tag = node.get("type")
    if isinstance(tag, str):
        return _TYPE_TAGS.get(tag, SchemaKind.ANY)
    if tag is None and isinstance(node.get("properties"), dict):
        return SchemaKind.OBJECT
    return SchemaKind.ANY


# ---------------------------------------------------------------------------
# Per-kind translation
# ---------------------------------------------------------------------------


def _ident(value: str) -> str:
    return re.sub(r"\W+", "_", value).strip("_") or "field"


def _field_split(node: dict) -> tuple[frozenset[str], frozenset[str]]:
    properties = node.get("properties")
    if not isinstance(properties, dict):
        return frozenset(), frozenset()
    raw = node.get("required")
    listed = {name for name in raw if isinstance(name, str)} if isinstance(raw, list) else set()
    names = set(properties)
    return frozenset(names & listed), frozenset(names - listed)


def _fill_defaults(defaults: dict[str, Any]) -> Callable[[dict], dict]:
    def fill(value: dict) -> dict:
        missing = {k: copy.deepcopy(v) for k, v in defaults.items() if k not in value}
        return {**value, **missing}

    return fill


def _object(node: dict, name: str) -> Any:
    properties = node.get("properties")
    if not isinstance(properties, dict) or not properties:
        return dict[str, Any]

    required, _ = _field_split(node)
    fields: dict[str, Any] = {}
    defaults: dict[str, Any] = {}
    for key, child in properties.items():
        _, annotation = _resolve(child, f"{name}_{_ident(key)}")
        if key in required:
            fields[key] = Required[annotation]
            continue
        fields[key] = NotRequired[annotation]
        if isinstance(child, dict) and "default" in child:
            defaults[key] = child["default"]

    shape = TypedDict(name, fields)
    if defaults:
        return Annotated[shape, AfterValidator(_fill_defaults(defaults))]
    return shape


def _string(node: dict, name: str) -> Any:
    options = node.get("enum")
    if isinstance(options, list) and options and all(isinstance(o, str) for o in options):
        return Literal[tuple(options)]
    return StrictStr


def _array(node: dict, name: str) -> Any:
    _, item = _resolve(node.get("items"), f"{name}_item")
    return list[item]


_TRANSLATORS: dict[SchemaKind, Callable[[dict, str], Any]] = {
    SchemaKind.OBJECT: _object,
    SchemaKind.STRING: _string,
    SchemaKind.NUMBER: lambda node, name: Numeric,
    SchemaKind.BOOLEAN: lambda node, name: StrictBool,
    SchemaKind.ARRAY: _array,
    SchemaKind.NULL: lambda node, name: None,
    SchemaKind.ANY: lambda node, name: Any,
}


def _resolve(node: Any, name: str) -> tuple[SchemaKind, Any]:
    kind = classify(node)
    if kind is not SchemaKind.UNION:
        return kind, _TRANSLATORS[kind](node, name)

    options = _union_options(node) or []
    if not options:
        return SchemaKind.ANY, Any
    if len(options) == 1:
        return _resolve(options[0], name)
    members = tuple(_resolve(option, f"{name}_{i}")[1] for i, option in enumerate(options, 1))
    return SchemaKind.UNION, Union[members]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def translate(node: Any = None, name: str = "Arguments") -> Signature:
    """
    Translate a schema document into a Signature.

    `name` seeds the generated type names and only shows up in
    validation error titles.
    """
    while classify(node) is SchemaKind.UNION:
        options = _union_options(node) or []
        if len(options) != 1:
            break
        node = options[0]

    kind, annotation = _resolve(node, _ident(name))
    if kind is SchemaKind.OBJECT:
        required, optional = _field_split(node)
        return Signature(kind, annotation, required=required, optional=optional)

    base = _base(node) if isinstance(node, dict) else None
    if base is not None and classify(base) is SchemaKind.OBJECT:
        # An object narrowed by alternatives: each alternative keeps the base fields.
        required, optional = _field_split(base)
        return Signature(SchemaKind.OBJECT, annotation, required=required, optional=optional)
    return Signature(kind, annotation)
