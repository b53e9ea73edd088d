"""JSON Schema checks for plugin definitions, tool arguments and tool results.

Schemas submitted at registration are checked against their metaschema and
restricted to a known keyword vocabulary. References must stay inside the
document: a remote ``$ref`` would make the server fetch arbitrary URLs while
validating.
"""

from typing import Any
from urllib.parse import unquote

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

from ..core.exceptions import InvalidArgumentsError, InvalidSchemaError, UpstreamSchemaViolationError

MAX_SCHEMA_DEPTH = 32
MAX_REPORTED_ERRORS = 10

_ANNOTATION_KEYWORDS = frozenset(
    {
        "$schema",
        "$id",
        "$anchor",
        "$dynamicAnchor",
        "$comment",
        "$defs",
        "$vocabulary",
        "definitions",
        "title",
        "description",
        "default",
        "examples",
        "deprecated",
        "readOnly",
        "writeOnly",
        "contentMediaType",
        "contentEncoding",
        "contentSchema",
    }
)
_REFERENCE_KEYWORDS = ("$ref", "$dynamicRef", "$recursiveRef")
_SCHEMA_VALUED = (
    "not",
    "if",
    "then",
    "else",
    "additionalProperties",
    "additionalItems",
    "contains",
    "propertyNames",
    "unevaluatedItems",
    "unevaluatedProperties",
    "contentSchema",
)
_SCHEMA_MAP_VALUED = ("properties", "patternProperties", "$defs", "definitions", "dependentSchemas")
_SCHEMA_LIST_VALUED = ("allOf", "anyOf", "oneOf", "prefixItems")


def _walk(node: Any, known: frozenset[str], depth: int, anchors: set[str], refs: list[str]) -> None:
    if isinstance(node, bool):
        return
    if not isinstance(node, dict):
        raise InvalidSchemaError("Every subschema must be an object or a boolean")
    if depth > MAX_SCHEMA_DEPTH:
        raise InvalidSchemaError(f"Schema nesting exceeds {MAX_SCHEMA_DEPTH} levels")

    unknown = sorted(key for key in node if key not in known)
    if unknown:
        raise InvalidSchemaError("Schema uses unsupported keywords", details={"keywords": unknown})

    for keyword in _REFERENCE_KEYWORDS:
        if keyword in node:
            ref = node[keyword]
            if not isinstance(ref, str) or not ref.startswith("#"):
                raise InvalidSchemaError(f"Only local '{keyword}' references are allowed", details={keyword: ref})
            refs.append(ref)
    if isinstance(node.get("$anchor"), str):
        anchors.add(node["$anchor"])

    for keyword in _SCHEMA_VALUED:
        if keyword in node:
            _walk(node[keyword], known, depth + 1, anchors, refs)
    for keyword in _SCHEMA_MAP_VALUED:
        value = node.get(keyword)
        if isinstance(value, dict):
            for child in value.values():
                _walk(child, known, depth + 1, anchors, refs)
    for keyword in _SCHEMA_LIST_VALUED:
        value = node.get(keyword)
        if isinstance(value, list):
            for child in value:
                _walk(child, known, depth + 1, anchors, refs)
    items = node.get("items")
    if isinstance(items, list):
        for child in items:
            _walk(child, known, depth + 1, anchors, refs)
    elif items is not None:
        _walk(items, known, depth + 1, anchors, refs)


def _resolve_pointer(root: Any, ref: str, anchors: set[str]) -> bool:
    fragment = ref[1:]
    if not fragment:
        return True
    if not fragment.startswith("/"):
        return unquote(fragment) in anchors
    node = root
    for token in fragment[1:].split("/"):
        token = unquote(token).replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            return False
    return True


def check_schema(schema: Any, *, field: str = "schema", require_object_type: bool = False) -> dict[str, Any]:
    """Validate a schema document submitted for a plugin.

    Args:
        schema: The decoded JSON schema.
        field: Name used in error messages (``input_schema``, ``output_schema``).
        require_object_type: Require ``"type": "object"`` at the root, as tool
            argument schemas must describe a JSON object.

    Returns:
        The schema, unchanged.

    Raises:
        InvalidSchemaError: if the document is not a valid, self-contained schema.

    """
    if not isinstance(schema, dict):
        raise InvalidSchemaError(f"{field} must be a JSON object")
    if require_object_type and schema.get("type") != "object":
        raise InvalidSchemaError(f"{field} must declare \"type\": \"object\"")

    validator_cls = validator_for(schema, default=Draft202012Validator)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as e:
        raise InvalidSchemaError(f"{field} is not a valid JSON schema: {e.message}") from None

    known = frozenset(validator_cls.VALIDATORS) | _ANNOTATION_KEYWORDS
    anchors: set[str] = set()
    refs: list[str] = []
    try:
        _walk(schema, known, 0, anchors, refs)
    except InvalidSchemaError as e:
        raise InvalidSchemaError(f"{field}: {e.message}", details=e.details) from None

    for ref in refs:
        if not _resolve_pointer(schema, ref, anchors):
            raise InvalidSchemaError(f"{field}: unresolvable reference '{ref}'", details={"$ref": ref})
    return schema


def collect_errors(instance: Any, schema: dict[str, Any]) -> list[str]:
    """Return validation messages for ``instance``; empty when it conforms."""
    validator_cls = validator_for(schema, default=Draft202012Validator)
    validator = validator_cls(schema, format_checker=validator_cls.FORMAT_CHECKER)
    errors = sorted(validator.iter_errors(instance), key=lambda e: e.json_path)
    return [f"{error.json_path}: {error.message}" for error in errors[:MAX_REPORTED_ERRORS]]


def validate_arguments(arguments: Any, schema: dict[str, Any]) -> None:
    """Raise ``InvalidArgumentsError`` when tool arguments do not match the input schema."""
    errors = collect_errors(arguments, schema)
    if errors:
        raise InvalidArgumentsError("Arguments do not match the tool's input schema", details={"errors": errors})


def validate_result(fqn: str, result: Any, schema: dict[str, Any] | None) -> None:
    """Raise ``UpstreamSchemaViolationError`` when a result does not match the output schema."""
    if schema is None:
        return
    errors = collect_errors(result, schema)
    if errors:
        raise UpstreamSchemaViolationError(fqn, errors)
