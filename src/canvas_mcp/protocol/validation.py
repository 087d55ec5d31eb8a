"""Tool argument validation and coercion.

Arguments are checked against the tool's JSON Schema, then normalized:
integral floats become ints for integer fields, and fields declared with
``"format": "identifier"`` become Identifier values whatever form (text
or integer) the caller used.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, ValidationError, best_match

from canvas_mcp.errors import ParameterValidationError
from canvas_mcp.protocol.identifier import Identifier, IdentifierError

IDENTIFIER_FORMAT = "identifier"

IDENTIFIER_SCHEMA_TYPES = ["string", "integer"]


def identifier_property(description: str) -> dict[str, Any]:
    """Schema fragment for an identifier-like parameter."""
    return {
        "type": list(IDENTIFIER_SCHEMA_TYPES),
        "format": IDENTIFIER_FORMAT,
        "description": description,
    }


def json_kind(value: Any) -> str:
    """Name the JSON type of a decoded value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _declared_types(schema: dict[str, Any]) -> list[str]:
    declared = schema.get("type", [])
    if isinstance(declared, str):
        return [declared]
    return list(declared)


def canonical_arguments(arguments: Any) -> Any:
    """Convert validated arguments to a JSON-compatible canonical form.

    Identifiers become their canonical strings so that text and integer
    spellings of the same id produce the same value.
    """
    if isinstance(arguments, Identifier):
        return arguments.canonical
    if isinstance(arguments, dict):
        return {key: canonical_arguments(value) for key, value in arguments.items()}
    if isinstance(arguments, list | tuple):
        return [canonical_arguments(item) for item in arguments]
    return arguments


def _to_parameter_error(error: ValidationError) -> ParameterValidationError:
    """Describe a jsonschema error in terms of the offending field."""
    path = ".".join(str(p) for p in error.absolute_path)

    if error.validator == "required":
        instance = error.instance if isinstance(error.instance, dict) else {}
        missing = next((name for name in error.validator_value if name not in instance), "")
        field = f"{path}.{missing}" if path else missing
        return ParameterValidationError(
            field, "present", "missing", f"Missing required parameter '{field}'"
        )

    field = path or "arguments"
    if error.validator == "type":
        expected = error.validator_value
        expected_text = " or ".join(expected) if isinstance(expected, list) else str(expected)
        return ParameterValidationError(field, expected_text, json_kind(error.instance))

    return ParameterValidationError(
        field,
        f"{error.validator} {error.validator_value!r}",
        json_kind(error.instance),
        f"Invalid parameter '{field}': {error.message}",
    )


class ParameterValidator:
    """Validates and coerces tool arguments against JSON Schemas.

    Compiled validators are kept per schema so repeated calls to the same
    tool do not rebuild them.
    """

    def __init__(self) -> None:
        """Initialize the validator."""
        self._validators: dict[str, Draft202012Validator] = {}

    @staticmethod
    def check_schema(schema: dict[str, Any]) -> None:
        """Verify that a tool schema is itself valid.

        Raises:
            SchemaError: If the schema is malformed.
        """
        Draft202012Validator.check_schema(schema)

    def _validator_for(self, tool_name: str, schema: dict[str, Any]) -> Draft202012Validator:
        validator = self._validators.get(tool_name)
        if validator is None or validator.schema is not schema:
            validator = Draft202012Validator(schema)
            self._validators[tool_name] = validator
        return validator

    def _coerce_value(self, field: str, value: Any, prop_schema: dict[str, Any]) -> Any:
        types = _declared_types(prop_schema)

        if prop_schema.get("format") == IDENTIFIER_FORMAT:
            try:
                return Identifier.parse(value)
            except IdentifierError as e:
                raise ParameterValidationError(
                    field,
                    "identifier (text or non-negative 64-bit integer)",
                    json_kind(value),
                    f"Invalid parameter '{field}': {e}",
                ) from e

        if "integer" in types and isinstance(value, float) and value.is_integer():
            return int(value)

        return value

    def validate(
        self, tool_name: str, schema: dict[str, Any], arguments: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Validate and coerce tool arguments.

        Undeclared arguments are dropped rather than rejected. Absent
        optional arguments with a schema default receive that default.

        Args:
            tool_name: Name of the tool (for error messages).
            schema: JSON Schema for the tool's input.
            arguments: Arguments supplied by the caller.

        Returns:
            Coerced arguments ready for the handler.

        Raises:
            ParameterValidationError: If an argument is missing or has the wrong type.
        """
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ParameterValidationError("arguments", "object", json_kind(arguments))

        try:
            error = best_match(self._validator_for(tool_name, schema).iter_errors(arguments))
        except SchemaError as e:
            raise ParameterValidationError(
                "arguments", "valid schema", "invalid schema", f"Invalid schema for tool {tool_name}"
            ) from e
        if error is not None:
            raise _to_parameter_error(error)

        properties: dict[str, Any] = schema.get("properties", {})
        result: dict[str, Any] = {}
        for name, prop_schema in properties.items():
            if name in arguments:
                result[name] = self._coerce_value(name, arguments[name], prop_schema)
            elif "default" in prop_schema:
                result[name] = self._coerce_value(name, prop_schema["default"], prop_schema)
        return result
