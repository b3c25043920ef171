"""Schema validation for tool arguments.

Arguments are checked against the tool's declared input schema before the
handler sees them, so handlers can index required keys directly.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from misp_mcp.protocol.errors import InvalidParamsError


class ArgumentValidator:
    """Validates tool arguments against JSON Schemas.

    Compiled validators are cached per tool name; the registry is frozen
    before any call arrives, so a name always maps to the same schema.
    """

    def __init__(self, max_string_length: int = 10000) -> None:
        """Initialize the validator.

        Args:
            max_string_length: Maximum allowed length of any string argument.
        """
        self._max_string_length = max_string_length
        self._validators: dict[str, Draft202012Validator] = {}

    def _validator_for(self, tool_name: str, schema: dict[str, Any]) -> Draft202012Validator:
        validator = self._validators.get(tool_name)
        if validator is None:
            validator = Draft202012Validator(schema)
            self._validators[tool_name] = validator
        return validator

    def _check_lengths(self, value: Any, path: str) -> None:
        if isinstance(value, str):
            if len(value) > self._max_string_length:
                raise InvalidParamsError(
                    f"Field '{path}' exceeds maximum length of {self._max_string_length}"
                )
        elif isinstance(value, dict):
            for key, item in value.items():
                self._check_lengths(item, f"{path}.{key}" if path else key)
        elif isinstance(value, list):
            for i, item in enumerate(value):
                self._check_lengths(item, f"{path}[{i}]")

    def validate(self, tool_name: str, schema: dict[str, Any], arguments: dict[str, Any]) -> None:
        """Validate tool input.

        Args:
            tool_name: Name of the tool (for error messages and caching).
            schema: JSON Schema for the tool's input.
            arguments: Arguments to validate.

        Raises:
            InvalidParamsError: If validation fails.
        """
        self._check_lengths(arguments, "")

        error = best_match(self._validator_for(tool_name, schema).iter_errors(arguments))
        if error is not None:
            location = ".".join(str(part) for part in error.absolute_path)
            detail = f"{location}: {error.message}" if location else error.message
            raise InvalidParamsError(
                f"Invalid arguments for tool '{tool_name}': {detail}",
                data={"tool": tool_name},
            )
