"""
Configuration Schema System.

This module provides schema declaration and validation for the settings
stored in config.toml.

Key features:
- Type-safe field definitions with constraints
- Validation of values against schema
- Coercion of command-line strings into typed values
"""

from dataclasses import dataclass
from typing import Any

from binplug.errors import ConfigError


class SchemaError(ConfigError):
    """Raised when a field definition itself is invalid."""

    pass


class ValidationError(ConfigError):
    """Raised when value validation fails."""

    pass


@dataclass
class ConfigField:
    """
    Represents a configuration field with type and constraints.

    Attributes:
        type_: The expected type of the field value
        default: Default value for the field
        description: Human-readable description
        min: Minimum value (for numbers) or minimum length (for strings)
        max: Maximum value (for numbers) or maximum length (for strings)
        choices: List of allowed values (optional)
    """

    type_: type
    default: Any
    description: str = ""
    min: Any = None
    max: Any = None
    choices: list[Any] | None = None

    def __post_init__(self):
        """Validate field definition."""
        if not isinstance(self.default, self.type_):
            raise SchemaError(
                f"Default value {self.default!r} does not match type {self.type_.__name__}"
            )

        if (self.min is not None or self.max is not None) and self.type_ not in (
            int,
            float,
            str,
        ):
            raise SchemaError(
                f"min/max constraints only supported for int, float, str. Got {self.type_.__name__}"
            )

        if self.choices is not None and self.default not in self.choices:
            raise SchemaError(
                f"Default value {self.default!r} not in choices {self.choices}"
            )

    def normalize(self, value: Any) -> Any:
        """
        Widen TOML integers for float fields.

        Args:
            value: Raw value as decoded from TOML

        Returns:
            Value of the field's type where a lossless widening applies
        """
        if self.type_ is float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value

    def coerce(self, raw: str) -> Any:
        """
        Convert a command-line string into the field's type.

        Args:
            raw: String value (e.g. from `pm --config key=value`)

        Returns:
            Typed value

        Raises:
            ValidationError: If the string cannot be converted
        """
        if self.type_ is str:
            return raw
        if self.type_ is bool:
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValidationError(f"Expected a boolean, got {raw!r}")
        try:
            return self.type_(raw)
        except ValueError as e:
            raise ValidationError(
                f"Expected type {self.type_.__name__}, got {raw!r}"
            ) from e

    def validate(self, value: Any) -> None:
        """
        Validate a value against this field's constraints.

        Args:
            value: The value to validate

        Raises:
            ValidationError: If validation fails
        """
        if not isinstance(value, self.type_):
            raise ValidationError(
                f"Expected type {self.type_.__name__}, got {type(value).__name__}"
            )

        if self.choices is not None and value not in self.choices:
            raise ValidationError(
                f"Value {value!r} not in allowed choices {self.choices}"
            )

        if self.type_ in (int, float):
            if self.min is not None and value < self.min:
                raise ValidationError(f"Value {value} is less than minimum {self.min}")
            if self.max is not None and value > self.max:
                raise ValidationError(
                    f"Value {value} is greater than maximum {self.max}"
                )

        if self.type_ is str:
            if self.min is not None and len(value) < self.min:
                raise ValidationError(
                    f"String length {len(value)} is less than minimum {self.min}"
                )
            if self.max is not None and len(value) > self.max:
                raise ValidationError(
                    f"String length {len(value)} is greater than maximum {self.max}"
                )


# Settings accepted under the [plugins] table of config.toml
SETTINGS_SCHEMA: dict[str, ConfigField] = {
    "api_base": ConfigField(str, "", "Base URL of the plugin metadata API"),
    "api_key": ConfigField(str, "", "API key used to authenticate metadata requests"),
    "handshake_timeout": ConfigField(
        float, 10.0, "Seconds to wait for a plugin handshake", min=0.1, max=300.0
    ),
    "http_timeout": ConfigField(
        float, 30.0, "Seconds before an HTTP request is abandoned", min=1.0, max=600.0
    ),
    "kill_grace": ConfigField(
        float, 2.0, "Seconds between SIGTERM and SIGKILL on shutdown", min=0.0, max=60.0
    ),
}


def validate_config(config: dict[str, Any], schema: dict[str, ConfigField]) -> dict[str, Any]:
    """
    Validate a configuration dictionary against a schema.

    Missing fields take their defaults.

    Args:
        config: The configuration dictionary to validate
        schema: The schema dictionary (field_name -> ConfigField)

    Returns:
        A complete, validated configuration dictionary

    Raises:
        ValidationError: If validation fails
    """
    for key in config:
        if key not in schema:
            raise ValidationError(f"Unknown configuration field: {key}")

    validated = {}
    for field_name, field in schema.items():
        value = field.normalize(config.get(field_name, field.default))
        try:
            field.validate(value)
        except ValidationError as e:
            raise ValidationError(f"Field '{field_name}': {e}") from e
        validated[field_name] = value

    return validated
