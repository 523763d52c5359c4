"""
Configuration Schema System.

This module provides the field definitions of the kernel configuration and
their validation.

Key features:
- Type-safe field definitions with constraints
- Validation of values against the schema
- The [kernel] section schema
"""

import copy
from dataclasses import dataclass
from typing import Any


class SchemaError(Exception):
    """Base exception for schema-related errors."""

    pass


class ValidationError(SchemaError):
    """Raised when value validation fails."""

    pass


def _type_matches(value: Any, type_: type) -> bool:
    # bool is an int subclass; an int is acceptable where a float is expected
    if type_ is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_ is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, type_)


@dataclass
class ConfigField:
    """
    A configuration field with type and constraints.

    Attributes:
        type_: The expected type of the field value
        default: Default value for the field
        description: Human-readable description (written as a TOML comment)
        min: Minimum value (numbers) or minimum length (lists)
        max: Maximum value (numbers) or maximum length (lists)
        choices: Allowed values (optional)
    """

    type_: type
    default: Any
    description: str = ""
    min: Any = None
    max: Any = None
    choices: list[Any] | None = None

    def __post_init__(self):
        if not _type_matches(self.default, self.type_):
            raise SchemaError(
                f"Default value {self.default!r} does not match type {self.type_.__name__}"
            )
        if (self.min is not None or self.max is not None) and self.type_ not in (
            int,
            float,
            list,
        ):
            raise SchemaError(
                f"min/max constraints only supported for int, float, list. Got {self.type_.__name__}"
            )
        if self.choices is not None and self.default not in self.choices:
            raise SchemaError(
                f"Default value {self.default!r} not in choices {self.choices}"
            )

    def validate(self, value: Any) -> None:
        """
        Validate a value against this field's constraints.

        Raises:
            ValidationError: If validation fails
        """
        if not _type_matches(value, self.type_):
            raise ValidationError(
                f"Expected type {self.type_.__name__}, got {type(value).__name__}"
            )

        if self.choices is not None and value not in self.choices:
            raise ValidationError(
                f"Value {value!r} not in allowed choices {self.choices}"
            )

        measured = len(value) if self.type_ is list else value
        if self.min is not None and measured < self.min:
            raise ValidationError(f"Value {value!r} is less than minimum {self.min}")
        if self.max is not None and measured > self.max:
            raise ValidationError(f"Value {value!r} is greater than maximum {self.max}")

        if self.type_ is list:
            for item in value:
                if not isinstance(item, str) or not item:
                    raise ValidationError(
                        f"List entries must be non-empty strings, got {item!r}"
                    )


KERNEL_SCHEMA: dict[str, ConfigField] = {
    "enabled_features": ConfigField(
        list, [], "Feature ids enabled at boot"
    ),
    "debounce_seconds": ConfigField(
        float,
        0.05,
        "Window for coalescing bursts of feature-set changes",
        min=0.0,
        max=10.0,
    ),
    "slow_setup_threshold_ms": ConfigField(
        float, 500.0, "Module setups slower than this are logged", min=0.0
    ),
    "default_hook_priority": ConfigField(
        int, 10, "Priority used when a module adds an action without one"
    ),
    "log_level": ConfigField(
        str,
        "INFO",
        "Kernel log level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    ),
}


def validate_config(config: dict[str, Any], schema: dict[str, ConfigField]) -> None:
    """
    Validate a (possibly partial) configuration section against a schema.

    Missing fields fall back to defaults and are not an error.

    Raises:
        ValidationError: On unknown fields or invalid values
    """
    for key in config:
        if key not in schema:
            raise ValidationError(f"Unknown configuration field: {key}")

    for field_name, value in config.items():
        try:
            schema[field_name].validate(value)
        except ValidationError as e:
            raise ValidationError(f"Field '{field_name}': {e}") from e


def generate_default_config(schema: dict[str, ConfigField]) -> dict[str, Any]:
    """A configuration dict holding every field's default value."""
    return {
        field_name: copy.copy(field.default) for field_name, field in schema.items()
    }
