"""
Modula Configuration - TOML-based kernel configuration.

Example config/modula.toml:

    [kernel]
    enabled_features = ["sales_order_management", "inventory_stock_tracking"]
    debounce_seconds = 0.1

Example usage:
    from modula.config import load_config

    config = load_config(Path("config/modula.toml"))
    registry = ModuleRegistry(config=config)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from modula.config.schema import (
    KERNEL_SCHEMA,
    ValidationError,
    generate_default_config,
    validate_config,
)
from modula.config.toml_handler import (
    TOMLError,
    generate_toml_from_schema,
    read_toml,
)

SECTION = "kernel"

DEFAULT_CONFIG_FILE = Path("config/modula.toml")


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded."""

    pass


@dataclass(frozen=True)
class KernelConfig:
    """
    Kernel settings.

    Attributes:
        enabled_features: Features enabled at boot
        debounce_seconds: Coalescing window for feature-set changes
        slow_setup_threshold_ms: Setup duration that triggers a warning
        default_hook_priority: Priority for actions added without one
        log_level: Kernel log level name
    """

    enabled_features: frozenset[str] = frozenset()
    debounce_seconds: float = 0.05
    slow_setup_threshold_ms: float = 500.0
    default_hook_priority: int = 10
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KernelConfig":
        """
        Build a config from a [kernel] section.

        Raises:
            ConfigError: If the section does not match the schema
        """
        try:
            validate_config(data, KERNEL_SCHEMA)
        except ValidationError as e:
            raise ConfigError(f"Invalid [{SECTION}] configuration: {e}") from e

        values = generate_default_config(KERNEL_SCHEMA)
        values.update(data)
        return cls(
            enabled_features=frozenset(values["enabled_features"]),
            debounce_seconds=float(values["debounce_seconds"]),
            slow_setup_threshold_ms=float(values["slow_setup_threshold_ms"]),
            default_hook_priority=values["default_hook_priority"],
            log_level=values["log_level"],
        )


def load_config(config_file: Path | None = None) -> KernelConfig:
    """
    Load the kernel configuration.

    A missing file or a file without a [kernel] section yields defaults.

    Raises:
        ConfigError: If the file is unreadable or the section invalid
    """
    config_file = config_file or DEFAULT_CONFIG_FILE
    if not config_file.exists():
        return KernelConfig()

    try:
        data = read_toml(config_file)
    except TOMLError as e:
        raise ConfigError(str(e)) from e

    section = data.get(SECTION, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{SECTION}] must be a table")
    return KernelConfig.from_dict(section)


def default_config_text() -> str:
    """Commented default configuration file contents."""
    return generate_toml_from_schema(SECTION, KERNEL_SCHEMA)


__all__ = [
    "ConfigError",
    "KernelConfig",
    "load_config",
    "default_config_text",
    "DEFAULT_CONFIG_FILE",
]
