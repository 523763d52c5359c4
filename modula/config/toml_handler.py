"""
TOML File I/O Handler.

Reads configuration with tomllib and writes it with tomlkit, which keeps
comments and formatting intact; also renders a commented default file from a
schema.
"""

import tomllib
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import ParseError

from modula.config.schema import ConfigField


class TOMLError(Exception):
    """Base exception for TOML-related errors."""

    pass


def read_toml(file_path: Path) -> dict[str, Any]:
    """
    Read and parse a TOML file.

    Raises:
        TOMLError: If the file cannot be read or parsed
    """
    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise TOMLError(f"TOML file not found: {file_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to read TOML file {file_path}: {e}") from e


def write_toml(file_path: Path, data: dict[str, Any]) -> None:
    """
    Write data to a TOML file, merging into an existing document so its
    comments survive.

    Raises:
        TOMLError: If the file cannot be written
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if file_path.exists():
            doc = tomlkit.parse(file_path.read_text(encoding="utf-8"))
        else:
            doc = tomlkit.document()
        for key, value in data.items():
            existing = doc.get(key)
            if isinstance(value, dict) and isinstance(existing, MutableMapping):
                # Update inside the table so its comments stay
                for sub_key, sub_value in value.items():
                    existing[sub_key] = sub_value
            else:
                doc[key] = value
        file_path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    except ParseError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e


def generate_toml_from_schema(
    section: str,
    schema: dict[str, ConfigField],
    config_data: dict[str, Any] | None = None,
) -> str:
    """
    Render a TOML section with every field, preceded by its description and
    constraints as comments.

    Args:
        section: Section name (table header)
        schema: field name -> ConfigField
        config_data: Values overriding the defaults

    Returns:
        TOML document text
    """
    config_data = config_data or {}
    doc = tomlkit.document()
    doc.add(tomlkit.comment(f"Configuration for {section}"))
    doc.add(tomlkit.nl())

    table = tomlkit.table()
    for field_name, field in schema.items():
        if field.description:
            table.add(tomlkit.comment(field.description))

        constraints = []
        if field.min is not None:
            constraints.append(f"min: {field.min}")
        if field.max is not None:
            constraints.append(f"max: {field.max}")
        if field.choices is not None:
            constraints.append(f"choices: {field.choices}")
        if constraints:
            table.add(tomlkit.comment(f"Constraints: {', '.join(constraints)}"))

        table.add(field_name, config_data.get(field_name, field.default))
        table.add(tomlkit.nl())

    doc.add(section, table)
    return tomlkit.dumps(doc)
