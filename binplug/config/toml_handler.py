"""
TOML File I/O Handler.

Key features:
- Parse TOML files using tomllib (Python 3.11+)
- Update single keys using tomlkit (preserves comments and formatting)
- New keys are written with their field description as a comment
"""

import tomllib
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from binplug.errors import ConfigError


class TOMLError(ConfigError):
    """Base exception for TOML-related errors."""

    pass


def read_toml(file_path: Path) -> dict[str, Any]:
    """
    Read and parse a TOML file.

    Args:
        file_path: Path to the TOML file

    Returns:
        Parsed TOML data as dictionary

    Raises:
        TOMLError: If file cannot be read or parsed
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


def _load_document(file_path: Path) -> tomlkit.TOMLDocument:
    if file_path.exists():
        return tomlkit.parse(file_path.read_text(encoding="utf-8"))

    doc = tomlkit.document()
    doc.add(tomlkit.comment("binplug configuration (edit with `pm --config KEY=VALUE`)"))
    doc.add(tomlkit.nl())
    return doc


def set_toml_value(
    file_path: Path,
    section: str,
    key: str,
    value: Any,
    description: str | None = None,
) -> None:
    """
    Set a single key in a TOML table, keeping the rest of the file intact.

    Args:
        file_path: Path to the TOML file (created if missing)
        section: Table name
        key: Key inside the table
        value: New value
        description: Comment placed above the key when it is first added

    Raises:
        TOMLError: If file cannot be parsed or written, or section is not a table
    """
    try:
        doc = _load_document(file_path)

        table = doc.get(section)
        if table is None:
            table = tomlkit.table()
            doc.add(section, table)
        elif not isinstance(table, MutableMapping):
            raise TOMLError(f"'{section}' in {file_path} is not a table")

        if key not in table and description:
            table.add(tomlkit.comment(description))
        table[key] = value

        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            tomlkit.dump(doc, f)
    except TOMLKitError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e
