"""Addon description file parsing helpers.

Description files are YAML documents (JSON, being a YAML subset, parses
as well). Published records are written as JSON.
"""

import json
from pathlib import Path
from typing import Any

import yaml


def parse_document(raw: bytes) -> dict[str, Any]:
    """Parse raw YAML bytes into a mapping.

    Args:
        raw: File content.

    Returns:
        Parsed YAML content as a dictionary (empty for an empty document).

    Raises:
        yaml.YAMLError: If the content is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    data = yaml.safe_load(raw)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def read_manifest_bytes(path: Path) -> bytes:
    """Read an addon description file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    return path.read_bytes()


def record_to_json_string(record: dict[str, Any]) -> str:
    """Render a publish record as indented JSON."""
    return json.dumps(record, indent=2, ensure_ascii=False)


__all__ = ["parse_document", "read_manifest_bytes", "record_to_json_string"]
