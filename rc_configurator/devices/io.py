"""Device catalog file loading.

This module reads device catalogs from YAML/JSON files or directories of
such files. A file holds either a catalog mapping (``devices: [...]``) or a
single device mapping.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from rc_configurator.devices.schema import DeviceCatalogSchema, DeviceSchema

CATALOG_SUFFIXES = (".yaml", ".yml", ".json")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_mapping(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON file, chosen by extension."""
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_yaml(path)
    elif suffix == ".json":
        return load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )


def parse_devices(data: dict[str, Any]) -> list[DeviceSchema]:
    """Validate catalog data.

    Args:
        data: Either ``{"devices": [...]}`` or a single device mapping.

    Returns:
        Validated devices.

    Raises:
        pydantic.ValidationError: If data does not match the schema.
    """
    if "devices" in data:
        return DeviceCatalogSchema.model_validate(data).devices
    return [DeviceSchema.model_validate(data)]


def load_devices_from_file(path: Path) -> list[DeviceSchema]:
    """Load and validate the devices defined in one file."""
    return parse_devices(load_mapping(path))


def load_devices(path: Path) -> list[DeviceSchema]:
    """Load devices from a catalog file or a directory of catalog files.

    Directory entries are read in name order; nested directories are
    ignored.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"Device catalog not found: {path}")
    if path.is_file():
        return load_devices_from_file(path)

    devices: list[DeviceSchema] = []
    for entry in sorted(path.iterdir()):
        if entry.is_file() and entry.suffix.lower() in CATALOG_SUFFIXES:
            devices.extend(load_devices_from_file(entry))
    return devices


__all__ = [
    "CATALOG_SUFFIXES",
    "load_devices",
    "load_devices_from_file",
    "load_json",
    "load_mapping",
    "load_yaml",
    "parse_devices",
]
