"""Configuration tree helpers.

Configuration arrives as a nested tree of mappings and sequences, usually
read from YAML.  The helpers here give uniform, fatal error reporting for
missing or malformed entries.

Functions
---------
load_yaml
    Read a YAML file into a configuration tree.
expect_map, expect_sequence
    Fetch a child node and check its type.
get_required, get_if_present
    Fetch scalar entries.
dataclass_from_dict
    Build a dataclass with strict unknown/missing key checks.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Mapping, TypeVar

import yaml

from pyeqsys.errors import ConfigurationError

T = TypeVar("T")


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a YAML configuration file.

    Args:
        path: File path.

    Returns:
        The parsed top-level mapping.

    Raises:
        ConfigurationError: If the document is not a mapping.
    """
    raw = yaml.safe_load(Path(path).read_text())
    if not isinstance(raw, Mapping):
        raise ConfigurationError(
            f"Top level of {path} must be a mapping, got {type(raw).__name__}"
        )
    return dict(raw)


def expect_map(
    node: Mapping[str, Any],
    key: str,
    optional: bool = False,
) -> Mapping[str, Any] | None:
    """Return the mapping stored under *key*.

    Args:
        node: Parent node.
        key: Child key.
        optional: If True, a missing key yields ``None`` instead of raising.

    Raises:
        ConfigurationError: If the key is missing (and not optional) or the
            child is not a mapping.
    """
    if key not in node:
        if optional:
            return None
        raise ConfigurationError(f"Missing required map {key!r}")
    child = node[key]
    if child is None:
        child = {}
    if not isinstance(child, Mapping):
        raise ConfigurationError(
            f"Expected {key!r} to be a map, got {type(child).__name__}"
        )
    return child


def expect_sequence(
    node: Mapping[str, Any],
    key: str,
    optional: bool = False,
) -> list[Any] | None:
    """Return the sequence stored under *key*.

    Raises:
        ConfigurationError: If the key is missing (and not optional) or the
            child is not a list.
    """
    if key not in node:
        if optional:
            return None
        raise ConfigurationError(f"Missing required sequence {key!r}")
    child = node[key]
    if not isinstance(child, (list, tuple)):
        raise ConfigurationError(
            f"Expected {key!r} to be a sequence, got {type(child).__name__}"
        )
    return list(child)


def get_required(node: Mapping[str, Any], key: str, type_: type | None = None) -> Any:
    """Return ``node[key]``, raising if it is absent.

    Args:
        node: Parent node.
        key: Entry name.
        type_: Optional type to coerce the value to.
    """
    if key not in node:
        raise ConfigurationError(f"Missing required key {key!r}")
    return _coerce(node[key], key, type_)


def get_if_present(
    node: Mapping[str, Any] | None,
    key: str,
    default: Any = None,
    type_: type | None = None,
) -> Any:
    """Return ``node[key]`` if present, otherwise *default*."""
    if node is None or key not in node:
        return default
    return _coerce(node[key], key, type_)


def _coerce(value: Any, key: str, type_: type | None) -> Any:
    if type_ is None or value is None:
        return value
    error = ConfigurationError(f"Entry {key!r}={value!r} cannot be read as {type_.__name__}")
    if type_ is bool:
        # Only YAML booleans.
        if not isinstance(value, bool):
            raise error
        return value
    if type_ is int:
        if isinstance(value, bool):
            raise error
        if isinstance(value, float) and not value.is_integer():
            raise error
    elif isinstance(value, type_):
        return value
    try:
        return type_(value)
    except (TypeError, ValueError) as exc:
        raise error from exc


def dataclass_from_dict(
    cls: type[T],
    data: Mapping[str, Any] | None,
    *,
    name: str = "config",
) -> T:
    """Build a dataclass instance from a mapping with strict validation.

    Keys starting with ``"_"`` are ignored so that configuration files can
    carry comments.

    Raises:
        ConfigurationError: On unknown or missing keys.
    """
    data = {} if data is None else dict(data)
    data = {k: v for k, v in data.items() if not str(k).startswith("_")}

    field_names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - field_names)
    if unknown:
        raise ConfigurationError(f"Unknown keys in {name}: {unknown}")

    required = {
        f.name
        for f in dataclasses.fields(cls)
        if f.default is dataclasses.MISSING
        and f.default_factory is dataclasses.MISSING
    }
    missing = sorted(required - set(data))
    if missing:
        raise ConfigurationError(f"Missing keys in {name}: {missing}")

    return cls(**data)


def single_key(node: Mapping[str, Any], where: str) -> tuple[str, Any]:
    """Split a one-entry mapping such as ``{"HeatConduction": {...}}``.

    Raises:
        ConfigurationError: If *node* is not a mapping with exactly one key.
    """
    if not isinstance(node, Mapping) or len(node) != 1:
        raise ConfigurationError(
            f"parser error at {where}: expected a single-key map, got {node!r}"
        )
    ((key, value),) = node.items()
    return key, ({} if value is None else value)
