"""
Configuration File Loading

Experiment configurations are dataclasses with defaults. YAML files override
any subset of fields; unknown keys are rejected so that a typo in a config
file never silently falls back to a default.

Example YAML:
    seed: 1
    n_iterations: 20
    input_noise_std: 0.4
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, Union

import yaml

T = TypeVar("T")


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML mapping. An empty file gives an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def config_from_dict(cls: Type[T], data: Optional[Dict[str, Any]] = None) -> T:
    """
    Build a dataclass config from a (possibly partial) dict.

    Lists are turned into tuples where the default is a tuple, and nested
    dataclass fields are built recursively from nested dicts.

    Raises:
        ValueError: On keys that are not fields of the dataclass
    """
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"{cls.__name__} is not a dataclass")

    data = dict(data or {})
    fields = {f.name: f for f in dataclasses.fields(cls) if f.init}
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")

    defaults = cls()
    kwargs = {}
    for name, value in data.items():
        default = getattr(defaults, name)
        if dataclasses.is_dataclass(default) and isinstance(value, dict):
            value = config_from_dict(type(default), value)
        elif isinstance(default, tuple) and isinstance(value, list):
            value = tuple(value)
        kwargs[name] = value
    return cls(**kwargs)


def load_config(cls: Type[T], path: Optional[Union[str, Path]] = None, section: Optional[str] = None) -> T:
    """
    Load a dataclass config from a YAML file.

    Args:
        cls: Config dataclass
        path: YAML file. Defaults only if None.
        section: Top-level key holding this config, for files with several

    Returns:
        Config instance
    """
    if path is None:
        return cls()
    data = load_yaml(path)
    if section is not None:
        data = data.get(section) or {}
    return config_from_dict(cls, data)


def config_to_dict(config: Any) -> Dict[str, Any]:
    """Plain dict of a config, with tuples as lists (YAML-friendly)."""

    def convert(value):
        if isinstance(value, tuple):
            return [convert(v) for v in value]
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(dataclasses.asdict(config))


def save_config(config: Any, path: Union[str, Path]) -> None:
    """Write a config to YAML."""
    with open(path, "w") as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)
