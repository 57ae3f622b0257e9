"""Configuration loading for the worker and the server.

Configurations are YAML files.  A file may name a parent through the
``inherits`` key; the parent is loaded first and the child values are
merged on top of it with :func:`deep_update`.  Example::

    inherits: ner_conll.yaml
    task:
      entities_only: true

The resulting dictionary is used as-is by the rest of the package, so
every consumer reads its section with ``cfg.get("section") or {}``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigError

TRAINING_DEFAULTS: Dict[str, Any] = {
    "batch_size": 200,
    "lr": 0.1,
    "max_epochs": 1,
    "max_updates": None,
    "class_weights": None,
    "drop_last": False,
    "shuffle": True,
    "eval_every": 50,
    "seed": None,
}


def deep_update(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overrides`` into ``base`` and return the updated dict."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = deep_update(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML configuration file supporting simple inheritance."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            cfg = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ConfigError(f"Configuration {path} must be a mapping")
    inherits = cfg.pop("inherits", None)
    if inherits:
        base_cfg = load_config((path.parent / inherits).resolve())
        return deep_update(base_cfg, cfg)
    return cfg


def ensure_training_defaults(
    cfg: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Populate ``cfg['training']`` with defaults and return it.

    ``overrides`` holds values sent by the coordinator (the client
    config of an accepted cycle or a Flower fit config).  Keys with a
    ``None`` value do not override local settings.
    """
    training_cfg = cfg.get("training") or {}
    cfg["training"] = training_cfg
    for key, value in TRAINING_DEFAULTS.items():
        training_cfg.setdefault(key, value)
    for key, value in (overrides or {}).items():
        if value is not None:
            training_cfg[key] = value

    if int(training_cfg["batch_size"]) < 1:
        raise ConfigError("training.batch_size must be a positive integer")
    if int(training_cfg["max_epochs"]) < 1:
        raise ConfigError("training.max_epochs must be a positive integer")
    return training_cfg


def require(cfg: Dict[str, Any], section: str, key: str) -> Any:
    """Return ``cfg[section][key]`` or raise :class:`ConfigError`."""
    value = (cfg.get(section) or {}).get(key)
    if value is None:
        raise ConfigError(f"Configuration must specify {section}.{key}")
    return value


__all__ = ["TRAINING_DEFAULTS", "deep_update", "load_config", "ensure_training_defaults", "require"]
