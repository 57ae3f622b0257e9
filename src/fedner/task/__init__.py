"""Task package initialization and utilities.

This module defines a simple ``load_task`` function that constructs
the model, the encoded datasets and the metrics module for a given
task.  Each task (currently only ``ner``) provides its own ``model``,
``preprocess`` and ``metrics`` submodules, looked up by the task name
in the configuration dictionary.

Example usage:

    from fedner.task import load_task
    cfg = {"task": {"name": "ner", "corpus_url": ..., "embeddings_url": ...}}
    components = load_task(cfg)
    model = components["model"]
    data = components["data"]
    metrics = components["metrics"]

"""

from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Any, Dict

from ..exceptions import ConfigError


def load_task_modules(cfg: Dict[str, Any]) -> Dict[str, ModuleType]:
    """Import the ``model``, ``preprocess`` and ``metrics`` modules of the configured task."""
    task_name = (cfg.get("task") or {}).get("name")
    if not task_name:
        raise ConfigError("Configuration must specify task.name")

    try:
        import_module(f"{__name__}.{task_name}")
    except ImportError as exc:
        raise ConfigError(f"Unknown or missing task module for '{task_name}': {exc}") from exc

    return {
        "model": import_module(f"{__name__}.{task_name}.model"),
        "preprocess": import_module(f"{__name__}.{task_name}.preprocess"),
        "metrics": import_module(f"{__name__}.{task_name}.metrics"),
    }


def load_task(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Load task components based on the task name in ``cfg``.

    Parameters
    ----------
    cfg : dict
        Configuration dictionary.  Must contain the key
        ``"task" : {"name": ...}``.

    Returns
    -------
    dict
        A dictionary with keys ``model``, ``data`` and ``metrics``.
        ``model`` is a torch.nn.Module instance whose architecture
        matches the loaded label vocabulary, ``data`` is the task's
        ``TaskData`` (vocabulary plus encoded ``train``/``test``
        splits) and ``metrics`` is the module providing the metric
        functions of the task.

    Raises
    ------
    ConfigError
        If the task name is missing or unknown.
    """
    modules = load_task_modules(cfg)
    data = modules["preprocess"].get_datasets(cfg)
    model = modules["model"].build_model(cfg, num_classes=len(data.vocabulary))
    return {
        "model": model,
        "data": data,
        "metrics": modules["metrics"],
    }


__all__ = ["load_task", "load_task_modules"]
