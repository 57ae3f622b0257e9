"""Local training session shared by the grid worker and the Flower client.

The loop draws batches of row indices, gathers them into tensors, runs
the training plan and replaces the parameter list with the returned
one.  Batch tensors and the loss/accuracy tensors of a step are deleted
as soon as their values have been read, and the previous parameter
list is never used again after it has been replaced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import torch
from torch import nn
from tqdm import tqdm

from ..exceptions import ConfigError
from ..task.ner.metrics import (
    UNDEFINED_NAN,
    ClassMetrics,
    MetricsHistory,
    compute_metrics,
    format_class_metrics,
)
from ..task.ner.model import eval_plan, training_plan
from ..task.ner.preprocess import EncodedDataset, LabelVocabulary, make_batches

logger = logging.getLogger(__name__)

EvaluateFn = Callable[[Sequence[torch.Tensor]], None]


@dataclass
class TrainingResult:
    """Outcome of one local training session."""

    params: List[torch.Tensor]
    num_updates: int
    num_epochs: int
    last_loss: Optional[float] = None
    last_accuracy: Optional[float] = None


def plan_updates(num_batches: int, max_epochs: int, max_updates: Optional[int]) -> int:
    """Number of training steps: one pass per epoch, capped by ``max_updates``."""
    total = max_epochs * num_batches
    if max_updates is not None:
        total = min(int(max_updates), total)
    return total


def _make_generator(seed: Optional[int]) -> Optional[torch.Generator]:
    if seed is None:
        return None
    generator = torch.Generator()
    generator.manual_seed(int(seed))
    return generator


def train(
    model: nn.Module,
    params: Sequence[torch.Tensor],
    dataset: EncodedDataset,
    training_cfg: Dict[str, Any],
    history: Optional[MetricsHistory] = None,
    evaluate: Optional[EvaluateFn] = None,
    progress: bool = False,
) -> TrainingResult:
    """Train ``params`` on ``dataset`` and return the updated parameters.

    ``training_cfg`` must be complete (see
    :func:`fedner.config.ensure_training_defaults`).  ``evaluate`` is
    called with the current parameters every ``eval_every`` batches.
    """
    batch_size = int(training_cfg["batch_size"])
    lr = float(training_cfg["lr"])
    max_epochs = int(training_cfg["max_epochs"])
    eval_every = int(training_cfg.get("eval_every") or 0)
    shuffle = bool(training_cfg.get("shuffle", True))
    drop_last = bool(training_cfg.get("drop_last", False))
    generator = _make_generator(training_cfg.get("seed"))
    class_weights = training_cfg.get("class_weights")
    if class_weights and len(class_weights) != dataset.num_classes:
        raise ConfigError(
            f"training.class_weights has {len(class_weights)} values, expected one per class ({dataset.num_classes})"
        )
    weights = torch.as_tensor(class_weights, dtype=torch.float32) if class_weights else None

    batches = make_batches(len(dataset), batch_size, shuffle=shuffle, drop_last=drop_last, generator=generator)
    num_batches = len(batches)
    num_updates = plan_updates(num_batches, max_epochs, training_cfg.get("max_updates"))
    logger.info(
        "Training on %d rows: %d batches of %d, %d updates, lr %g",
        len(dataset), num_batches, batch_size, num_updates, lr,
    )

    model_params = list(params)
    last_loss: Optional[float] = None
    last_accuracy: Optional[float] = None
    batch = 0
    epoch = 0
    for _ in tqdm(range(num_updates), desc="train", disable=not progress):
        indices = batches[batch]
        features, labels = dataset.gather(indices)

        loss, accuracy, model_params = training_plan(
            model, features, labels, len(indices), lr, model_params, class_weights=weights
        )

        last_loss = float(loss.item())
        last_accuracy = float(accuracy.item())
        del loss, accuracy, features, labels
        if history is not None:
            history.record_step(last_loss, last_accuracy)
        logger.info("E %d | B %d / %d | L %.2f | A %.2f", epoch, batch, num_batches, last_loss, last_accuracy)

        batch += 1
        if evaluate is not None and eval_every > 0 and batch % eval_every == 0:
            logger.info("Running evaluation.")
            evaluate(model_params)

        if batch == num_batches:
            batch = 0
            epoch += 1
            batches = make_batches(len(dataset), batch_size, shuffle=shuffle, drop_last=drop_last, generator=generator)

    logger.info("Training done.")
    return TrainingResult(
        params=model_params,
        num_updates=num_updates,
        num_epochs=epoch,
        last_loss=last_loss,
        last_accuracy=last_accuracy,
    )


def evaluate_split(
    model: nn.Module,
    params: Sequence[torch.Tensor],
    dataset: EncodedDataset,
    vocabulary: LabelVocabulary,
    split: str = "train",
    history: Optional[MetricsHistory] = None,
    undefined: str = UNDEFINED_NAN,
) -> Dict[int, ClassMetrics]:
    """Run the evaluation plan on ``dataset`` and return per-class metrics."""
    predicted, truth = eval_plan(model, dataset.features, dataset.labels, params)
    metrics = compute_metrics(predicted, truth, len(vocabulary), undefined=undefined)
    del predicted, truth
    for label, class_result in metrics.items():
        logger.info("[%s] %s", split, format_class_metrics(vocabulary.label_of(label), class_result))
    if history is not None:
        history.record_evaluation(split, metrics, len(vocabulary))
    return metrics


def compute_diff(original: Sequence[torch.Tensor], updated: Sequence[torch.Tensor]) -> List[np.ndarray]:
    """Return ``original - updated`` for each parameter as float32 arrays."""
    if len(original) != len(updated):
        raise ValueError(f"Parameter count mismatch: {len(original)} != {len(updated)}")
    return [(before - after).detach().cpu().numpy().astype(np.float32) for before, after in zip(original, updated)]


__all__ = ["TrainingResult", "plan_updates", "train", "evaluate_split", "compute_diff"]
