"""Evaluation metrics for the named-entity recognition task.

Per-class counts (true positives, false positives, false negatives) and
the derived precision, recall and F1 are computed independently for
every label; no macro or micro averaging is performed.

F1 is ``2*tp / (2*tp + fp + fn)``.  For a class that is neither present
in the ground truth nor predicted the denominator is zero; such a class
has no data rather than a failing score.  With ``undefined="nan"`` its
F1 is recorded as ``nan``, with ``undefined="skip"`` the class is left
out of the result.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import torch

ArrayLike = Union[torch.Tensor, np.ndarray, Sequence[int]]

UNDEFINED_NAN = "nan"
UNDEFINED_SKIP = "skip"


@dataclass(frozen=True)
class ClassMetrics:
    """Counts and scores of one label class for one evaluation pass."""

    label: int
    total: int
    predicted_total: int
    tp: int
    fp: int
    fn: int
    precision: float
    recall: float
    f1: float

    @property
    def defined(self) -> bool:
        """False when the class was neither present nor predicted."""
        return not math.isnan(self.f1)


def _as_index_tensor(values: ArrayLike) -> torch.Tensor:
    if isinstance(values, torch.Tensor):
        return values.reshape(-1)
    return torch.as_tensor(np.asarray(values)).reshape(-1)


def class_metrics(predicted: torch.Tensor, truth: torch.Tensor, label: int) -> ClassMetrics:
    """Compute :class:`ClassMetrics` of ``label`` from two index vectors."""
    in_class = truth == label
    predicted_in_class = predicted == label
    total = int(in_class.sum().item())
    predicted_total = int(predicted_in_class.sum().item())
    tp = int(torch.logical_and(in_class, predicted_in_class).sum().item())
    fp = int(torch.logical_and(predicted_in_class, ~in_class).sum().item())
    fn = total - tp

    recall = tp / total if total > 0 else 0.0
    precision = tp / (tp + fp) if tp + fp > 0 else 0.0
    denominator = 2 * tp + fp + fn
    f1 = 2 * tp / denominator if denominator > 0 else math.nan
    return ClassMetrics(
        label=label,
        total=total,
        predicted_total=predicted_total,
        tp=tp,
        fp=fp,
        fn=fn,
        precision=precision,
        recall=recall,
        f1=f1,
    )


def compute_metrics(
    predicted: ArrayLike,
    truth: ArrayLike,
    num_classes: int,
    undefined: str = UNDEFINED_NAN,
) -> Dict[int, ClassMetrics]:
    """Compute per-class metrics for label indices ``0..num_classes-1``.

    Parameters
    ----------
    predicted : array-like of int
        Predicted label index per row.
    truth : array-like of int
        True label index per row, same length and row order.
    num_classes : int
        Number of label classes.
    undefined : str
        ``"nan"`` keeps classes with an undefined F1 (value ``nan``),
        ``"skip"`` drops them from the result.

    Returns
    -------
    dict
        Mapping from label index to :class:`ClassMetrics`.
    """
    if undefined not in (UNDEFINED_NAN, UNDEFINED_SKIP):
        raise ValueError(f"undefined must be '{UNDEFINED_NAN}' or '{UNDEFINED_SKIP}', got {undefined!r}")
    predicted_t = _as_index_tensor(predicted)
    truth_t = _as_index_tensor(truth)
    if predicted_t.numel() != truth_t.numel():
        raise ValueError(
            f"predicted and truth must have the same length ({predicted_t.numel()} != {truth_t.numel()})"
        )

    results: Dict[int, ClassMetrics] = {}
    for label in range(num_classes):
        metrics = class_metrics(predicted_t, truth_t, label)
        if not metrics.defined and undefined == UNDEFINED_SKIP:
            continue
        results[label] = metrics
    return results


def format_class_metrics(name: str, metrics: ClassMetrics) -> str:
    """One log line, e.g. ``LOC: 7 / 10 | F1 0.70 R 0.70 P 0.70``."""
    return (
        f"{name}: {metrics.tp} / {metrics.total} | "
        f"F1 {metrics.f1:.2f} R {metrics.recall:.2f} P {metrics.precision:.2f}"
    )


@dataclass
class MetricsHistory:
    """Training curves and per-split, per-class F1 sequences across evaluations."""

    losses: List[float] = field(default_factory=list)
    accuracies: List[float] = field(default_factory=list)
    f1: Dict[str, Dict[int, List[float]]] = field(default_factory=lambda: defaultdict(lambda: defaultdict(list)))

    def record_step(self, loss: float, accuracy: float) -> None:
        self.losses.append(loss)
        self.accuracies.append(accuracy)

    def record_evaluation(
        self, split: str, metrics: Dict[int, ClassMetrics], num_classes: Optional[int] = None
    ) -> None:
        """Append one F1 value per class of ``split`` for this evaluation.

        With ``num_classes`` every class ``0..num_classes-1`` gets a value,
        ``nan`` for those missing from ``metrics``, so that position ``i``
        of each sequence always belongs to evaluation ``i``.
        """
        labels = range(num_classes) if num_classes is not None else sorted(metrics)
        for label in labels:
            class_result = metrics.get(label)
            self.f1[split][label].append(class_result.f1 if class_result is not None else math.nan)

    def last_f1(self, split: str, label: int) -> Optional[float]:
        values = self.f1.get(split, {}).get(label)
        return values[-1] if values else None

    def to_rows(self, label_names: Optional[Dict[int, str]] = None) -> List[Dict[str, object]]:
        """Flatten the history into ``series, label, step, value`` rows for CSV export."""
        rows: List[Dict[str, object]] = []
        for step, value in enumerate(self.losses):
            rows.append({"series": "loss", "label": "", "step": step, "value": value})
        for step, value in enumerate(self.accuracies):
            rows.append({"series": "accuracy", "label": "", "step": step, "value": value})
        for split in sorted(self.f1):
            for label in sorted(self.f1[split]):
                name = (label_names or {}).get(label, str(label))
                for step, value in enumerate(self.f1[split][label]):
                    rows.append({"series": f"f1_{split}", "label": name, "step": step, "value": value})
        return rows


__all__ = [
    "UNDEFINED_NAN",
    "UNDEFINED_SKIP",
    "ClassMetrics",
    "class_metrics",
    "compute_metrics",
    "format_class_metrics",
    "MetricsHistory",
]
