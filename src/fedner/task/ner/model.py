"""Model definitions and execution plans for the NER task.

The model classifies every token independently from its word vector.
It is deliberately small (a softmax regression, optionally with one
hidden layer) so that local training stays cheap on the worker.

Training and inference are expressed as two *plans*: pure functions
that receive the current parameter list explicitly and return new
tensors instead of mutating the module.  This keeps the ownership of
parameters with the caller, which replaces its list after every step.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
from torch import nn
from torch.func import functional_call

from ...exceptions import CoordinatorError
from .preprocess import CONLL_LABELS

Params = List[torch.Tensor]


class TokenClassifier(nn.Module):
    """A linear (or one hidden layer) classifier over word vectors.

    Parameters
    ----------
    embedding_dim : int
        Size of the input word vectors.
    num_classes : int
        Number of label classes.
    hidden_size : int
        Width of the hidden ReLU layer; ``0`` gives plain softmax
        regression.
    """

    def __init__(self, embedding_dim: int = 50, num_classes: int = 5, hidden_size: int = 0) -> None:
        super().__init__()
        if hidden_size > 0:
            self.net = nn.Sequential(
                nn.Linear(embedding_dim, hidden_size),
                nn.ReLU(),
                nn.Linear(hidden_size, num_classes),
            )
        else:
            self.net = nn.Linear(embedding_dim, num_classes)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Return logits of shape (N, num_classes) for features of shape (N, embedding_dim)."""
        return self.net(x)


def build_model(cfg: Dict[str, Any], num_classes: Optional[int] = None) -> nn.Module:
    """Factory function to construct the token classifier from a config.

    ``num_classes`` wins when given; otherwise it is the length of
    ``task.labels``, then ``task.num_classes``, then the five CoNLL
    categories.
    """
    task_cfg = cfg.get("task") or {}
    if num_classes is None:
        labels = task_cfg.get("labels")
        num_classes = len(labels) if labels else int(task_cfg.get("num_classes", len(CONLL_LABELS)))
    return TokenClassifier(
        embedding_dim=int(task_cfg.get("embedding_dim", 50)),
        num_classes=num_classes,
        hidden_size=int(task_cfg.get("hidden_size", 0)),
    )


def get_parameters(model: nn.Module) -> Params:
    """Return detached copies of the model parameters in registration order."""
    return [param.detach().clone() for param in model.parameters()]


def to_tensors(arrays: Sequence[np.ndarray]) -> Params:
    return [torch.as_tensor(np.asarray(array, dtype=np.float32)) for array in arrays]


def to_arrays(params: Sequence[torch.Tensor]) -> List[np.ndarray]:
    return [param.detach().cpu().numpy() for param in params]


def check_parameters(model: nn.Module, params: Sequence[torch.Tensor]) -> None:
    """Raise :class:`CoordinatorError` when received ``params`` do not fit ``model``."""
    expected = [tuple(p.shape) for p in model.parameters()]
    received = [tuple(p.shape) for p in params]
    if expected != received:
        raise CoordinatorError(f"Parameter shapes {received} do not match the model {expected}")


def _forward(model: nn.Module, params: Sequence[torch.Tensor], features: torch.Tensor) -> torch.Tensor:
    names = [name for name, _ in model.named_parameters()]
    return functional_call(model, dict(zip(names, params)), (features,))


def training_plan(
    model: nn.Module,
    features: torch.Tensor,
    labels: torch.Tensor,
    batch_size: int,
    lr: float,
    params: Sequence[torch.Tensor],
    class_weights: Optional[torch.Tensor] = None,
) -> Tuple[torch.Tensor, torch.Tensor, Params]:
    """Run one SGD step and return ``(loss, accuracy, updated_params)``.

    The loss is the cross entropy against the one-hot ``labels``,
    optionally weighted per class, summed over the batch and divided by
    ``batch_size``.  ``params`` are left untouched.
    """
    leaves = [param.detach().requires_grad_(True) for param in params]
    logits = _forward(model, leaves, features)
    per_class = -labels * torch.log_softmax(logits, dim=1)
    if class_weights is not None:
        per_class = per_class * class_weights
    loss = per_class.sum() / batch_size
    grads = torch.autograd.grad(loss, leaves)
    with torch.no_grad():
        updated = [leaf - lr * grad for leaf, grad in zip(leaves, grads)]
        accuracy = (logits.argmax(dim=1) == labels.argmax(dim=1)).float().mean()
    return loss.detach(), accuracy, updated


def eval_plan(
    model: nn.Module,
    features: torch.Tensor,
    labels: torch.Tensor,
    params: Sequence[torch.Tensor],
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Return ``(predicted, truth)`` label index vectors for every row."""
    with torch.no_grad():
        logits = _forward(model, params, features)
        return logits.argmax(dim=1), labels.argmax(dim=1)


def evaluation_loss(
    model: nn.Module,
    features: torch.Tensor,
    labels: torch.Tensor,
    params: Sequence[torch.Tensor],
) -> float:
    """Mean cross entropy of ``params`` on a dataset; ``0.0`` when it is empty."""
    if features.shape[0] == 0:
        return 0.0
    with torch.no_grad():
        logits = _forward(model, params, features)
        return float((-labels * torch.log_softmax(logits, dim=1)).sum(dim=1).mean().item())


__all__ = [
    "TokenClassifier",
    "build_model",
    "get_parameters",
    "to_tensors",
    "to_arrays",
    "check_parameters",
    "training_plan",
    "eval_plan",
    "evaluation_loss",
]
