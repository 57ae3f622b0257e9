"""A Flower federated learning client for the NER task.

This module defines a ``NerClient`` class compatible with the Flower
federated learning framework.  The server plays the coordinator role:
``fit`` receives the global parameters and a fit config, runs the same
local training session as the grid worker and returns the updated
parameters; ``evaluate`` reports the loss and per-class F1 on the
held-out split (or the training split when no test corpus is set).

If Flower is not installed, importing this module will raise an
ImportError.  Installing Flower can be done via pip::

    pip install flwr

"""

from __future__ import annotations

import copy
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

try:
    import flwr as fl  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise ImportError(
        "The federated client requires Flower (flwr) to be installed. "
        "Install it via `pip install flwr`."
    ) from exc

from ..config import ensure_training_defaults
from ..task import load_task
from ..task.ner.metrics import UNDEFINED_NAN, MetricsHistory
from ..task.ner.model import check_parameters, evaluation_loss, get_parameters, to_arrays, to_tensors
from .training import evaluate_split, train

logger = logging.getLogger(__name__)


class NerClient(fl.client.NumPyClient):
    """Federated NER client.

    Parameters
    ----------
    cfg : dict
        Configuration dictionary with ``task``, ``training`` and
        ``metrics`` sections.
    components : dict, optional
        Pre-loaded task components (``model``, ``data``); loaded with
        :func:`load_task` when omitted.
    """

    def __init__(self, cfg: Dict[str, Any], components: Optional[Dict[str, Any]] = None) -> None:
        self.cfg = cfg
        components = components or load_task(cfg)
        self.model = components["model"]
        self.data = components["data"]
        self.undefined = (cfg.get("metrics") or {}).get("undefined_f1", UNDEFINED_NAN)
        self.history = MetricsHistory()

    # Flower client API methods
    def get_parameters(self, config: Dict[str, Any]) -> List[np.ndarray]:  # type: ignore
        """Return the initial model parameters as a list of NumPy arrays."""
        return to_arrays(get_parameters(self.model))

    def fit(self, parameters: List[np.ndarray], config: Dict[str, Any]) -> Tuple[List[np.ndarray], int, Dict]:  # type: ignore
        """Train from the global parameters and return the updated ones."""
        cfg = copy.deepcopy(self.cfg)
        training_cfg = ensure_training_defaults(cfg, config)
        params = to_tensors(parameters)
        check_parameters(self.model, params)

        result = train(self.model, params, self.data.train, training_cfg, self.history, evaluate=self._evaluate)
        metrics: Dict[str, Any] = {"num_updates": result.num_updates}
        if result.last_loss is not None:
            metrics["loss"] = result.last_loss
            metrics["accuracy"] = result.last_accuracy
        return to_arrays(result.params), len(self.data.train), metrics

    def evaluate(self, parameters: List[np.ndarray], config: Dict[str, Any]) -> Tuple[float, int, Dict]:  # type: ignore
        """Evaluate the parameters and return the loss and per-class F1 scores."""
        params = to_tensors(parameters)
        check_parameters(self.model, params)
        split, dataset = ("test", self.data.test) if self.data.test is not None else ("train", self.data.train)
        loss = evaluation_loss(self.model, dataset.features, dataset.labels, params)
        metrics = evaluate_split(
            self.model, params, dataset, self.data.vocabulary, split, self.history, self.undefined
        )
        # Flower metrics must be plain scalars; undefined classes are left out.
        scores = {
            f"f1_{self.data.vocabulary.label_of(label)}": result.f1
            for label, result in metrics.items()
            if not math.isnan(result.f1)
        }
        return loss, len(dataset), scores

    def _evaluate(self, params) -> None:
        evaluate_split(self.model, params, self.data.train, self.data.vocabulary, "train", self.history, self.undefined)
        if self.data.test is not None:
            evaluate_split(self.model, params, self.data.test, self.data.vocabulary, "test", self.history, self.undefined)


def start_client(cfg: Dict[str, Any], server_address: str) -> NerClient:
    """Helper function to start the federated client with the given config."""
    client = NerClient(cfg)
    fl.client.start_client(server_address=server_address, client=client.to_client())
    return client


__all__ = ["NerClient", "start_client"]
