"""Grid worker: request a cycle, train locally, report the diff.

A cycle request is a single blocking call.  When the coordinator
rejects it with a timeout the worker sleeps for that long and asks
again; a rejection without a timeout means the model needs no more
training and ends the run normally.  Coordinator and data failures are
raised to the caller without retrying.
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..config import ensure_training_defaults, require
from ..task import load_task
from ..task.ner.metrics import UNDEFINED_NAN, MetricsHistory
from ..task.ner.model import check_parameters, to_tensors
from ..transport.grid import GridCoordinator
from ..transport.proto import CycleResponse, ModelDiff
from .training import TrainingResult, compute_diff, evaluate_split, train

logger = logging.getLogger(__name__)


class GridWorker:
    """Runs one federated training cycle against a grid coordinator.

    Parameters
    ----------
    cfg : dict
        Full configuration; uses the ``grid``, ``task``, ``training``
        and ``metrics`` sections.
    coordinator : GridCoordinator, optional
        Anything with ``request_cycle`` and ``report``; built from
        ``grid.url`` when omitted.
    sleep : callable
        Used to wait between a rejection and the next request.
    task_loader : callable
        Returns the task components; defaults to :func:`load_task`.
    """

    def __init__(
        self,
        cfg: Dict[str, Any],
        coordinator: Optional[GridCoordinator] = None,
        sleep: Callable[[float], None] = time.sleep,
        task_loader: Callable[[Dict[str, Any]], Dict[str, Any]] = load_task,
        progress: bool = False,
    ) -> None:
        self.cfg = cfg
        grid_cfg = cfg.get("grid") or {}
        self.model_name = require(cfg, "grid", "model_name")
        self.model_version = str(require(cfg, "grid", "model_version"))
        if coordinator is None:
            coordinator = GridCoordinator(require(cfg, "grid", "url"), timeout=float(grid_cfg.get("timeout", 60.0)))
        self.coordinator = coordinator
        self.sleep = sleep
        self.task_loader = task_loader
        self.progress = progress
        self.undefined = (cfg.get("metrics") or {}).get("undefined_f1", UNDEFINED_NAN)
        self.history = MetricsHistory()
        self.vocabulary = None

    def run(self) -> Optional[TrainingResult]:
        """Request cycles until one is accepted or the coordinator is done."""
        logger.info("Requesting cycle for %s %s", self.model_name, self.model_version)
        while True:
            response = self.coordinator.request_cycle(self.model_name, self.model_version)
            if response.accepted:
                logger.info("Accepted")
                return self.run_cycle(response)
            if response.timeout:
                logger.info("Rejected from cycle, retry in %s", response.timeout)
                self.sleep(response.timeout)
                continue
            logger.info("Rejected from cycle with no timeout, assuming model training is complete.")
            return None

    def run_cycle(self, response: CycleResponse) -> TrainingResult:
        """Train on the local data for an accepted cycle and report the diff."""
        cfg = copy.deepcopy(self.cfg)
        training_cfg = ensure_training_defaults(cfg, response.client_config)
        logger.info("Client config %s", response.client_config)

        logger.info("Loading data...")
        components = self.task_loader(cfg)
        model = components["model"]
        data = components["data"]
        self.vocabulary = data.vocabulary
        logger.info("Data loaded: features %s | labels %s", tuple(data.train.features.shape), tuple(data.train.labels.shape))

        original = to_tensors(response.params)
        check_parameters(model, original)

        def evaluate(params):
            evaluate_split(model, params, data.train, data.vocabulary, "train", self.history, self.undefined)
            if data.test is not None:
                evaluate_split(model, params, data.test, data.vocabulary, "test", self.history, self.undefined)

        result = train(model, original, data.train, training_cfg, self.history, evaluate, progress=self.progress)

        logger.info("Creating diff...")
        diff = ModelDiff(
            arrays=compute_diff(original, result.params),
            model_name=self.model_name,
            model_version=self.model_version,
            num_updates=result.num_updates,
        )
        logger.info("Reporting diff...")
        self.coordinator.report(response.request_key, diff)
        logger.info("Done.")
        return result


__all__ = ["GridWorker"]
