#!/usr/bin/env python3
"""Entry point for running a federated NER worker.

This script loads a configuration file (in YAML format) and either
joins a grid coordinator (``--mode grid``: request a cycle, train,
report the diff) or connects to a Flower server (``--mode flower``).
Example usage::

    fedner-client --config configs/ner_conll.yaml --mode grid --grid-url http://localhost:5000
    fedner-client --config configs/ner_conll.yaml --mode flower --server localhost:8080

"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import deep_update, load_config
from .exceptions import FedNerError
from .task.ner.metrics import MetricsHistory

logger = logging.getLogger("fedner.client")


def write_history(path: Path, history: MetricsHistory, label_names: Optional[Dict[int, str]] = None) -> None:
    """Write the metrics history as ``series,label,step,value`` CSV rows."""
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=["series", "label", "step", "value"])
        writer.writeheader()
        writer.writerows(history.to_rows(label_names))


def apply_overrides(cfg: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Apply command line overrides to the loaded configuration."""
    grid = {"url": args.grid_url, "model_name": args.model_name, "model_version": args.model_version}
    training = {"batch_size": args.batch_size, "lr": args.lr}
    overrides = {
        "grid": {key: value for key, value in grid.items() if value},
        "training": {key: value for key, value in training.items() if value is not None},
    }
    return deep_update(cfg, {section: values for section, values in overrides.items() if values})


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run a federated NER worker.")
    parser.add_argument("--config", type=str, required=True, help="Path to a YAML configuration file.")
    parser.add_argument("--mode", choices=["grid", "flower"], default="grid", help="Coordinator flavour.")
    parser.add_argument("--server", type=str, default="localhost:8080", help="Address of the Flower server.")
    parser.add_argument("--grid-url", type=str, default=None, help="Grid coordinator URL (overrides config).")
    parser.add_argument("--model-name", type=str, default=None, help="Model name (overrides config).")
    parser.add_argument("--model-version", type=str, default=None, help="Model version (overrides config).")
    parser.add_argument("--batch-size", type=int, default=None, help="Batch size (overrides config).")
    parser.add_argument("--lr", type=float, default=None, help="Learning rate (overrides config).")
    parser.add_argument("--history-out", type=Path, default=None, help="Write the metrics history to this CSV file.")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar while training.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        cfg = apply_overrides(load_config(args.config), args)
        if args.mode == "grid":
            from .federated.worker import GridWorker

            worker = GridWorker(cfg, progress=args.progress)
            worker.run()
            history = worker.history
            vocabulary = worker.vocabulary
        else:
            from .federated.client import start_client

            client = start_client(cfg, args.server)
            history = client.history
            vocabulary = client.data.vocabulary
    except FedNerError as exc:
        logger.error("Error: %s", exc)
        return 1

    if args.history_out is not None:
        write_history(args.history_out, history, vocabulary.inverse() if vocabulary is not None else None)
        logger.info("Metrics history written to %s", args.history_out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
