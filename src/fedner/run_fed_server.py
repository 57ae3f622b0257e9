#!/usr/bin/env python3
"""Entry point for running a federated NER server.

This script starts a Flower federated server using the FedAvg
strategy defined in ``federated/server.py``.  It requires Flower to
be installed.  Example usage::

    fedner-server --config configs/ner_conll.yaml --port 8080 --rounds 5

"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import load_config
from .exceptions import FedNerError

logger = logging.getLogger("fedner.server")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run a federated NER server.")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML configuration file.")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on.")
    parser.add_argument("--rounds", type=int, default=3, help="Number of federated training rounds.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    from .federated.server import start_server

    try:
        cfg = load_config(args.config) if args.config else {"federated": {"min_clients": 1}}
        start_server(cfg, f"0.0.0.0:{args.port}", num_rounds=args.rounds)
    except FedNerError as exc:
        logger.error("Error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
