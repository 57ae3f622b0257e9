"""Federated learning server for the NER task.

This module defines a minimal Flower server that aggregates model
updates from NER clients using the standard FedAvg algorithm.  The
global model is initialized from :func:`build_model` so that every
client starts from the same parameters, and the ``training`` section
of the configuration is sent to the clients as their fit config.
"""

from __future__ import annotations

from typing import Any, Callable, Dict

try:
    import flwr as fl  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise ImportError(
        "The federated server requires Flower (flwr) to be installed. "
        "Install it via `pip install flwr`."
    ) from exc

from ..task.ner.model import build_model, get_parameters, to_arrays

# Flower config values must be scalars.
_SCALAR_TYPES = (bool, int, float, str, bytes)


def make_fit_config_fn(cfg: Dict[str, Any]) -> Callable[[int], Dict[str, Any]]:
    """Return the ``on_fit_config_fn`` forwarding the scalar training settings."""
    training_cfg = cfg.get("training") or {}
    fit_config = {key: value for key, value in training_cfg.items() if isinstance(value, _SCALAR_TYPES)}

    def fit_config_fn(server_round: int) -> Dict[str, Any]:
        return dict(fit_config, server_round=server_round)

    return fit_config_fn


def build_strategy(cfg: Dict[str, Any]) -> "fl.server.strategy.FedAvg":
    """Build the FedAvg strategy described by ``cfg``."""
    federated_cfg = cfg.get("federated") or {}
    min_clients = int(federated_cfg.get("min_clients", 1))
    initial = to_arrays(get_parameters(build_model(cfg)))
    return fl.server.strategy.FedAvg(
        min_available_clients=min_clients,
        min_fit_clients=min_clients,
        min_evaluate_clients=min_clients,
        on_fit_config_fn=make_fit_config_fn(cfg),
        initial_parameters=fl.common.ndarrays_to_parameters(initial),
    )


def start_server(cfg: Dict[str, Any], server_address: str, num_rounds: int = 3) -> None:
    """Start the federated learning server.

    Parameters
    ----------
    cfg : dict
        Configuration dictionary; ``task`` describes the model and
        ``training`` the client fit config.
    server_address : str
        Address on which the server listens, e.g. ``"0.0.0.0:8080"``.
    num_rounds : int
        Number of federated training rounds to perform.  Defaults to 3.
    """
    fl.server.start_server(
        server_address=server_address,
        config=fl.server.ServerConfig(num_rounds=num_rounds),
        strategy=build_strategy(cfg),
    )


__all__ = ["make_fit_config_fn", "build_strategy", "start_server"]
