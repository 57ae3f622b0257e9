"""Federated named-entity recognition worker.

The package is organized like this:

``task``       task registry; ``task.ner`` holds corpus encoding, the
               token classifier with its training/evaluation plans and
               the per-class metrics.
``transport``  HTTP fetching, the grid coordinator client and the
               wire payloads exchanged with it.
``federated``  the local training session, the grid worker loop and
               the Flower client/server.
"""

__version__ = "0.1.0"

__all__ = ["config", "exceptions", "task", "transport", "federated"]
