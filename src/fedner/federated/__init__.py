"""Federated learning entry points for the NER worker.

``training`` holds the local training session shared by both
coordinator flavours, ``worker`` drives a grid coordinator (cycle
request, train, report diff) and ``client``/``server`` wrap the same
session for the Flower framework.  Importing ``client`` or ``server``
requires Flower.
"""

__all__ = ["training", "worker", "client", "server"]
