"""Transport layer for the federated NER worker.

``http`` downloads the corpus and embedding files, ``grid`` talks to a
grid coordinator over HTTP and ``proto`` defines the payloads exchanged
with it.  The Flower transport lives in :mod:`fedner.federated.client`.
"""

__all__ = ["http", "grid", "proto"]
