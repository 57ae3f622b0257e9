"""Initialization for the named-entity recognition task.

This package contains modules for the token classifier and its
training/evaluation plans, for turning a CoNLL corpus plus a word
embedding table into tensors, and for per-class precision/recall/F1.
The main entry points for other parts of the system are
``model.build_model``, ``preprocess.get_datasets`` and
``metrics.compute_metrics``.
"""

__all__ = ["model", "preprocess", "metrics"]
