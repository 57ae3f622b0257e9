"""Message definitions exchanged with the grid coordinator.

Plain dataclasses keep the implementation lightweight.  Parameter
lists travel as ``.npz`` archives encoded with base64 so they fit in a
JSON body; pickle is never used for data coming off the network.
"""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

ACCEPTED = "accepted"
REJECTED = "rejected"


def serialize_arrays(arrays: Sequence[np.ndarray]) -> bytes:
    """Pack a list of arrays into an ``.npz`` byte string, preserving order."""
    buffer = io.BytesIO()
    np.savez(buffer, *[np.asarray(array) for array in arrays])
    return buffer.getvalue()


def deserialize_arrays(data: bytes) -> List[np.ndarray]:
    """Inverse of :func:`serialize_arrays`."""
    with np.load(io.BytesIO(data), allow_pickle=False) as archive:
        return [archive[f"arr_{i}"] for i in range(len(archive.files))]


def encode_arrays(arrays: Sequence[np.ndarray]) -> str:
    return base64.b64encode(serialize_arrays(arrays)).decode("ascii")


def decode_arrays(text: str) -> List[np.ndarray]:
    return deserialize_arrays(base64.b64decode(text))


@dataclass
class CycleResponse:
    """Answer of the coordinator to a cycle request.

    Attributes
    ----------
    status : str
        ``"accepted"`` or ``"rejected"``.
    request_key : str, optional
        Key identifying the accepted cycle; required when reporting.
    params : list of numpy.ndarray
        Model parameters to start training from (accepted only).
    client_config : dict
        Training settings chosen by the coordinator (accepted only).
    timeout : float, optional
        Seconds to wait before asking again (rejected only).  ``None``
        means the coordinator has nothing more to train.
    """

    status: str
    request_key: Optional[str] = None
    params: List[np.ndarray] = field(default_factory=list)
    client_config: Dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED


@dataclass
class ModelDiff:
    """A federated model update: ``original - updated`` per parameter.

    Attributes
    ----------
    arrays : list of numpy.ndarray
        One difference array per model parameter, in model order.
    model_name : str
        Name of the model the diff applies to.
    model_version : str
        Version of the model the diff applies to.
    num_updates : int
        Number of local gradient steps that produced the diff.
    """

    arrays: List[np.ndarray]
    model_name: str
    model_version: str
    num_updates: int

    def serialize(self) -> str:
        """Return the base64 ``.npz`` payload of the difference arrays."""
        return encode_arrays(self.arrays)


__all__ = [
    "ACCEPTED",
    "REJECTED",
    "CycleResponse",
    "ModelDiff",
    "serialize_arrays",
    "deserialize_arrays",
    "encode_arrays",
    "decode_arrays",
]
