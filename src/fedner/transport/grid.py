"""HTTP client for a grid coordinator.

The coordinator hands out training cycles for a named, versioned
model.  Two endpoints are used:

``POST {url}/model-centric/cycle-request``
    body ``{"model": name, "version": version}``; answers either
    ``{"status": "accepted", "request_key": ..., "model": <npz>,
    "client_config": {...}}`` or ``{"status": "rejected", "timeout": s}``.
``POST {url}/model-centric/report``
    body ``{"request_key": ..., "diff": <npz>}``.

An ``{"error": message}`` body on either endpoint is raised as
:class:`CoordinatorError`.
"""

from __future__ import annotations

import logging
import zipfile
from typing import Any, Dict, Optional

import requests

from ..exceptions import CoordinatorError
from .proto import ACCEPTED, REJECTED, CycleResponse, ModelDiff, decode_arrays

logger = logging.getLogger(__name__)


class GridCoordinator:
    """A blocking request/response client for the grid coordinator."""

    CYCLE_REQUEST_PATH = "/model-centric/cycle-request"
    REPORT_PATH = "/model-centric/report"

    def __init__(self, url: str, timeout: float = 60.0, session: Optional[requests.Session] = None) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(self.url + path, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as exc:
            raise CoordinatorError(f"Coordinator request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise CoordinatorError(f"Coordinator answered {path} with invalid JSON") from exc
        if not isinstance(body, dict):
            raise CoordinatorError(f"Coordinator answered {path} with {type(body).__name__}, expected an object")
        if body.get("error"):
            raise CoordinatorError(str(body["error"]))
        return body

    def request_cycle(self, model_name: str, model_version: str) -> CycleResponse:
        """Ask the coordinator for a training cycle."""
        body = self._post(self.CYCLE_REQUEST_PATH, {"model": model_name, "version": model_version})
        status = body.get("status")
        if status == ACCEPTED:
            if "request_key" not in body or "model" not in body:
                raise CoordinatorError("Accepted cycle is missing request_key or model")
            try:
                params = decode_arrays(body["model"])
            except (ValueError, OSError, EOFError, KeyError, zipfile.BadZipFile) as exc:
                raise CoordinatorError(f"Accepted cycle carries an unreadable model: {exc}") from exc
            return CycleResponse(
                status=ACCEPTED,
                request_key=body["request_key"],
                params=params,
                client_config=body.get("client_config") or {},
            )
        if status == REJECTED:
            timeout = body.get("timeout")
            return CycleResponse(status=REJECTED, timeout=float(timeout) if timeout else None)
        raise CoordinatorError(f"Unknown cycle status {status!r}")

    def report(self, request_key: str, diff: ModelDiff) -> None:
        """Send the model diff of an accepted cycle."""
        logger.debug("Reporting diff for %s %s (%d updates)", diff.model_name, diff.model_version, diff.num_updates)
        self._post(self.REPORT_PATH, {"request_key": request_key, "diff": diff.serialize()})


__all__ = ["GridCoordinator"]
