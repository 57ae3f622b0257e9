"""Plain HTTP downloads for corpus and embedding files."""

from __future__ import annotations

import logging

import requests

from ..exceptions import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def fetch_text(url: str, timeout: float = DEFAULT_TIMEOUT, session: requests.Session | None = None) -> str:
    """Download ``url`` and return its body decoded as text.

    Any network failure or non-success status is raised as
    :class:`FetchError`; fetches are never retried.
    """
    logger.info("Fetching %s", url)
    getter = session.get if session is not None else requests.get
    try:
        response = getter(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise FetchError(f"Could not fetch {url}: {exc}") from exc
    if response.encoding is None:
        response.encoding = "utf-8"
    text = response.text
    logger.info("Fetched %d characters from %s", len(text), url)
    return text


__all__ = ["fetch_text", "DEFAULT_TIMEOUT"]
