"""
HTTP client for the upstream REST API.
Carries the bearer credential; nothing it returns contains it.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

import requests

from app.cache.core import Payload
from app.cache.errors import UpstreamUnavailable

logger = logging.getLogger("upstream")

BODY_PREVIEW_CHARS = 500


@dataclass
class UpstreamResponse:
    """Status and decoded JSON body of one upstream call."""
    status_code: int
    payload: Payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class UpstreamClient:
    """
    Thin wrapper around a ``requests.Session``.

    Non-success statuses are returned, not raised, so the cache can pass
    them through verbatim. Anything that leaves no usable response raises
    ``UpstreamUnavailable``.
    """

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"
        else:
            logger.warning("No upstream API key configured; requests are unauthenticated")

    def fetch(self, identifier: str) -> UpstreamResponse:
        """
        GET ``identifier`` (a fully-qualified URL).

        Raises:
            UpstreamUnavailable: On transport errors, timeouts, or a success
                status whose body is not JSON.
        """
        try:
            response = self._session.get(identifier, timeout=self._timeout)
        except requests.Timeout as e:
            raise UpstreamUnavailable(f"Timed out fetching {unquote(identifier)}", 504) from e
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Request failed for {unquote(identifier)}: {e}", 502) from e

        try:
            payload = response.json()
        except ValueError as e:
            if response.ok:
                raise UpstreamUnavailable(
                    f"Upstream returned a non-JSON body for {unquote(identifier)}", 502
                ) from e
            payload = {
                "error": {
                    "type": "UPSTREAM_ERROR",
                    "message": response.text[:BODY_PREVIEW_CHARS],
                }
            }

        return UpstreamResponse(status_code=response.status_code, payload=payload)

    def close(self) -> None:
        self._session.close()
