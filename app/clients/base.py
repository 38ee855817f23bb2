"""Shared plumbing for upstream service clients."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.core.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class UpstreamClient:
    """Thin JSON-over-HTTP client for one upstream service."""

    service_name = "upstream"

    def __init__(self, base_url: str, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self, authorization: Optional[str]) -> Dict[str, str]:
        auth = authorization or (f"Bearer {settings.SERVICE_TOKEN}" if settings.SERVICE_TOKEN else None)
        headers = {"Accept": "application/json"}
        if auth:
            headers["Authorization"] = auth
        return headers

    def _get(
        self,
        path: str,
        authorization: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        GET a JSON document from the upstream service

        Returns:
            Decoded JSON object, or None on 404 when allow_not_found is set

        Raises:
            UpstreamUnavailableError: On network failure, non-2xx status, bad JSON
                or a body that is not a JSON object
        """
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(url, headers=self._headers(authorization), params=params)
            if allow_not_found and response.status_code == 404:
                return None
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("%s responded %s for %s", self.service_name, exc.response.status_code, path)
            raise UpstreamUnavailableError(
                self.service_name, f"{self.service_name} service responded {exc.response.status_code}"
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("%s request to %s failed: %s", self.service_name, path, exc)
            raise UpstreamUnavailableError(self.service_name)

        if not isinstance(payload, dict):
            logger.error("%s returned a %s body for %s", self.service_name, type(payload).__name__, path)
            raise UpstreamUnavailableError(
                self.service_name, f"{self.service_name} service returned an unexpected response"
            )
        return payload
