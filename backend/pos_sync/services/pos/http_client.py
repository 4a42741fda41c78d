"""Shared HTTP transport for POS vendor clients.

Wraps httpx so every vendor client gets the same timeout handling and the
same translation of transport failures into the sync error taxonomy.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from pos_sync.core.exceptions import (
    IntegrationAuthError,
    IntegrationConnectionError,
    IntegrationTimeoutError,
    SchemaError,
)

logger = logging.getLogger(__name__)

USER_AGENT = "TupaHub-Integration/1.0"


class PosHttpClient:
    """Authenticated JSON GET client for one vendor API."""

    def __init__(
        self,
        provider: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            **(headers or {}),
        }
        self._transport = transport

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` and decode the JSON body.

        The timeout applies to this call only; a run that makes several calls
        gets a fresh deadline for each.
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self._headers, transport=self._transport
            ) as client:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                return resp.json()
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider} request to {path} timed out after {self.timeout}s")
            raise IntegrationTimeoutError(
                f"{self.provider} request timed out", provider=self.provider, timeout=self.timeout
            ) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"{self.provider} {path} returned HTTP {status_code}")
            if status_code in (401, 403):
                raise IntegrationAuthError(
                    f"{self.provider} rejected credentials (HTTP {status_code})",
                    provider=self.provider,
                    status_code=status_code,
                ) from e
            raise IntegrationConnectionError(
                f"{self.provider} HTTP {status_code}: {e.response.reason_phrase}",
                provider=self.provider,
                status_code=status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"{self.provider} request to {path} failed: {e}")
            raise IntegrationConnectionError(
                f"Cannot reach {self.provider}: {e}", provider=self.provider
            ) from e
        except ValueError as e:
            raise SchemaError(f"{self.provider} returned a non-JSON body", provider=self.provider) from e
