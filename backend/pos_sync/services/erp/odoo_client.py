"""Odoo JSON-RPC client.

Authenticates once through ``/web/session/authenticate`` and reuses the
session cookie for every ORM call made through ``/web/dataset/call_kw``.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from pos_sync.core.exceptions import (
    ErpRpcError,
    IntegrationAuthError,
    IntegrationConnectionError,
    IntegrationTimeoutError,
)

logger = logging.getLogger(__name__)

AUTHENTICATE_PATH = "/web/session/authenticate"
CALL_KW_PATH = "/web/dataset/call_kw"
VERSION_INFO_PATH = "/web/webclient/version_info"
DESTROY_SESSION_PATH = "/web/session/destroy"


class OdooClient:
    """Minimal async Odoo ORM client over JSON-RPC."""

    def __init__(
        self,
        url: str,
        database: str,
        username: str,
        password: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.database = database
        self.username = username
        self._password = password
        self.timeout = timeout
        self._transport = transport
        self.uid: Optional[int] = None
        self.session_id: Optional[str] = None
        self._request_id = 0

    @property
    def is_authenticated(self) -> bool:
        return self.uid is not None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.session_id:
            headers["Cookie"] = f"session_id={self.session_id}"
        return headers

    async def _rpc(self, path: str, params: Dict[str, Any]) -> Any:
        """POST a JSON-RPC ``call`` and return its ``result``."""
        self._request_id += 1
        body = {"jsonrpc": "2.0", "method": "call", "params": params, "id": self._request_id}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.url}{path}", json=body, headers=self._headers())
                resp.raise_for_status()
                data = resp.json()
                cookie = resp.cookies.get("session_id")
                if cookie:
                    self.session_id = cookie
        except httpx.TimeoutException as e:
            raise IntegrationTimeoutError(f"Odoo request to {path} timed out", provider="odoo", timeout=self.timeout) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code in (401, 403):
                raise IntegrationAuthError(f"Odoo rejected the session (HTTP {status_code})", provider="odoo", status_code=status_code) from e
            raise IntegrationConnectionError(f"Odoo HTTP {status_code} on {path}", provider="odoo", status_code=status_code) from e
        except httpx.RequestError as e:
            raise IntegrationConnectionError(f"Cannot reach Odoo: {e}", provider="odoo") from e
        except ValueError as e:
            raise ErpRpcError(f"Odoo returned a non-JSON body for {path}") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = error.get("message") or "Unknown error"
            detail = (error.get("data") or {}).get("message")
            if detail:
                message = f"{message}: {detail}"
            raise ErpRpcError(f"Odoo RPC Error: {message}", model=params.get("model"), method=params.get("method"))
        return data.get("result") if isinstance(data, dict) else None

    async def authenticate(self) -> Dict[str, Any]:
        logger.info(f"Authenticating with Odoo at {self.url} as {self.username}")
        self.uid = None
        result = await self._rpc(
            AUTHENTICATE_PATH,
            {"db": self.database, "login": self.username, "password": self._password, "context": {}},
        )
        if not result or not result.get("uid"):
            raise IntegrationAuthError("Odoo authentication failed: invalid credentials", provider="odoo")
        self.uid = result["uid"]
        self.session_id = result.get("session_id") or self.session_id
        logger.info(f"Authenticated with Odoo as user {self.uid}")
        return {"uid": self.uid, "session_id": self.session_id or "", "context": result.get("user_context") or {}}

    async def execute_kw(
        self,
        model: str,
        method: str,
        args: Optional[List[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self.is_authenticated:
            await self.authenticate()
        call_kwargs = {"context": {}, **(kwargs or {})}
        try:
            return await self._rpc(
                CALL_KW_PATH,
                {"model": model, "method": method, "args": args or [], "kwargs": call_kwargs},
            )
        except ErpRpcError:
            logger.error(f"Odoo call {model}.{method} failed")
            raise

    async def search(
        self,
        model: str,
        domain: List[Any],
        offset: int = 0,
        limit: Optional[int] = None,
        order: Optional[str] = None,
    ) -> List[int]:
        kwargs: Dict[str, Any] = {"offset": offset}
        if limit is not None:
            kwargs["limit"] = limit
        if order:
            kwargs["order"] = order
        return await self.execute_kw(model, "search", [domain], kwargs)

    async def read(self, model: str, ids: List[int], fields: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        return await self.execute_kw(model, "read", [ids], {"fields": fields or []})

    async def search_read(
        self,
        model: str,
        domain: List[Any],
        fields: Optional[List[str]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"fields": fields or [], "offset": offset}
        if limit is not None:
            kwargs["limit"] = limit
        if order:
            kwargs["order"] = order
        return await self.execute_kw(model, "search_read", [domain], kwargs)

    async def create(self, model: str, values: Dict[str, Any]) -> int:
        return await self.execute_kw(model, "create", [values])

    async def write(self, model: str, ids: List[int], values: Dict[str, Any]) -> bool:
        return await self.execute_kw(model, "write", [ids, values])

    async def unlink(self, model: str, ids: List[int]) -> bool:
        return await self.execute_kw(model, "unlink", [ids])

    async def search_count(self, model: str, domain: List[Any]) -> int:
        return await self.execute_kw(model, "search_count", [domain])

    async def exists(self, model: str, domain: List[Any]) -> bool:
        return await self.search_count(model, domain) > 0

    async def get_server_info(self) -> Dict[str, Any]:
        return await self._rpc(VERSION_INFO_PATH, {})

    async def validate_connection(self) -> bool:
        """Authenticate if needed and ping the version endpoint. Never raises."""
        try:
            if not self.is_authenticated:
                await self.authenticate()
            return bool(await self.get_server_info())
        except Exception as e:
            logger.error(f"Odoo connection validation failed: {e}")
            return False

    async def logout(self) -> None:
        try:
            if self.session_id:
                await self._rpc(DESTROY_SESSION_PATH, {})
        except (IntegrationConnectionError, IntegrationTimeoutError, ErpRpcError) as e:
            logger.warning(f"Odoo logout failed: {e}")
        finally:
            self.uid = None
            self.session_id = None
