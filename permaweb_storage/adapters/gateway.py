"""
HTTP client for a ledger gateway node.

This adapter is intentionally small. It provides:
- a single-attempt async HTTP transport (no retries: failures surface to the caller)
- typed methods for the handful of endpoints storage needs:
  * POST /arql              -> list of transaction ids matching a tag query
  * GET  /tx/{id}           -> transaction JSON
  * GET  /tx/{id}/data      -> base64url payload
  * GET  /tx_anchor         -> anchor (last_tx) for a new transaction
  * GET  /price/{bytes}     -> reward (winston, decimal string) for a payload size
  * POST /tx                -> submit a signed transaction

Notes
-----
* 404/410 on transaction endpoints map to ``NotFound``; 202 on ``/tx/{id}``
  means "pending" and is reported as ``NotFound`` as well, since the content
  cannot be served yet.
* Any other non-success status, and any transport failure, raises ``QueryError``.
* ``post_transaction`` returns the raw response; the writer decides what the
  status means.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..errors import NotFound, QueryError
from ..logging import get_logger
from ..version import user_agent
from .b64 import b64url_decode

log = get_logger(__name__)


# ----------------------------- Helpers --------------------------------------


def _build_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    hdrs = {
        "accept": "application/json, text/plain",
        "user-agent": user_agent(),
    }
    if extra:
        hdrs.update(extra)
    return hdrs


def _snippet(resp: httpx.Response) -> str:
    try:
        return resp.text[:256]
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""


# ----------------------------- Client ---------------------------------------


@dataclass
class GatewayConfig:
    url: str
    timeout_s: float = 20.0
    request_logging: bool = False
    headers: Optional[Dict[str, str]] = None


class Gateway:
    """
    Minimal async client for the ledger gateway HTTP API.
    """

    def __init__(self, config: GatewayConfig):
        self._cfg = config
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def url(self) -> str:
        return self._cfg.url

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._cfg.url,
                timeout=self._cfg.timeout_s,
                headers=_build_headers(self._cfg.headers),
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Gateway":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------- core transport ----------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            await self.start()
        assert self._client is not None  # for type-checkers

        started = time.perf_counter()
        try:
            resp = await self._client.request(method, path, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            log.warning("gateway.unreachable", method=method, path=path, error=str(exc))
            raise QueryError(
                f"{method} {path} failed: {exc.__class__.__name__}",
                details={"url": self._cfg.url, "path": path},
            ) from exc
        if self._cfg.request_logging:
            log.debug(
                "gateway.request",
                method=method,
                path=path,
                status=resp.status_code,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        return resp

    def _raise_for_tx_status(self, resp: httpx.Response, tx_id: str) -> None:
        if resp.status_code == 200:
            return
        if resp.status_code in (202, 404, 410):
            raise NotFound(f"transaction {tx_id}", details={"status": resp.status_code})
        raise QueryError(
            f"HTTP {resp.status_code} fetching transaction {tx_id}",
            details={"body": _snippet(resp)},
        )

    # ---------- typed methods ----------

    async def arql(self, query: Dict[str, Any]) -> List[str]:
        resp = await self._request("POST", "/arql", json=query)
        if resp.status_code != 200:
            raise QueryError(
                f"HTTP {resp.status_code} from /arql",
                details={"body": _snippet(resp)},
            )
        body = resp.text.strip()
        if not body:
            return []
        try:
            ids = json.loads(body)
        except ValueError as e:
            raise QueryError("invalid /arql response", details={"body": body[:256]}) from e
        if not isinstance(ids, list):
            raise QueryError("invalid /arql response", details={"body": body[:256]})
        return [str(i) for i in ids]

    async def get_transaction(self, tx_id: str) -> Dict[str, Any]:
        resp = await self._request("GET", f"/tx/{tx_id}")
        self._raise_for_tx_status(resp, tx_id)
        try:
            return resp.json()
        except ValueError as e:
            raise QueryError(f"invalid JSON for transaction {tx_id}") from e

    async def get_transaction_data(self, tx_id: str) -> bytes:
        resp = await self._request("GET", f"/tx/{tx_id}/data")
        self._raise_for_tx_status(resp, tx_id)
        try:
            return b64url_decode(resp.text)
        except ValueError as e:
            raise QueryError(f"invalid payload encoding for transaction {tx_id}") from e

    async def tx_anchor(self) -> str:
        resp = await self._request("GET", "/tx_anchor")
        if resp.status_code != 200:
            raise QueryError(f"HTTP {resp.status_code} from /tx_anchor")
        return resp.text.strip()

    async def price(self, byte_size: int, target: Optional[str] = None) -> str:
        path = f"/price/{int(byte_size)}" + (f"/{target}" if target else "")
        resp = await self._request("GET", path)
        if resp.status_code != 200:
            raise QueryError(f"HTTP {resp.status_code} from {path}")
        text = resp.text.strip()
        if not text.isdigit():
            raise QueryError(f"invalid price response from {path}", details={"body": text[:64]})
        return text

    async def post_transaction(self, tx_json: Dict[str, Any]) -> httpx.Response:
        return await self._request("POST", "/tx", json=tx_json)


# ----------------------------- Factory --------------------------------------


def from_settings(settings) -> Gateway:
    """
    Build a gateway client from :class:`permaweb_storage.config.Settings`.
    """
    return Gateway(
        GatewayConfig(
            url=settings.gateway_url,
            timeout_s=settings.timeout_s,
            request_logging=settings.request_logging,
        )
    )


__all__ = ["Gateway", "GatewayConfig", "from_settings"]
