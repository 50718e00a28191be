"""
Data-provider capability interface.

A provider answers chain queries (balances, UTxOs, transaction history,
blocks, protocol parameters) and submits signed transactions. Concrete
providers normalise their upstream schema to the shapes documented on each
method, which follow Blockfrost's field names.

Failure policy:
  - money-relevant calls (balance, UTxOs, submit) raise typed errors
  - enrichment lookups (delegation, asset, metadata, blocks, tx info)
    soft-fail to ``{}``, ``[]`` or ``None``
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from nami_core.errors import InternalError, InvalidRequest, TxSendFailure, TxSendRefused

log = logging.getLogger("nami.providers")

LOVELACE = "lovelace"


def is_error(result: Any) -> bool:
    return isinstance(result, dict) and "error" in result and "status_code" in result


def raise_for_balance_error(result: dict) -> None:
    """Map an upstream error on a balance/UTxO query to a typed error.

    Returns normally for "not found"-style errors, which mean the address
    has never been seen on chain.
    """
    status = result["status_code"]
    if status == 400:
        raise InvalidRequest()
    if status == 0 or status >= 500:
        raise InternalError()


def raise_for_submit_error(result: dict) -> None:
    status = result["status_code"]
    if status == 400:
        raise TxSendFailure()
    if status == 429:
        raise TxSendRefused()
    if status == 0 or status >= 500:
        raise InternalError()
    raise InvalidRequest()


class DataProvider(ABC):
    """Base class for chain data providers.

    Owns one ``aiohttp.ClientSession``, created lazily, and is usable as
    an async context manager that closes it.
    """

    name: str = "abstract"

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 20.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    # ── HTTP plumbing ───────────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def api_request(
        self,
        path: str,
        headers: Optional[dict[str, str]] = None,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """GET (or POST when *body* is given) ``base_url + path``.

        Returns the decoded JSON on success. Upstream and transport errors
        are returned as ``{"error": ..., "status_code": ...}`` (status 0 for
        transport failures) so callers can apply their own policy.
        """
        url = f"{self.base_url}{path}"
        req_headers = {**self.headers, **(headers or {})}
        method = "POST" if body is not None else "GET"
        try:
            async with self._get_session().request(
                method, url, headers=req_headers, data=body, params=params
            ) as resp:
                text = await resp.text()
                try:
                    payload = json.loads(text) if text else None
                except json.JSONDecodeError:
                    payload = text
                if resp.status >= 400:
                    log.warning(f"{self.name} {method} {path} -> {resp.status}")
                    message = payload.get("message") if isinstance(payload, dict) else payload
                    return {"error": message or resp.reason, "status_code": resp.status}
                return payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning(f"{self.name} {method} {path} failed: {e!r}")
            return {"error": str(e) or type(e).__name__, "status_code": 0}

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> DataProvider:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ── capability interface ────────────────────────────────────

    @abstractmethod
    async def get_address_balance(self, address: str) -> list[dict]:
        """``[{"unit": str, "quantity": str}]``, lovelace first."""

    @abstractmethod
    async def get_address_utxos(self, address: str, page: int = 1, limit: int = 100) -> list[dict]:
        """``[{"tx_hash", "output_index", "address", "amount": [...]}]``."""

    @abstractmethod
    async def get_address_transactions(
        self, address: str, limit: int = 10, page: int = 1, order: str = "desc"
    ) -> list[dict]:
        """``[{"tx_hash", "tx_index", "block_height"}]``, newest first for ``desc``."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[dict]: ...

    @abstractmethod
    async def get_transaction_utxos(self, tx_hash: str) -> Optional[dict]: ...

    @abstractmethod
    async def get_transaction_metadata(self, tx_hash: str) -> Optional[list]: ...

    @abstractmethod
    async def get_block(self, block_hash_or_number: str | int) -> Optional[dict]: ...

    @abstractmethod
    async def submit_tx(self, tx_hex: str) -> str:
        """Submit a signed transaction; returns its hash."""

    @abstractmethod
    async def get_pool_delegation(self, stake_address: str) -> dict: ...

    @abstractmethod
    async def get_stake_balance(self, stake_address: str) -> str: ...

    @abstractmethod
    async def get_addresses(self, stake_address: str, limit: int = 2) -> list: ...

    @abstractmethod
    async def get_asset(self, asset_unit: str) -> dict: ...

    @abstractmethod
    async def get_latest_block(self) -> Optional[dict]: ...

    @abstractmethod
    async def get_epoch_parameters(self, epoch: int) -> Optional[dict]: ...
