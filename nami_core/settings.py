"""
Wallet settings persisted next to the accounts: active network, data
provider, display currency and the origins allowed to talk to the wallet.

Also hands out the configured :class:`DataProvider` for the active
network; providers are cached per (provider, endpoint) and closed by
:meth:`WalletSettings.close`.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from nami_core.config import NETWORK_ID, NamiConfig
from nami_core.providers import PROVIDERS, DataProvider, fetch_price, make_provider
from nami_core.storage import STORAGE, Storage

logger = logging.getLogger("nami.settings")


class WalletSettings:
    def __init__(self, storage: Storage, config: Optional[NamiConfig] = None):
        self.storage = storage
        self.config = config or NamiConfig()
        self._providers: dict[tuple[str, str], DataProvider] = {}
        self._network_listeners: list[Callable[[int], None]] = []

    # ── network ─────────────────────────────────────────────────

    async def get_network(self) -> dict:
        network = await self.storage.get(STORAGE.network)
        if network is None:
            provider = await self.get_provider()
            network_id = self.config.network.id
            node = self.config.network.node or self.config.provider.endpoint(provider).node(network_id)
            network = {"id": network_id, "node": node}
        return network

    async def set_network(self, network: dict) -> bool:
        """Switch network; ``network["node"]`` overrides the provider default."""
        network_id = network.get("id")
        if network_id not in NETWORK_ID:
            raise ValueError(f"Unknown network id: {network_id!r}")
        current = await self.storage.get(STORAGE.network)
        provider = await self.get_provider()
        node = network.get("node") or self.config.provider.endpoint(provider).node(network_id)
        await self.storage.set({STORAGE.network: {"id": network_id, "node": node}})
        if current and current.get("id") != network_id:
            logger.info(f"Network changed to {network_id}")
            for listener in list(self._network_listeners):
                listener(network_name_to_id(network_id))
        return True

    def on_network_change(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._network_listeners.append(callback)
        return lambda: self._network_listeners.remove(callback)

    # ── provider ────────────────────────────────────────────────

    async def get_provider(self) -> str:
        return await self.storage.get(STORAGE.provider) or self.config.provider.id

    async def set_provider(self, provider_id: str) -> bool:
        if provider_id not in PROVIDERS:
            raise ValueError(f"Unknown provider: {provider_id!r}")
        return await self.storage.set({STORAGE.provider: provider_id})

    async def api_provider(self) -> DataProvider:
        provider_id = await self.get_provider()
        network = await self.get_network()
        key = (provider_id, network["node"])
        if key not in self._providers:
            self._providers[key] = make_provider(provider_id, network, self.config.provider)
        return self._providers[key]

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()

    # ── currency ────────────────────────────────────────────────

    async def get_currency(self) -> str:
        return await self.storage.get(STORAGE.currency) or "usd"

    async def set_currency(self, currency: str) -> bool:
        return await self.storage.set({STORAGE.currency: currency.lower()})

    async def get_price(self) -> Optional[float]:
        return await fetch_price(await self.get_currency(), self.config.provider.price_url)

    # ── whitelisted origins ─────────────────────────────────────

    async def get_whitelisted(self) -> list[str]:
        return await self.storage.get(STORAGE.whitelisted) or []

    async def is_whitelisted(self, origin: str) -> bool:
        return origin in await self.get_whitelisted()

    async def set_whitelisted(self, origin: str) -> bool:
        async with self.storage.lock(STORAGE.whitelisted):
            whitelisted = await self.get_whitelisted()
            if origin not in whitelisted:
                whitelisted.append(origin)
            return await self.storage.set({STORAGE.whitelisted: whitelisted})

    async def remove_whitelisted(self, origin: str) -> bool:
        async with self.storage.lock(STORAGE.whitelisted):
            whitelisted = await self.get_whitelisted()
            if origin in whitelisted:
                whitelisted.remove(origin)
            return await self.storage.set({STORAGE.whitelisted: whitelisted})


def network_name_to_id(name: str) -> int:
    """Network discriminant reported to dApps: mainnet 1, testnet 0."""
    return 1 if name == "mainnet" else 0
