"""
Chain data providers.

The set of providers is closed: ``PROVIDERS`` maps the identifier stored
under ``STORAGE.provider`` to its class, and :func:`make_provider` is the
only way the wallet core obtains one.
"""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from nami_core.config import ProviderSettings
from nami_core.providers.base import DataProvider
from nami_core.providers.blockfrost import BlockfrostProvider
from nami_core.providers.tangocrypto import TangoCryptoProvider

log = logging.getLogger("nami.providers")

PROVIDERS: dict[str, type[DataProvider]] = {
    "blockfrost": BlockfrostProvider,
    "tangocrypto": TangoCryptoProvider,
}

__all__ = [
    "PROVIDERS",
    "DataProvider",
    "BlockfrostProvider",
    "TangoCryptoProvider",
    "make_provider",
    "fetch_price",
]


def make_provider(
    provider_id: str,
    network: dict,
    settings: ProviderSettings,
    session: Optional[aiohttp.ClientSession] = None,
) -> DataProvider:
    """Instantiate the provider *provider_id* for the stored *network* record.

    ``network["node"]`` (when set) overrides the configured endpoint.
    """
    try:
        cls = PROVIDERS[provider_id]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider_id!r}") from None
    endpoint = settings.endpoint(provider_id)
    network_id = network.get("id", "mainnet")
    base_url = network.get("node") or endpoint.node(network_id)
    headers = {}
    if project_id := endpoint.project_id(network_id):
        headers[endpoint.auth_header] = project_id
    return cls(base_url, headers=headers, timeout=endpoint.timeout_seconds, session=session)


async def fetch_price(
    currency: str = "usd",
    url: str = "https://api.coingecko.com/api/v3/simple/price",
    session: Optional[aiohttp.ClientSession] = None,
) -> Optional[float]:
    """ADA price in *currency*; ``None`` when the lookup fails."""
    own = session is None
    session = session or aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
    try:
        async with session.get(url, params={"ids": "cardano", "vs_currencies": currency}) as resp:
            if resp.status != 200:
                log.warning(f"Price lookup returned {resp.status}")
                return None
            data = await resp.json()
        return float(data["cardano"][currency])
    except (aiohttp.ClientError, KeyError, TypeError, ValueError) as e:
        log.warning(f"Price lookup failed: {e!r}")
        return None
    finally:
        if own:
            await session.close()
