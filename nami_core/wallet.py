"""
Wallet assembly.

Builds every component of the core (storage, settings, account store,
signing engine, migration engine) from one :class:`NamiConfig` and hands
them out on a single object that owns their lifetime.

Usage:
    wallet = open_wallet(config_path="nami.toml")
    async with wallet:
        if await wallet.migrator.need_upgrade():
            await wallet.migrator.migrate(session=await wallet.unlock(password))
        account = await wallet.accounts.get_current_account()
"""

from __future__ import annotations

import logging
from typing import Optional

from nami_core.accounts import AccountStore
from nami_core.config import NamiConfig, load_config
from nami_core.logging_config import setup_logging
from nami_core.migration import Migrator
from nami_core.settings import WalletSettings
from nami_core.signing import SigningEngine
from nami_core.storage import Storage, open_storage
from nami_core.vault import Session

logger = logging.getLogger("nami.wallet")


class NamiWallet:
    """All wallet components wired to one storage backend."""

    def __init__(self, config: NamiConfig, storage: Optional[Storage] = None):
        self.config = config
        self.storage = storage or open_storage(config.storage.backend, config.storage.path)
        self.settings = WalletSettings(self.storage, config)
        self.accounts = AccountStore(self.storage, settings=self.settings, config=config)
        self.signing = SigningEngine(self.storage, settings=self.settings)
        self.migrator = Migrator(self.storage, app_version=config.app.version)

    async def unlock(self, password: str) -> Session:
        """Open a session that lasts ``session.timeout_seconds``."""
        return await Session.unlock(self.storage, password, timeout=self.config.session.timeout_seconds)

    async def close(self) -> None:
        await self.settings.close()
        await self.storage.close()

    async def __aenter__(self) -> NamiWallet:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def open_wallet(
    config: Optional[NamiConfig] = None,
    config_path: Optional[str] = None,
    configure_logging: bool = True,
) -> NamiWallet:
    """Load the configuration (unless given), set up logging, build the wallet."""
    cfg = config or load_config(config_path)
    if configure_logging:
        setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)
    logger.info(
        f"Opening wallet: storage={cfg.storage.backend} network={cfg.network.id} "
        f"provider={cfg.provider.id} app={cfg.app.version}"
    )
    return NamiWallet(cfg)
