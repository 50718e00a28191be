"""
Shared pytest fixtures for the nami-core test suite.
"""

import pytest
import pytest_asyncio

from nami_core.accounts import AccountStore
from nami_core.config import NamiConfig
from nami_core.providers.base import DataProvider
from nami_core.settings import WalletSettings
from nami_core.storage import MemoryStorage

# Standard BIP-39 test phrase (all-zero entropy).
MNEMONIC = " ".join(["abandon"] * 23 + ["art"])
PASSWORD = "correct horse battery staple"


class FakeProvider(DataProvider):
    """In-memory provider with canned answers; records what was asked."""

    name = "fake"

    def __init__(self):
        super().__init__("http://fake.invalid")
        self.transactions: list[dict] = []
        self.balance: list[dict] = [{"unit": "lovelace", "quantity": "0"}]
        self.balance_failures = 0
        self.utxos: list[dict] = []
        self.calls: list[str] = []

    async def get_address_balance(self, address):
        self.calls.append("balance")
        if self.balance_failures > 0:
            self.balance_failures -= 1
            raise RuntimeError("upstream not ready")
        return [dict(a) for a in self.balance]

    async def get_address_utxos(self, address, page=1, limit=100):
        self.calls.append("utxos")
        return [dict(u) for u in self.utxos]

    async def get_address_transactions(self, address, limit=10, page=1, order="desc"):
        self.calls.append("transactions")
        return [dict(t) for t in self.transactions]

    async def get_transaction(self, tx_hash):
        return {"hash": tx_hash, "block_height": 10}

    async def get_transaction_utxos(self, tx_hash):
        return {"hash": tx_hash, "inputs": [], "outputs": []}

    async def get_transaction_metadata(self, tx_hash):
        return []

    async def get_block(self, block_hash_or_number):
        return {"height": block_hash_or_number, "time": 1}

    async def submit_tx(self, tx_hex):
        return "ab" * 32

    async def get_pool_delegation(self, stake_address):
        return {}

    async def get_stake_balance(self, stake_address):
        return "0"

    async def get_addresses(self, stake_address, limit=2):
        return []

    async def get_asset(self, asset_unit):
        return {}

    async def get_latest_block(self):
        return None

    async def get_epoch_parameters(self, epoch):
        return None


@pytest.fixture
def storage():
    """Fresh in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def config():
    """Default configuration with a fast, short balance poll."""
    cfg = NamiConfig()
    cfg.balance_refresh.interval_seconds = 0
    cfg.balance_refresh.max_attempts = 3
    return cfg


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def account_store(storage, config, provider):
    """Account store whose data provider is the in-memory fake."""
    settings = WalletSettings(storage, config)

    async def _api_provider():
        return provider

    settings.api_provider = _api_provider
    return AccountStore(storage, settings=settings, config=config)


@pytest_asyncio.fixture
async def wallet(account_store):
    """Account store holding a wallet with account 0 on mainnet."""
    await account_store.create_wallet("Main", MNEMONIC, PASSWORD)
    return account_store
