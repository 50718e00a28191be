"""
Account store.

Accounts are persisted under ``STORAGE.accounts`` as a map from the
account index (string key) to::

    {
        "index": 0,
        "paymentKeyHash": "<hex>",
        "stakeKeyHash": "<hex>",
        "name": "Main",
        "avatar": "<seed>",
        "mainnet": NetworkState,
        "testnet": NetworkState,
    }

where ``NetworkState`` holds ``lovelace``, ``assets``, ``history`` and
``recentSendToAddresses``. Addresses are never stored; every read projects
the record onto the active network.

Indices are handed out as ``len(accounts)`` and only the highest index can
be deleted, which keeps them contiguous. Deleting from the middle is not
supported.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable, Optional

from nami_core import primitives
from nami_core.config import NETWORK_ID, NamiConfig
from nami_core.derivation import (
    AccountKeys,
    account_addresses,
    derive_account_keys,
    request_account_key,
    root_key_from_mnemonic,
)
from nami_core.errors import InvalidRequest, OnlyOneAccount, StoreNotEmpty
from nami_core.providers.base import LOVELACE
from nami_core.retry import PollPolicy, poll_until
from nami_core.settings import WalletSettings
from nami_core.storage import STORAGE, Storage
from nami_core.vault import encrypt_with_password

logger = logging.getLogger("nami.accounts")


def network_default() -> dict:
    return {
        "lovelace": "0",
        "assets": [],
        "history": {"confirmed": [], "details": {}},
        "recentSendToAddresses": [],
    }


def account_to_network_specific(account: dict, network: dict) -> dict:
    """Project a persisted account onto *network* (adds bech32 addresses)."""
    network_id = network["id"]
    addresses = account_addresses(account["paymentKeyHash"], account["stakeKeyHash"], network_id)
    state = account.get(network_id) or network_default()
    return {
        **account,
        "paymentAddr": addresses.payment_addr,
        "rewardAddr": addresses.reward_addr,
        "assets": state.get("assets", []),
        "lovelace": state.get("lovelace", "0"),
        "history": state.get("history", {"confirmed": [], "details": {}}),
        "recentSendToAddresses": state.get("recentSendToAddresses", []),
    }


def _value_map(amount: list[dict]) -> dict[str, int]:
    return {a["unit"]: int(a["quantity"]) for a in amount}


def compare_value(a: dict[str, int], b: dict[str, int]) -> Optional[int]:
    """Partial order on multi-asset values; ``None`` when incomparable."""
    units = set(a) | set(b)
    ge = all(a.get(u, 0) >= b.get(u, 0) for u in units)
    le = all(a.get(u, 0) <= b.get(u, 0) for u in units)
    if ge and le:
        return 0
    if ge:
        return 1
    if le:
        return -1
    return None


def _new_account(index: int, name: str, keys: AccountKeys) -> dict:
    account = {
        "index": index,
        "paymentKeyHash": keys.payment_key_hash.hex(),
        "stakeKeyHash": keys.stake_key_hash.hex(),
        "name": name,
        "avatar": str(random.random()),
    }
    for network_id in NETWORK_ID:
        account[network_id] = network_default()
    return account


class AccountStore:
    """Accounts of one wallet and the operations that mutate them.

    Every read-modify-write of ``STORAGE.accounts`` and
    ``STORAGE.currentAccount`` holds ``storage.lock(STORAGE.accounts)``,
    so two stores over the same storage never interleave.
    """

    def __init__(
        self,
        storage: Storage,
        settings: Optional[WalletSettings] = None,
        config: Optional[NamiConfig] = None,
    ):
        self.storage = storage
        self.config = config or (settings.config if settings else NamiConfig())
        self.settings = settings or WalletSettings(storage, self.config)
        self.poll_policy = PollPolicy(
            interval=self.config.balance_refresh.interval_seconds,
            max_attempts=self.config.balance_refresh.max_attempts,
        )
        self._account_listeners: list[Callable[[list[str]], None]] = []

    # ── wallet lifecycle ────────────────────────────────────────

    async def create_wallet(self, name: str, mnemonic: str, password: str) -> bool:
        """Encrypt the root key of *mnemonic* and create account 0.

        The key, the default settings and account 0 go out in a single
        ``set``, so a failure leaves the store as it was.
        """
        with root_key_from_mnemonic(mnemonic) as root:
            encrypted = encrypt_with_password(password, root.data)
            with derive_account_keys(root.data, 0) as keys:
                account = _new_account(0, name, keys)

        async with self.storage.lock(STORAGE.accounts):
            if await self.storage.get(STORAGE.encryptedKey):
                raise StoreNotEmpty()
            provider = self.config.provider.id
            network_id = self.config.network.id
            node = self.config.network.node or self.config.provider.endpoint(provider).node(network_id)
            await self.storage.set({
                STORAGE.encryptedKey: encrypted,
                STORAGE.provider: provider,
                STORAGE.network: {"id": network_id, "node": node},
                STORAGE.currency: "usd",
                STORAGE.accounts: {"0": account},
                STORAGE.currentAccount: 0,
            })
            logger.info("Wallet created")
        await self._notify_account_change()
        return True

    async def reset_storage(self, password: str) -> bool:
        """Wipe all wallet state after proving knowledge of *password*."""
        async with self.storage.lock(STORAGE.accounts):
            with await request_account_key(self.storage, password, 0):
                pass
            await self.storage.clear()
        logger.warning("Wallet storage reset")
        return True

    # ── accounts ────────────────────────────────────────────────

    async def create_account(self, name: str, password: str) -> int:
        async with self.storage.lock(STORAGE.accounts):
            existing = await self.storage.get(STORAGE.accounts) or {}
            index = len(existing)
            with await request_account_key(self.storage, password, index) as keys:
                account = _new_account(index, name, keys)
            await self.storage.set({
                STORAGE.accounts: {**existing, str(index): account},
                STORAGE.currentAccount: index,
            })
            logger.info(f"Account {index} created")
        await self._notify_account_change()
        return index

    async def delete_account(self) -> bool:
        async with self.storage.lock(STORAGE.accounts):
            accounts = await self.storage.get(STORAGE.accounts) or {}
            if len(accounts) <= 1:
                raise OnlyOneAccount()
            last = max(int(k) for k in accounts)
            del accounts[str(last)]
            items: dict = {STORAGE.accounts: accounts}
            switched = await self.get_current_account_index() == last
            if switched:
                items[STORAGE.currentAccount] = max(int(k) for k in accounts)
            await self.storage.set(items)
            logger.info(f"Account {last} deleted")
        if switched:
            await self._notify_account_change()
        return True

    async def get_current_account_index(self) -> int:
        index = await self.storage.get(STORAGE.currentAccount)
        return int(index) if index is not None else 0

    async def switch_account(self, account_index: int) -> bool:
        async with self.storage.lock(STORAGE.accounts):
            accounts = await self.storage.get(STORAGE.accounts) or {}
            if str(account_index) not in accounts:
                raise InvalidRequest(f"No account with index {account_index}")
            await self.storage.set({STORAGE.currentAccount: int(account_index)})
        await self._notify_account_change()
        return True

    def on_account_change(self, callback: Callable[[list[str]], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._account_listeners.append(callback)
        return lambda: self._account_listeners.remove(callback)

    async def _notify_account_change(self) -> None:
        if not self._account_listeners:
            return
        current = await self.get_current_account()
        address_hex = primitives.address_bytes(current["paymentAddr"]).hex()
        for listener in list(self._account_listeners):
            listener([address_hex])

    async def get_current_account(self) -> dict:
        index = await self.get_current_account_index()
        accounts = await self.storage.get(STORAGE.accounts) or {}
        network = await self.settings.get_network()
        return account_to_network_specific(accounts[str(index)], network)

    async def get_accounts(self) -> dict[int, dict]:
        accounts = await self.storage.get(STORAGE.accounts) or {}
        network = await self.settings.get_network()
        return {
            int(k): account_to_network_specific(v, network)
            for k, v in sorted(accounts.items(), key=lambda kv: int(kv[0]))
        }

    # ── chain queries for the current account ───────────────────

    async def get_balance(self) -> list[dict]:
        provider = await self.settings.api_provider()
        current = await self.get_current_account()
        return await provider.get_address_balance(current["paymentAddr"])

    async def get_full_balance(self) -> str:
        provider = await self.settings.api_provider()
        current = await self.get_current_account()
        return await provider.get_stake_balance(current["rewardAddr"])

    async def balance_warning(self) -> dict:
        """Flag funds held on other addresses of the same stake key."""
        provider = await self.settings.api_provider()
        current = await self.get_current_account()
        warning = {"active": False, "fullBalance": "0"}
        addresses = await provider.get_addresses(current["rewardAddr"])
        if len(addresses) > 1:
            full_balance = await self.get_full_balance()
            if str(full_balance) != str(current["lovelace"]):
                warning["active"] = True
                warning["fullBalance"] = full_balance
        return warning

    async def get_delegation(self) -> dict:
        provider = await self.settings.api_provider()
        current = await self.get_current_account()
        return await provider.get_pool_delegation(current["rewardAddr"])

    async def get_transactions(self, page: int = 1, count: int = 10) -> list[dict]:
        provider = await self.settings.api_provider()
        current = await self.get_current_account()
        return await provider.get_address_transactions(current["paymentAddr"], count, page)

    async def get_utxos(self, amount: Optional[str] = None, paginate: Optional[dict] = None) -> list[dict]:
        """UTxOs of the current account, optionally only those covering *amount* (CBOR hex value)."""
        provider = await self.settings.api_provider()
        current = await self.get_current_account()
        page = paginate["page"] + 1 if paginate and paginate.get("page") is not None else 1
        limit = paginate["limit"] if paginate and paginate.get("limit") else 100
        utxos = await provider.get_address_utxos(current["paymentAddr"], page, limit)
        if not amount:
            return utxos
        try:
            coin, multiasset = primitives.parse_value(bytes.fromhex(amount))
        except ValueError:
            raise InvalidRequest() from None
        wanted = {LOVELACE: coin}
        for policy, assets in multiasset.items():
            for asset_name, quantity in assets.items():
                wanted[bytes(policy).hex() + bytes(asset_name).hex()] = quantity
        return [u for u in utxos if compare_value(_value_map(u["amount"]), wanted) != -1]

    async def get_reward_address(self) -> str:
        current = await self.get_current_account()
        return primitives.address_bytes(current["rewardAddr"]).hex()

    async def submit_tx(self, tx_hex: str) -> str:
        provider = await self.settings.api_provider()
        return await provider.submit_tx(tx_hex)

    # ── history / balance refresh ───────────────────────────────

    async def update_tx_info(self, tx_hash: str) -> dict:
        """Cached transaction detail, fetched from the provider when incomplete."""
        current = await self.get_current_account()
        detail = current["history"]["details"].get(tx_hash)
        if isinstance(detail, dict) and len(detail) >= 4:
            return detail
        provider = await self.settings.api_provider()
        info, utxos, metadata = await asyncio.gather(
            provider.get_transaction(tx_hash),
            provider.get_transaction_utxos(tx_hash),
            provider.get_transaction_metadata(tx_hash),
        )
        block = await provider.get_block(info["block_height"]) if info else None
        return {"info": info, "block": block, "utxos": utxos, "metadata": metadata}

    async def set_tx_detail(self, tx_details: dict[str, dict]) -> bool:
        async with self.storage.lock(STORAGE.accounts):
            index = await self.get_current_account_index()
            network = await self.settings.get_network()
            accounts = await self.storage.get(STORAGE.accounts)
            details = accounts[str(index)][network["id"]]["history"]["details"]
            details.update(tx_details)
            await self.storage.set({STORAGE.accounts: accounts})
        return True

    async def set_transactions(self, txs: list[str]) -> bool:
        async with self.storage.lock(STORAGE.accounts):
            index = await self.get_current_account_index()
            network = await self.settings.get_network()
            accounts = await self.storage.get(STORAGE.accounts)
            accounts[str(index)][network["id"]]["history"]["confirmed"] = list(txs)
            return await self.storage.set({STORAGE.accounts: accounts})

    async def update_recent_send_to_address(self, address: str) -> bool:
        async with self.storage.lock(STORAGE.accounts):
            index = await self.get_current_account_index()
            network = await self.settings.get_network()
            accounts = await self.storage.get(STORAGE.accounts)
            accounts[str(index)][network["id"]]["recentSendToAddresses"] = [address]
            return await self.storage.set({STORAGE.accounts: accounts})

    async def _update_transactions(self, account: dict, network: dict) -> bool:
        transactions = await self.get_transactions()
        history = account[network["id"]]["history"]
        if not transactions or transactions[0]["tx_hash"] in history["confirmed"]:
            return False
        merged = [tx["tx_hash"] for tx in transactions] + history["confirmed"]
        history["confirmed"] = list(dict.fromkeys(merged))
        return True

    async def _update_balance(self, account: dict, network: dict) -> bool:
        amount = await self.get_balance()
        state = account[network["id"]]
        lovelace = next((a for a in amount if a["unit"] == LOVELACE), None)
        state["lovelace"] = lovelace["quantity"] if lovelace else "0"
        state["assets"] = [a for a in amount if a["unit"] != LOVELACE]
        return True

    async def update_account(self, cancel: Optional[asyncio.Event] = None) -> bool:
        """Pull new transactions and, if there are any, the balance.

        Returns False without touching the balance when the newest fetched
        transaction is already known. The balance fetch is retried on a
        fixed interval within ``poll_policy``; *cancel* aborts it.
        """
        async with self.storage.lock(STORAGE.accounts):
            index = await self.get_current_account_index()
            accounts = await self.storage.get(STORAGE.accounts)
            account = accounts[str(index)]
            network = await self.settings.get_network()
            if not await self._update_transactions(account, network):
                return False
            await poll_until(
                lambda: self._update_balance(account, network),
                self.poll_policy,
                cancel=cancel,
            )
            await self.storage.set({STORAGE.accounts: accounts})
            logger.info(f"Account {index} refreshed on {network['id']}")
        return True
