"""
1.0.0: accounts persist key hashes instead of per-network addresses.

Older records stored ``paymentAddr`` / ``rewardAddr`` per network. Going up,
the key hashes are re-derived from the root key (password required) and the
stored addresses dropped. Going down, the addresses are recomputed from the
hashes for both networks and the hashes removed.
"""

from __future__ import annotations

import logging
from typing import Optional

from nami_core.config import NETWORK_ID
from nami_core.derivation import account_addresses, request_account_key
from nami_core.errors import WrongPassword
from nami_core.migration import MigrationScript
from nami_core.storage import STORAGE, Storage

logger = logging.getLogger("nami.migrations")

VERSION = "1.0.0"
INFO = "Accounts store key hashes; addresses are derived per network on read."

_LEGACY_FIELDS = ("paymentAddr", "rewardAddr")


async def up(storage: Storage, password: Optional[str]) -> None:
    if password is None:
        raise WrongPassword()
    accounts = await storage.get(STORAGE.accounts) or {}
    for key, account in accounts.items():
        if not account.get("paymentKeyHash") or not account.get("stakeKeyHash"):
            with await request_account_key(storage, password, int(account.get("index", key))) as keys:
                account["paymentKeyHash"] = keys.payment_key_hash.hex()
                account["stakeKeyHash"] = keys.stake_key_hash.hex()
        for field in _LEGACY_FIELDS:
            account.pop(field, None)
        for network_id in NETWORK_ID:
            state = account.get(network_id)
            if isinstance(state, dict):
                for field in _LEGACY_FIELDS:
                    state.pop(field, None)
                state.setdefault("recentSendToAddresses", [])
    await storage.set({STORAGE.accounts: accounts})
    logger.info(f"Re-derived key hashes for {len(accounts)} account(s)")


async def down(storage: Storage, password: Optional[str]) -> None:
    accounts = await storage.get(STORAGE.accounts) or {}
    for account in accounts.values():
        payment_key_hash = account.pop("paymentKeyHash", None)
        stake_key_hash = account.pop("stakeKeyHash", None)
        if payment_key_hash is None or stake_key_hash is None:
            continue
        for network_id in NETWORK_ID:
            addresses = account_addresses(payment_key_hash, stake_key_hash, network_id)
            state = account.setdefault(network_id, {})
            state["paymentAddr"] = addresses.payment_addr
            state["rewardAddr"] = addresses.reward_addr
    await storage.set({STORAGE.accounts: accounts})


script = MigrationScript(version=VERSION, up=up, down=down, info=INFO, pwd_required=True)
