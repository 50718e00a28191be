"""
Account key derivation (CIP-1852).

Path: m / 1852' / 1815' / account' / role / 0, where role 0 is the
external payment chain and role 2 the staking key. The three top levels
are hardened.

Also holds the mnemonic helpers used when a wallet is created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mnemonic import Mnemonic

from nami_core import primitives
from nami_core.errors import WrongPassword
from nami_core.storage import Storage
from nami_core.vault import SecretBuffer, load_root_key

logger = logging.getLogger("nami.derivation")

HARDENED = 0x80000000
PURPOSE = 1852
COIN_TYPE = 1815
ROLE_EXTERNAL = 0
ROLE_STAKING = 2


def harden(num: int) -> int:
    return HARDENED + num


def account_path(account_index: int) -> str:
    if account_index < 0:
        raise ValueError("account index must be >= 0")
    return f"m/{PURPOSE}'/{COIN_TYPE}'/{account_index}'"


# ===================================================================
#  Mnemonic support
# ===================================================================

_MNEMO = Mnemonic("english")


def generate_mnemonic(strength: int = 256) -> str:
    """Generate a BIP-39 phrase (24 words by default)."""
    return _MNEMO.generate(strength=strength)


def validate_mnemonic(mnemonic: str) -> bool:
    return _MNEMO.check(mnemonic.strip())


def root_key_from_mnemonic(mnemonic: str) -> SecretBuffer:
    if not validate_mnemonic(mnemonic):
        raise ValueError("Invalid mnemonic")
    return SecretBuffer(primitives.root_from_mnemonic(mnemonic.strip()))


# ===================================================================
#  Account keys
# ===================================================================

class AccountKeys:
    """Payment and stake signing keys for one account.

    Use as a context manager; both keys are wiped when the block exits.
    """

    def __init__(self, payment_key: primitives.SigningKey, stake_key: primitives.SigningKey):
        self.payment_key = payment_key
        self.stake_key = stake_key

    @property
    def payment_key_hash(self) -> bytes:
        return self.payment_key.hash()

    @property
    def stake_key_hash(self) -> bytes:
        return self.stake_key.hash()

    def wipe(self) -> None:
        self.payment_key.wipe()
        self.stake_key.wipe()

    def __enter__(self) -> AccountKeys:
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()


def derive_account_keys(root_key: bytes | bytearray, account_index: int) -> AccountKeys:
    """Derive the two leaf keys of *account_index* from plaintext root key bytes."""
    account = primitives.derive_path(root_key, account_path(account_index))
    payment = primitives.leaf_key(account, f"m/{ROLE_EXTERNAL}/0")
    stake = primitives.leaf_key(account, f"m/{ROLE_STAKING}/0")
    return AccountKeys(payment, stake)


async def request_account_key(storage: Storage, password: str, account_index: int) -> AccountKeys:
    """Decrypt the root key and derive the leaf keys of one account.

    The root key buffer is wiped before this returns. A blob that decrypts
    but does not derive is reported as :class:`WrongPassword` too.
    """
    account_index = int(account_index)
    account_path(account_index)
    with await load_root_key(storage, password) as root:
        try:
            return derive_account_keys(root.data, account_index)
        except ValueError:
            logger.warning("Root key decrypted but failed to derive")
            raise WrongPassword() from None


# ===================================================================
#  Addresses
# ===================================================================

@dataclass(frozen=True)
class AccountAddresses:
    payment_addr: str
    reward_addr: str


def account_addresses(payment_key_hash: str, stake_key_hash: str, network_id: str) -> AccountAddresses:
    """Bech32 base and reward addresses of an account on *network_id*."""
    payment = bytes.fromhex(payment_key_hash)
    stake = bytes.fromhex(stake_key_hash)
    return AccountAddresses(
        payment_addr=primitives.base_address(payment, stake, network_id).encode(),
        reward_addr=primitives.reward_address(stake, network_id).encode(),
    )
