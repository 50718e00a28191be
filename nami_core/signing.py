"""
Signing engine: CIP-8 data signatures and transaction witnesses.

Stateless between calls. Every call decrypts the root key, derives the two
account keys, uses them, and wipes them before returning, whatever the
outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from nami_core import primitives
from nami_core.derivation import request_account_key
from nami_core.errors import (
    AddressNotPK,
    InvalidFormat,
    InvalidRequest,
    ProofGeneration,
    TxProofGeneration,
)
from nami_core.primitives import NETWORK_DISCRIMINANT, AddressKind
from nami_core.settings import WalletSettings
from nami_core.storage import Storage

logger = logging.getLogger("nami.signing")


class CredentialKind(Enum):
    PAYMENT = "hbas_"   # payment credential of a base address
    STAKE = "hrew_"     # credential of a reward address


@dataclass(frozen=True)
class AddressKeyHash:
    kind: CredentialKind
    key_hash: bytes


# ===================================================================
#  Input validation
# ===================================================================

def is_valid_address_bytes(address: bytes, network_id: str) -> bool:
    try:
        parsed = primitives.parse_address(address)
    except (ValueError, TypeError, IndexError):
        return False
    return parsed.network_id == NETWORK_DISCRIMINANT[network_id]


def extract_key_hash(address_hex: str, network_id: str) -> AddressKeyHash:
    """Resolve an address to the key hash that can sign for it.

    Raises :class:`InvalidFormat` when the bytes are not an address of the
    active network and :class:`AddressNotPK` when the address is not
    controlled by a key (script credentials, enterprise, pointer, Byron).
    """
    try:
        raw = bytes.fromhex(address_hex)
    except (ValueError, TypeError):
        raise InvalidFormat() from None
    if not is_valid_address_bytes(raw, network_id):
        raise InvalidFormat()
    parsed = primitives.parse_address(raw)
    if parsed.kind is AddressKind.BASE and parsed.payment_is_key:
        return AddressKeyHash(CredentialKind.PAYMENT, parsed.payment_hash)
    if parsed.kind is AddressKind.REWARD and parsed.stake_is_key:
        return AddressKeyHash(CredentialKind.STAKE, parsed.stake_hash)
    raise AddressNotPK()


def verify_payload(payload_hex: str) -> None:
    try:
        payload = bytes.fromhex(payload_hex)
    except (ValueError, TypeError):
        raise InvalidFormat() from None
    if len(payload) <= 0:
        raise InvalidFormat()


def verify_sig_structure(sig_structure_hex: str) -> None:
    try:
        primitives.parse_sig_structure(bytes.fromhex(sig_structure_hex))
    except Exception:
        raise InvalidFormat() from None


def verify_tx(tx_hex: str) -> primitives.ParsedTransaction:
    try:
        return primitives.parse_transaction(bytes.fromhex(tx_hex))
    except Exception:
        raise InvalidRequest() from None


# ===================================================================
#  Signing
# ===================================================================

class SigningEngine:
    """Signs on behalf of the accounts whose root key lives in *storage*.

    Addresses are checked against the wallet's active network, read from
    *settings* on every call.
    """

    def __init__(self, storage: Storage, settings: Optional[WalletSettings] = None):
        self.storage = storage
        self.settings = settings or WalletSettings(storage)

    async def sign_data(self, address: str, payload: str, password: str, account_index: int) -> str:
        """CIP-8 signature of *payload* (hex) by the key behind *address* (hex).

        Returns the hex-encoded COSE_Sign1 structure.
        """
        verify_payload(payload)
        network = await self.settings.get_network()
        target = extract_key_hash(address, network["id"])
        address_bytes = bytes.fromhex(address)
        payload_bytes = bytes.fromhex(payload)

        with await request_account_key(self.storage, password, account_index) as keys:
            key = keys.payment_key if target.kind is CredentialKind.PAYMENT else keys.stake_key
            if key.hash() != target.key_hash:
                logger.warning("Data sign request for an address not owned by account %s", account_index)
                raise ProofGeneration()
            protected = primitives.protected_headers(key.public_key, address_bytes)
            to_sign = primitives.build_sig_structure(protected, payload_bytes)
            signature = key.sign(to_sign)

        return primitives.build_cose_sign1(protected, payload_bytes, signature).hex()

    async def sign_tx(
        self,
        tx: str,
        key_hashes: list[str],
        password: str,
        account_index: int,
        partial_sign: bool = False,
    ) -> str:
        """Witness *tx* with the account keys matching *key_hashes*.

        Witnesses appear in the order the hashes were requested. A hash the
        account does not own raises :class:`TxProofGeneration` unless
        *partial_sign* is set, in which case it is skipped. Returns the
        transaction's witness set, with the new vkey witnesses in place of
        any existing ones, as hex CBOR.
        """
        parsed = verify_tx(tx)

        with await request_account_key(self.storage, password, account_index) as keys:
            owned = {
                keys.payment_key_hash.hex(): keys.payment_key,
                keys.stake_key_hash.hex(): keys.stake_key,
            }
            tx_hash = primitives.transaction_body_hash(parsed)
            vkey_witnesses = []
            for key_hash in key_hashes:
                key = owned.get(key_hash.lower())
                if key is None:
                    if partial_sign:
                        continue
                    raise TxProofGeneration()
                vkey_witnesses.append([key.public_key, key.sign(tx_hash)])

        witness_set = dict(parsed.witness_set)
        witness_set[0] = vkey_witnesses
        logger.info(f"Signed tx {tx_hash.hex()} with {len(vkey_witnesses)} witness(es)")
        return primitives.encode_witness_set(witness_set).hex()
