"""
Cryptographic primitives used by the wallet core.

This module is the single seam between the wallet logic and the libraries
that do the actual math:

  - BIP32-Ed25519 (Icarus) HD derivation and extended-key signing (pycardano)
  - Shelley address construction and Bech32 text encoding (pycardano)
  - CBOR transaction / COSE structures (cbor2)
  - EMIP-3 password encryption (PBKDF2-HMAC-SHA512 + ChaCha20-Poly1305),
    via pycryptodome

Nothing above this module imports those libraries directly.
"""

from __future__ import annotations

import hashlib
import io
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

import cbor2
from Crypto.Cipher import ChaCha20_Poly1305
from pycardano import Address, ExtendedSigningKey, HDWallet, Network, VerificationKeyHash

# ===================================================================
#  Password-based encryption (EMIP-3)
# ===================================================================

PBE_SALT_SIZE = 32
PBE_NONCE_SIZE = 12
PBE_TAG_SIZE = 16
PBE_KEY_SIZE = 32
PBE_ITERATIONS = 19_162


def random_salt() -> bytes:
    return os.urandom(PBE_SALT_SIZE)


def random_nonce() -> bytes:
    return os.urandom(PBE_NONCE_SIZE)


def _pbe_key(password: bytes, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha512", password, salt, PBE_ITERATIONS, dklen=PBE_KEY_SIZE)


def encrypt_pbe(password: bytes, salt: bytes, nonce: bytes, plaintext: bytes) -> bytes:
    """Encrypt *plaintext*; returns ``salt || nonce || tag || ciphertext``."""
    if len(salt) != PBE_SALT_SIZE or len(nonce) != PBE_NONCE_SIZE:
        raise ValueError("salt must be 32 bytes and nonce 12 bytes")
    cipher = ChaCha20_Poly1305.new(key=_pbe_key(password, salt), nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(bytes(plaintext))
    return salt + nonce + tag + ciphertext


def decrypt_pbe(password: bytes, data: bytes) -> bytearray:
    """Authenticate and decrypt an EMIP-3 blob. Raises ValueError on any failure."""
    header = PBE_SALT_SIZE + PBE_NONCE_SIZE + PBE_TAG_SIZE
    if len(data) <= header:
        raise ValueError("ciphertext too short")
    salt = data[:PBE_SALT_SIZE]
    nonce = data[PBE_SALT_SIZE:PBE_SALT_SIZE + PBE_NONCE_SIZE]
    tag = data[PBE_SALT_SIZE + PBE_NONCE_SIZE:header]
    cipher = ChaCha20_Poly1305.new(key=_pbe_key(password, salt), nonce=nonce)
    return bytearray(cipher.decrypt_and_verify(data[header:], tag))


# ===================================================================
#  Hashing
# ===================================================================

KEY_HASH_SIZE = 28
TX_HASH_SIZE = 32


def key_hash(public_key: bytes) -> bytes:
    """Blake2b-224 credential hash of a 32-byte Ed25519 public key."""
    return hashlib.blake2b(public_key, digest_size=KEY_HASH_SIZE).digest()


def blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=TX_HASH_SIZE).digest()


# ===================================================================
#  HD keys
# ===================================================================

class SigningKey:
    """A leaf signing key: extended private key plus its public key.

    ``wipe()`` drops the private reference; the key is unusable afterwards.
    """

    def __init__(self, hd_node: HDWallet):
        self._key: ExtendedSigningKey | None = ExtendedSigningKey.from_hdwallet(hd_node)
        self.public_key: bytes = bytes(hd_node.public_key)

    def hash(self) -> bytes:
        return key_hash(self.public_key)

    def sign(self, data: bytes) -> bytes:
        if self._key is None:
            raise RuntimeError("signing key has been wiped")
        return self._key.sign(data)

    def wipe(self) -> None:
        self._key = None

    def __repr__(self) -> str:
        return f"SigningKey(pub={self.public_key.hex()[:16]}…)"


def root_from_mnemonic(mnemonic: str, passphrase: str = "") -> bytearray:
    """Icarus root key bytes (extended private key || chain code, 96 bytes)."""
    root = HDWallet.from_mnemonic(mnemonic, passphrase)
    return bytearray(root.xprivate_key + root.chain_code)


def derive_path(root_key: bytes | bytearray, path: str) -> HDWallet:
    """Derive the HD node at *path* (e.g. ``m/1852'/1815'/0'``) from root key bytes."""
    root = HDWallet.from_seed(bytes(root_key).hex())
    return root.derive_from_path(path)


def leaf_key(node: HDWallet, path: str) -> SigningKey:
    """Derive a non-hardened child path like ``m/0/0`` below *node*."""
    return SigningKey(node.derive_from_path(path))


# ===================================================================
#  Addresses
# ===================================================================

class AddressKind(Enum):
    BASE = "base"
    POINTER = "pointer"
    ENTERPRISE = "enterprise"
    REWARD = "reward"
    BYRON = "byron"


NETWORK_DISCRIMINANT = {"mainnet": 1, "testnet": 0}


@dataclass(frozen=True)
class ParsedAddress:
    """Header-level view of a binary address."""
    kind: AddressKind
    network_id: int
    payment_hash: bytes | None = None
    payment_is_key: bool = False
    stake_hash: bytes | None = None
    stake_is_key: bool = False


def _network(network_id: str) -> Network:
    return Network.MAINNET if network_id == "mainnet" else Network.TESTNET


def base_address(payment_hash: bytes, stake_hash: bytes, network_id: str) -> Address:
    return Address(
        payment_part=VerificationKeyHash(payment_hash),
        staking_part=VerificationKeyHash(stake_hash),
        network=_network(network_id),
    )


def reward_address(stake_hash: bytes, network_id: str) -> Address:
    return Address(staking_part=VerificationKeyHash(stake_hash), network=_network(network_id))


def address_bytes(text: str) -> bytes:
    """Binary form of a bech32 Shelley address."""
    return Address.from_primitive(text).to_primitive()


def _loads(data: bytes) -> Any:
    """``cbor2.loads`` that reports malformed input as ValueError."""
    try:
        return cbor2.loads(data)
    except cbor2.CBORError as e:
        raise ValueError(str(e)) from None


def _parse_byron(data: bytes) -> ParsedAddress:
    decoded = _loads(data)
    if not isinstance(decoded, list) or len(decoded) != 2:
        raise ValueError("not a byron address")
    tagged = decoded[0]
    payload = tagged.value if isinstance(tagged, cbor2.CBORTag) else tagged
    root, attributes, _ = _loads(payload)
    # protocol magic (attribute 2) is only present on test networks
    network_id = 0 if isinstance(attributes, dict) and 2 in attributes else 1
    return ParsedAddress(kind=AddressKind.BYRON, network_id=network_id, payment_hash=bytes(root))


def parse_address(data: bytes) -> ParsedAddress:
    """Classify binary address bytes by their header nibbles.

    Raises ValueError when the bytes are not a well-formed address.
    """
    if not data:
        raise ValueError("empty address")
    header = data[0]
    addr_type = header >> 4
    network_id = header & 0x0F
    body = data[1:]

    if addr_type <= 3:
        if len(body) != 2 * KEY_HASH_SIZE:
            raise ValueError("bad base address length")
        return ParsedAddress(
            kind=AddressKind.BASE,
            network_id=network_id,
            payment_hash=body[:KEY_HASH_SIZE],
            payment_is_key=addr_type in (0, 2),
            stake_hash=body[KEY_HASH_SIZE:],
            stake_is_key=addr_type in (0, 1),
        )
    if addr_type in (4, 5):
        if len(body) <= KEY_HASH_SIZE:
            raise ValueError("bad pointer address length")
        return ParsedAddress(
            kind=AddressKind.POINTER,
            network_id=network_id,
            payment_hash=body[:KEY_HASH_SIZE],
            payment_is_key=addr_type == 4,
        )
    if addr_type in (6, 7, 14, 15):
        if len(body) != KEY_HASH_SIZE:
            raise ValueError("bad address length")
        if addr_type in (6, 7):
            return ParsedAddress(
                kind=AddressKind.ENTERPRISE,
                network_id=network_id,
                payment_hash=body,
                payment_is_key=addr_type == 6,
            )
        return ParsedAddress(
            kind=AddressKind.REWARD,
            network_id=network_id,
            stake_hash=body,
            stake_is_key=addr_type == 14,
        )
    if addr_type == 8:
        return _parse_byron(data)
    raise ValueError(f"unknown address type {addr_type}")


# ===================================================================
#  Transactions and COSE
# ===================================================================

@dataclass
class ParsedTransaction:
    """A decoded transaction that keeps the body's original bytes."""
    body_bytes: bytes
    body: Any
    witness_set: dict
    items: list


class _CountingReader(io.RawIOBase):
    """Non-seekable reader over a byte string that tracks how much was consumed.

    cbor2 only reads ahead on seekable streams, so ``consumed`` is exactly
    the length of the items decoded so far.
    """

    def __init__(self, data: bytes):
        self._view = memoryview(data)
        self.consumed = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def readinto(self, buffer) -> int:
        n = min(len(buffer), len(self._view) - self.consumed)
        buffer[:n] = self._view[self.consumed:self.consumed + n]
        self.consumed += n
        return n


def parse_transaction(data: bytes) -> ParsedTransaction:
    """Decode ``[body, witness_set, is_valid?, auxiliary_data]``.

    The body is hashed over the bytes it arrived in, so it is sliced out of
    the stream rather than re-encoded.
    """
    if not data or data[0] not in (0x83, 0x84):
        raise ValueError("transaction must be a CBOR array of 3 or 4 items")
    reader = _CountingReader(data[1:])
    try:
        body = cbor2.CBORDecoder(reader).decode()
    except cbor2.CBORError as e:
        raise ValueError(str(e)) from None
    body_bytes = data[1:1 + reader.consumed]
    items = _loads(data)
    if not isinstance(body, dict) or not isinstance(items[1], dict):
        raise ValueError("malformed transaction")
    return ParsedTransaction(body_bytes=body_bytes, body=body, witness_set=items[1], items=items)


def transaction_body_hash(tx: ParsedTransaction) -> bytes:
    return blake2b_256(tx.body_bytes)


def encode_witness_set(witness_set: dict) -> bytes:
    return cbor2.dumps(dict(sorted(witness_set.items())))


COSE_ALG_EDDSA = -8
COSE_HEADER_ALG = 1
COSE_HEADER_KID = 4


def protected_headers(public_key: bytes, address: bytes) -> bytes:
    """Serialized protected header map for a CIP-8 data signature."""
    return cbor2.dumps({
        COSE_HEADER_ALG: COSE_ALG_EDDSA,
        COSE_HEADER_KID: public_key,
        "address": address,
    })


def build_sig_structure(protected: bytes, payload: bytes, external_aad: bytes = b"") -> bytes:
    """COSE ``Sig_structure`` for a single signer: the bytes that get signed."""
    return cbor2.dumps(["Signature1", protected, external_aad, payload])


def build_cose_sign1(protected: bytes, payload: bytes, signature: bytes, hashed: bool = False) -> bytes:
    # The unprotected map is not empty: it carries {"hashed": false} so the
    # output is byte-identical to what deployed Nami wallets emit.
    return cbor2.dumps([protected, {"hashed": hashed}, payload, signature])


def parse_sig_structure(data: bytes) -> list:
    decoded = _loads(data)
    if (
        not isinstance(decoded, list)
        or len(decoded) not in (4, 5)
        or decoded[0] not in ("Signature", "Signature1", "CounterSignature")
    ):
        raise ValueError("not a Sig_structure")
    return decoded


def parse_value(data: bytes) -> tuple[int, dict[bytes, dict[bytes, int]]]:
    """Decode a CBOR ``value``: coin, or ``[coin, multiasset]``."""
    decoded = _loads(data)
    if isinstance(decoded, int):
        return decoded, {}
    if isinstance(decoded, list) and len(decoded) == 2 and isinstance(decoded[0], int):
        return decoded[0], dict(decoded[1])
    raise ValueError("not a value")
