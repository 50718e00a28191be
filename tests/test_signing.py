"""
Tests for the signing engine (signing.py).

Covers:
  - extract_key_hash classification and network checks
  - sign_data: COSE_Sign1 layout, signature verification, key selection
  - sign_tx: body-hash witnesses, request order, partial signing,
    preservation of other witness kinds
  - Input validation helpers
"""

from __future__ import annotations

import cbor2
import pytest
from nacl.signing import VerifyKey

from conftest import PASSWORD
from nami_core import primitives
from nami_core.derivation import account_addresses
from nami_core.errors import (
    AddressNotPK,
    InvalidFormat,
    InvalidRequest,
    ProofGeneration,
    TxProofGeneration,
    WrongPassword,
)
from nami_core.signing import (
    CredentialKind,
    SigningEngine,
    extract_key_hash,
    verify_payload,
    verify_sig_structure,
    verify_tx,
)
from nami_core.storage import STORAGE

HASH28 = bytes(range(28))
PAYLOAD = b"hello nami".hex()


async def _accounts(storage) -> dict:
    return await storage.get(STORAGE.accounts)


async def _payment_address_hex(storage, index: int, network_id: str = "mainnet") -> str:
    account = (await _accounts(storage))[str(index)]
    addresses = account_addresses(account["paymentKeyHash"], account["stakeKeyHash"], network_id)
    return primitives.address_bytes(addresses.payment_addr).hex()


async def _reward_address_hex(storage, index: int) -> str:
    account = (await _accounts(storage))[str(index)]
    addresses = account_addresses(account["paymentKeyHash"], account["stakeKeyHash"], "mainnet")
    return primitives.address_bytes(addresses.reward_addr).hex()


def _build_tx(address: bytes, witness_set: dict | None = None) -> bytes:
    body = {0: [[b"\x11" * 32, 0]], 1: [[address, 1_000_000]], 2: 170_000}
    return cbor2.dumps([body, witness_set or {}, True, None])


def _verify_cose(cose_hex: str) -> tuple[dict, bytes]:
    protected, unprotected, payload, signature = cbor2.loads(bytes.fromhex(cose_hex))
    headers = cbor2.loads(protected)
    assert headers[1] == -8
    assert unprotected == {"hashed": False}
    sig_structure = cbor2.dumps(["Signature1", protected, b"", payload])
    VerifyKey(headers[4]).verify(sig_structure, signature)
    return headers, payload


# ═══════════════════════════════════════════════════════════════════
#  Address classification
# ═══════════════════════════════════════════════════════════════════

class TestExtractKeyHash:
    def test_base_key_address(self):
        address = bytes([0x01]) + HASH28 + HASH28[::-1]
        result = extract_key_hash(address.hex(), "mainnet")
        assert result.kind is CredentialKind.PAYMENT
        assert result.key_hash == HASH28

    def test_reward_key_address(self):
        address = bytes([0xE1]) + HASH28
        result = extract_key_hash(address.hex(), "mainnet")
        assert result.kind is CredentialKind.STAKE
        assert result.key_hash == HASH28

    def test_testnet_address(self):
        address = bytes([0x00]) + HASH28 + HASH28
        assert extract_key_hash(address.hex(), "testnet").kind is CredentialKind.PAYMENT

    @pytest.mark.parametrize("header,size", [
        (0x11, 56),  # script payment credential
        (0x31, 56),  # script payment and stake
        (0x61, 28),  # enterprise
        (0x71, 28),  # enterprise, script
        (0xF1, 28),  # reward, script
    ])
    def test_not_key_controlled(self, header, size):
        address = bytes([header]) + bytes(size)
        with pytest.raises(AddressNotPK):
            extract_key_hash(address.hex(), "mainnet")

    def test_wrong_network(self):
        address = bytes([0x00]) + HASH28 + HASH28
        with pytest.raises(InvalidFormat):
            extract_key_hash(address.hex(), "mainnet")

    @pytest.mark.parametrize("value", ["", "zz", "01abcd", "9f" * 29])
    def test_malformed(self, value):
        with pytest.raises(InvalidFormat):
            extract_key_hash(value, "mainnet")

    def test_error_codes(self):
        assert AddressNotPK().code == 2
        assert InvalidFormat().code == 4
        assert ProofGeneration().code == 1


# ═══════════════════════════════════════════════════════════════════
#  sign_data
# ═══════════════════════════════════════════════════════════════════

class TestSignData:
    @pytest.mark.asyncio
    async def test_payment_address(self, wallet, storage):
        address = await _payment_address_hex(storage, 0)
        cose = await SigningEngine(storage).sign_data(address, PAYLOAD, PASSWORD, 0)
        headers, payload = _verify_cose(cose)
        assert payload == bytes.fromhex(PAYLOAD)
        assert headers["address"] == bytes.fromhex(address)
        account = (await _accounts(storage))["0"]
        assert primitives.key_hash(headers[4]).hex() == account["paymentKeyHash"]

    @pytest.mark.asyncio
    async def test_reward_address_uses_stake_key(self, wallet, storage):
        address = await _reward_address_hex(storage, 0)
        cose = await SigningEngine(storage).sign_data(address, PAYLOAD, PASSWORD, 0)
        headers, _ = _verify_cose(cose)
        account = (await _accounts(storage))["0"]
        assert primitives.key_hash(headers[4]).hex() == account["stakeKeyHash"]

    @pytest.mark.asyncio
    async def test_deterministic(self, wallet, storage):
        address = await _payment_address_hex(storage, 0)
        engine = SigningEngine(storage)
        first = await engine.sign_data(address, PAYLOAD, PASSWORD, 0)
        second = await engine.sign_data(address, PAYLOAD, PASSWORD, 0)
        assert first == second

    @pytest.mark.asyncio
    async def test_other_accounts_address(self, wallet, storage):
        await wallet.create_account("Second", PASSWORD)
        address = await _payment_address_hex(storage, 1)
        with pytest.raises(ProofGeneration):
            await SigningEngine(storage).sign_data(address, PAYLOAD, PASSWORD, 0)

    @pytest.mark.asyncio
    async def test_testnet_address_refused_on_mainnet(self, wallet, storage):
        address = await _payment_address_hex(storage, 0, "testnet")
        with pytest.raises(InvalidFormat):
            await SigningEngine(storage).sign_data(address, PAYLOAD, PASSWORD, 0)

    @pytest.mark.asyncio
    async def test_follows_active_network(self, wallet, storage):
        await wallet.settings.set_network({"id": "testnet"})
        engine = SigningEngine(storage)
        address = await _payment_address_hex(storage, 0, "testnet")
        headers, _ = _verify_cose(await engine.sign_data(address, PAYLOAD, PASSWORD, 0))
        assert headers["address"] == bytes.fromhex(address)
        with pytest.raises(InvalidFormat):
            await engine.sign_data(await _payment_address_hex(storage, 0), PAYLOAD, PASSWORD, 0)

    @pytest.mark.asyncio
    async def test_uses_injected_settings(self, wallet, storage):
        await wallet.settings.set_network({"id": "testnet"})
        address = await _payment_address_hex(storage, 0, "testnet")
        cose = await SigningEngine(storage, settings=wallet.settings).sign_data(address, PAYLOAD, PASSWORD, 0)
        _verify_cose(cose)

    @pytest.mark.asyncio
    async def test_wrong_password(self, wallet, storage):
        address = await _payment_address_hex(storage, 0)
        with pytest.raises(WrongPassword):
            await SigningEngine(storage).sign_data(address, PAYLOAD, "wrong", 0)

    @pytest.mark.asyncio
    async def test_empty_payload(self, wallet, storage):
        address = await _payment_address_hex(storage, 0)
        with pytest.raises(InvalidFormat):
            await SigningEngine(storage).sign_data(address, "", PASSWORD, 0)


# ═══════════════════════════════════════════════════════════════════
#  sign_tx
# ═══════════════════════════════════════════════════════════════════

class TestSignTx:
    @pytest.mark.asyncio
    async def test_witnesses_over_body_hash(self, wallet, storage):
        account = (await _accounts(storage))["0"]
        tx = _build_tx(bytes.fromhex(await _payment_address_hex(storage, 0)))
        body_hash = primitives.blake2b_256(cbor2.dumps(cbor2.loads(tx)[0]))

        result = await SigningEngine(storage).sign_tx(
            tx.hex(), [account["paymentKeyHash"]], PASSWORD, 0
        )
        witness_set = cbor2.loads(bytes.fromhex(result))
        assert list(witness_set) == [0]
        [[vkey, signature]] = witness_set[0]
        assert primitives.key_hash(vkey).hex() == account["paymentKeyHash"]
        VerifyKey(vkey).verify(body_hash, signature)

    @pytest.mark.asyncio
    async def test_request_order(self, wallet, storage):
        account = (await _accounts(storage))["0"]
        tx = _build_tx(bytes.fromhex(await _payment_address_hex(storage, 0)))
        result = await SigningEngine(storage).sign_tx(
            tx.hex(), [account["stakeKeyHash"], account["paymentKeyHash"]], PASSWORD, 0
        )
        vkeys = [w[0] for w in cbor2.loads(bytes.fromhex(result))[0]]
        assert [primitives.key_hash(v).hex() for v in vkeys] == [
            account["stakeKeyHash"],
            account["paymentKeyHash"],
        ]

    @pytest.mark.asyncio
    async def test_unknown_hash(self, wallet, storage):
        account = (await _accounts(storage))["0"]
        tx = _build_tx(bytes.fromhex(await _payment_address_hex(storage, 0)))
        with pytest.raises(TxProofGeneration) as exc_info:
            await SigningEngine(storage).sign_tx(
                tx.hex(), [account["paymentKeyHash"], HASH28.hex()], PASSWORD, 0
            )
        assert isinstance(exc_info.value, ProofGeneration)
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_partial_sign_skips_unknown(self, wallet, storage):
        account = (await _accounts(storage))["0"]
        tx = _build_tx(bytes.fromhex(await _payment_address_hex(storage, 0)))
        result = await SigningEngine(storage).sign_tx(
            tx.hex(), [HASH28.hex(), account["paymentKeyHash"]], PASSWORD, 0, partial_sign=True
        )
        witnesses = cbor2.loads(bytes.fromhex(result))[0]
        assert len(witnesses) == 1

    @pytest.mark.asyncio
    async def test_other_witnesses_preserved(self, wallet, storage):
        account = (await _accounts(storage))["0"]
        existing = {0: [[b"\x00" * 32, b"\x00" * 64]], 1: [[0, b"\x22" * 28]], 3: [b"\x01\x02"]}
        tx = _build_tx(bytes.fromhex(await _payment_address_hex(storage, 0)), existing)
        result = await SigningEngine(storage).sign_tx(
            tx.hex(), [account["paymentKeyHash"]], PASSWORD, 0
        )
        witness_set = cbor2.loads(bytes.fromhex(result))
        assert witness_set[1] == [[0, b"\x22" * 28]]
        assert witness_set[3] == [b"\x01\x02"]
        assert len(witness_set[0]) == 1
        assert witness_set[0][0][0] != b"\x00" * 32

    @pytest.mark.asyncio
    async def test_non_canonical_body_hashed_as_received(self, wallet, storage):
        account = (await _accounts(storage))["0"]
        address = bytes.fromhex(await _payment_address_hex(storage, 0))
        # fee 5 encoded as 0x19 0x0005 (not minimal); re-encoding would change the bytes
        body = (
            b"\xa3"
            + b"\x00" + cbor2.dumps([[b"\x11" * 32, 0]])
            + b"\x01" + cbor2.dumps([[address, 1_000_000]])
            + b"\x02" + b"\x19\x00\x05"
        )
        tx = b"\x84" + body + b"\xa0" + b"\xf5" + b"\xf6"
        result = await SigningEngine(storage).sign_tx(
            tx.hex(), [account["paymentKeyHash"]], PASSWORD, 0
        )
        [[vkey, signature]] = cbor2.loads(bytes.fromhex(result))[0]
        VerifyKey(vkey).verify(primitives.blake2b_256(body), signature)

    @pytest.mark.asyncio
    async def test_malformed_tx(self, wallet, storage):
        with pytest.raises(InvalidRequest):
            await SigningEngine(storage).sign_tx("deadbeef", [], PASSWORD, 0)


class TestValidationHelpers:
    def test_verify_payload(self):
        verify_payload("00")
        with pytest.raises(InvalidFormat):
            verify_payload("")
        with pytest.raises(InvalidFormat):
            verify_payload("xyz")

    def test_verify_sig_structure(self):
        verify_sig_structure(cbor2.dumps(["Signature1", b"", b"", b"data"]).hex())
        with pytest.raises(InvalidFormat):
            verify_sig_structure(cbor2.dumps(["Nope", b"", b"", b""]).hex())
        with pytest.raises(InvalidFormat):
            verify_sig_structure("zz")

    def test_verify_tx(self):
        tx = _build_tx(bytes([0x01]) + HASH28 + HASH28)
        parsed = verify_tx(tx.hex())
        assert parsed.body[2] == 170_000
        assert parsed.body_bytes == cbor2.dumps(cbor2.loads(tx)[0])
        with pytest.raises(InvalidRequest):
            verify_tx("82a0a0")
