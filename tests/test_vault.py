"""
Tests for the key vault (vault.py) and the encryption primitives behind it.

Covers:
  - Encrypt / decrypt roundtrip and blob layout
  - Fresh salt and nonce per encryption
  - Wrong password and corrupted blobs both raise WrongPassword
  - SecretBuffer wiping on normal and exceptional exit
  - Session unlock, expiry and lock
"""

from __future__ import annotations

import pytest

from conftest import PASSWORD
from nami_core import primitives
from nami_core.errors import SessionExpired, WrongPassword
from nami_core.storage import STORAGE, MemoryStorage
from nami_core.vault import (
    SecretBuffer,
    Session,
    decrypt_with_password,
    encrypt_with_password,
    load_root_key,
)

ROOT = bytes(range(96))


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ═══════════════════════════════════════════════════════════════════
#  Encryption
# ═══════════════════════════════════════════════════════════════════

class TestEncryption:
    def test_roundtrip(self):
        blob = encrypt_with_password(PASSWORD, ROOT)
        with decrypt_with_password(PASSWORD, blob) as root:
            assert bytes(root.data) == ROOT

    def test_blob_layout(self):
        blob = bytes.fromhex(encrypt_with_password(PASSWORD, ROOT))
        header = primitives.PBE_SALT_SIZE + primitives.PBE_NONCE_SIZE + primitives.PBE_TAG_SIZE
        assert len(blob) == header + len(ROOT)

    def test_non_deterministic(self):
        a = encrypt_with_password(PASSWORD, ROOT)
        b = encrypt_with_password(PASSWORD, ROOT)
        assert a != b
        assert a[:64] != b[:64]  # salt differs

    def test_wrong_password(self):
        blob = encrypt_with_password(PASSWORD, ROOT)
        with pytest.raises(WrongPassword):
            decrypt_with_password("not the password", blob)

    def test_tampered_ciphertext(self):
        blob = bytearray.fromhex(encrypt_with_password(PASSWORD, ROOT))
        blob[-1] ^= 0x01
        with pytest.raises(WrongPassword):
            decrypt_with_password(PASSWORD, blob.hex())

    def test_truncated_blob(self):
        blob = encrypt_with_password(PASSWORD, ROOT)
        with pytest.raises(WrongPassword):
            decrypt_with_password(PASSWORD, blob[:100])

    def test_not_hex(self):
        with pytest.raises(WrongPassword):
            decrypt_with_password(PASSWORD, "zz-not-hex")

    def test_encrypt_rejects_bad_nonce(self):
        with pytest.raises(ValueError):
            primitives.encrypt_pbe(b"pw", primitives.random_salt(), b"short", ROOT)

    @pytest.mark.asyncio
    async def test_load_root_key_without_wallet(self):
        with pytest.raises(WrongPassword):
            await load_root_key(MemoryStorage(), PASSWORD)

    @pytest.mark.asyncio
    async def test_load_root_key(self):
        storage = MemoryStorage({STORAGE.encryptedKey: encrypt_with_password(PASSWORD, ROOT)})
        with await load_root_key(storage, PASSWORD) as root:
            assert bytes(root.data) == ROOT


# ═══════════════════════════════════════════════════════════════════
#  SecretBuffer
# ═══════════════════════════════════════════════════════════════════

class TestSecretBuffer:
    def test_wiped_on_exit(self):
        buf = SecretBuffer(b"\x01\x02\x03")
        with buf as b:
            assert bytes(b.data) == b"\x01\x02\x03"
        assert buf.wiped
        assert len(buf) == 3

    def test_wiped_on_exception(self):
        buf = SecretBuffer(b"\xff" * 8)
        with pytest.raises(RuntimeError):
            with buf:
                raise RuntimeError("boom")
        assert buf.wiped

    def test_source_bytearray_zeroed(self):
        source = bytearray(b"\xaa" * 4)
        buf = SecretBuffer(source)
        assert source == bytearray(4)
        assert bytes(buf.data) == b"\xaa" * 4

    def test_repr_hides_contents(self):
        assert "aa" not in repr(SecretBuffer(b"\xaa" * 4))


# ═══════════════════════════════════════════════════════════════════
#  Session
# ═══════════════════════════════════════════════════════════════════

class TestSession:
    def test_password_while_active(self):
        session = Session(PASSWORD, timeout=10, clock=FakeClock())
        assert session.active
        assert session.password == PASSWORD

    def test_expires(self):
        clock = FakeClock()
        session = Session(PASSWORD, timeout=10, clock=clock)
        clock.now += 10
        assert not session.active
        with pytest.raises(SessionExpired):
            session.password

    def test_touch_extends(self):
        clock = FakeClock()
        session = Session(PASSWORD, timeout=10, clock=clock)
        clock.now += 8
        session.touch()
        clock.now += 8
        assert session.password == PASSWORD

    def test_lock(self):
        session = Session(PASSWORD, timeout=10, clock=FakeClock())
        session.lock()
        with pytest.raises(SessionExpired):
            session.password

    def test_expired_session_cannot_be_touched_back(self):
        clock = FakeClock()
        session = Session(PASSWORD, timeout=1, clock=clock)
        clock.now += 5
        session.touch()
        assert not session.active

    @pytest.mark.asyncio
    async def test_unlock_checks_password(self):
        storage = MemoryStorage({STORAGE.encryptedKey: encrypt_with_password(PASSWORD, ROOT)})
        session = await Session.unlock(storage, PASSWORD, timeout=60)
        assert session.password == PASSWORD
        with pytest.raises(WrongPassword):
            await Session.unlock(storage, "wrong", timeout=60)
