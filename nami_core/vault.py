"""
Key vault: password encryption of the wallet root key.

The root key only ever exists in plaintext inside a :class:`SecretBuffer`,
a context manager that zeroes its bytes on exit, including exits by
exception::

    with await decrypt_with_password(password, blob) as root:
        node = derive_path(root.data, "m/1852'/1815'/0'")

Unlocking the wallet produces a :class:`Session`, an explicit object that
carries the password for a bounded time and is passed to operations that
need it.
"""

from __future__ import annotations

import logging
import time

from nami_core import primitives
from nami_core.errors import SessionExpired, WrongPassword
from nami_core.storage import STORAGE, Storage

logger = logging.getLogger("nami.vault")


class SecretBuffer:
    """Mutable byte buffer that is wiped when the ``with`` block ends."""

    __slots__ = ("_buf",)

    def __init__(self, data: bytes | bytearray):
        self._buf = bytearray(data)
        if isinstance(data, bytearray):
            data[:] = b"\x00" * len(data)

    @property
    def data(self) -> bytearray:
        return self._buf

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __enter__(self) -> SecretBuffer:
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"SecretBuffer({len(self._buf)} bytes)"


def encrypt_with_password(password: str, root_key: bytes | bytearray) -> str:
    """Encrypt *root_key*; every call uses a fresh salt and nonce."""
    blob = primitives.encrypt_pbe(
        password.encode("utf-8"),
        primitives.random_salt(),
        primitives.random_nonce(),
        root_key,
    )
    return blob.hex()


def decrypt_with_password(password: str, encrypted_key_hex: str) -> SecretBuffer:
    """Decrypt the root key blob.

    Raises :class:`WrongPassword` for every failure mode, so a caller cannot
    tell a wrong password from a corrupted blob.
    """
    try:
        plain = primitives.decrypt_pbe(password.encode("utf-8"), bytes.fromhex(encrypted_key_hex))
    except (ValueError, TypeError, KeyError) as e:
        logger.debug("Root key decryption failed (%s)", type(e).__name__)
        raise WrongPassword() from None
    return SecretBuffer(plain)


async def load_root_key(storage: Storage, password: str) -> SecretBuffer:
    """Fetch the encrypted root key from *storage* and decrypt it."""
    encrypted = await storage.get(STORAGE.encryptedKey)
    if not encrypted:
        raise WrongPassword()
    return decrypt_with_password(password, encrypted)


class Session:
    """Time-bounded proof that the user unlocked the wallet.

    Created by :meth:`unlock`, cleared by :meth:`lock` or by the timeout
    elapsing. Reading :attr:`password` after either raises
    :class:`SessionExpired`.
    """

    def __init__(self, password: str, timeout: float = 300.0, clock=time.monotonic):
        self._password: str | None = password
        self._clock = clock
        self.timeout = timeout
        self.expires_at = clock() + timeout

    @classmethod
    async def unlock(cls, storage: Storage, password: str, timeout: float = 300.0) -> Session:
        """Verify *password* against the stored root key and open a session."""
        with await load_root_key(storage, password):
            pass
        logger.info("Wallet unlocked for %.0fs", timeout)
        return cls(password, timeout)

    @property
    def active(self) -> bool:
        if self._password is not None and self._clock() >= self.expires_at:
            self.lock()
        return self._password is not None

    @property
    def password(self) -> str:
        if not self.active:
            raise SessionExpired()
        return self._password  # type: ignore[return-value]

    def touch(self) -> None:
        """Extend an active session by its timeout."""
        if self.active:
            self.expires_at = self._clock() + self.timeout

    def lock(self) -> None:
        if self._password is not None:
            logger.info("Wallet locked")
        self._password = None

    def __repr__(self) -> str:
        return f"Session(active={self.active})"
