"""
Error taxonomy for the wallet core.

Every failure that reaches a caller of a security- or money-relevant
operation (decryption, signing, submission) is one of these typed errors.
Codes follow the CIP-30 dApp connector numbering where one exists so the
values can be forwarded to a web page unchanged.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet-core errors."""

    code: int = 0
    info: str = "Wallet error"

    def __init__(self, info: str | None = None):
        if info is not None:
            self.info = info
        super().__init__(self.info)

    def to_dict(self) -> dict:
        return {"code": self.code, "info": self.info}


# ── Key custody ─────────────────────────────────────────────────

class WrongPassword(WalletError):
    """Key derivation or authenticated decryption failed.

    Raised for a wrong password *and* for a corrupted blob; the two cases
    are deliberately indistinguishable.
    """
    info = "Wrong password"


class SessionExpired(WalletError):
    info = "Session is locked or expired"


class StoreNotEmpty(WalletError):
    info = "Storage already holds a wallet"


class OnlyOneAccount(WalletError):
    info = "At least one account must exist"


# ── Provider / API ──────────────────────────────────────────────

class APIError(WalletError):
    pass


class InvalidRequest(APIError):
    code = -1
    info = "Inputs do not conform to the CIP-30 API or are otherwise invalid."


class InternalError(APIError):
    code = -2
    info = "An error occurred during execution of this API call."


class Refused(APIError):
    code = -3
    info = "The request was refused due to lack of access."


# ── Data signing ────────────────────────────────────────────────

class DataSignError(WalletError):
    pass


class ProofGeneration(DataSignError):
    code = 1
    info = "Wallet could not sign the data (e.g. does not have the secret key associated with the address)."


class AddressNotPK(DataSignError):
    code = 2
    info = "Address was not a P2PK address or Reward address and thus had no SK associated with it."


class InvalidFormat(DataSignError):
    code = 4
    info = "Data or address is not in a valid format."


# ── Transaction signing / submission ────────────────────────────

class TxSignError(WalletError):
    pass


class TxProofGeneration(TxSignError, ProofGeneration):
    """Unknown key hash under full signing.

    Subclasses :class:`ProofGeneration` so callers can catch one type for
    both data and transaction proof failures.
    """
    code = 1
    info = "User has accepted the transaction sign, but the wallet was unable to sign the transaction (e.g. not having some of the private keys)."


class TxSendError(WalletError):
    pass


class TxSendRefused(TxSendError):
    code = 1
    info = "Wallet refuses to send the tx (could be rate limiting)."


class TxSendFailure(TxSendError):
    code = 2
    info = "Wallet could not send the tx."


# ── Migration / retry ───────────────────────────────────────────

class MigrationOrderError(WalletError):
    info = "Completed migrations are out of order; refusing to revert"


class RetryExhausted(WalletError):
    info = "Operation did not succeed within the retry budget"

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts. Last error: {last_error}")
