"""Exception taxonomy for the wallet client.

Every error raised to callers derives from :class:`WalletError` so front
ends can catch one type and turn it into a user-facing notification.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet client errors."""


class ValidationError(WalletError):
    """Bad recipient address or amount. Raised before any network call."""


class NetworkError(WalletError):
    """The blockchain node or the backend could not be reached."""


class SubmissionRejected(WalletError):
    """The node refused the signed transfer (insufficient funds, nonce conflict, ...)."""


class SettlementFailure(WalletError):
    """A broadcast transfer later failed, reverted, or was dropped."""

    def __init__(self, tx_hash: str, reason: str) -> None:
        super().__init__(f"Transaction {tx_hash} failed: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


class BackendError(WalletError):
    """The backend ledger service answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WalletLockedError(WalletError):
    """The operation needs an unlocked wallet session."""


# Aliases.
InvalidInput = ValidationError
NetworkUnavailable = NetworkError
