"""Client for the backend ledger service (history, wallets, contacts)."""

from crypto_wallet.backend.client import BackendClient

__all__ = ["BackendClient"]
