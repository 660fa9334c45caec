"""Durable cache of the unlocked session, restored on startup."""

from __future__ import annotations

import logging

from crypto_wallet.errors import ValidationError
from crypto_wallet.storage.database import Database
from crypto_wallet.wallet.session import WalletSession

logger = logging.getLogger("crypto_wallet.storage.session")

SESSION_KEY = "walletData"


class SessionStore:
    """Saves, loads and clears the session under the fixed key ``walletData``."""

    def __init__(self, db: Database, key: str = SESSION_KEY) -> None:
        self.db = db
        self.key = key

    async def save(self, session: WalletSession) -> None:
        await self.db.set_value(self.key, session.to_dict())

    async def load(self) -> WalletSession | None:
        """Return the cached session, or ``None`` if absent or unreadable."""
        data = await self.db.get_value(self.key)
        if not data:
            return None
        try:
            return WalletSession.from_dict(data)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cached session: {e}")
            await self.clear()
            return None

    async def clear(self) -> None:
        await self.db.delete_value(self.key)
