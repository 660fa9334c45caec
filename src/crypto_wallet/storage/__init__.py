"""Client-local storage -- async SQLite database and the session cache."""

from crypto_wallet.storage.database import Database, get_database
from crypto_wallet.storage.session_store import SESSION_KEY, SessionStore

__all__ = [
    "Database",
    "SESSION_KEY",
    "SessionStore",
    "get_database",
]
