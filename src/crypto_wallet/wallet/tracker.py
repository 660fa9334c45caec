"""In-flight transfers submitted during the current session."""

from __future__ import annotations

import logging
from collections import OrderedDict

from crypto_wallet.wallet.models import PendingTransfer

logger = logging.getLogger("crypto_wallet.wallet.tracker")


class PendingTransactionTracker:
    """Ordered set of :class:`PendingTransfer` keyed by hash, newest first.

    One instance per session is the single source of truth for the
    pending set; callers get immutable snapshots, never the live mapping.
    """

    def __init__(self) -> None:
        self._pending: OrderedDict[str, PendingTransfer] = OrderedDict()

    def add(self, transfer: PendingTransfer) -> None:
        """Track *transfer*. A duplicate hash replaces the earlier entry in place."""
        key = transfer.hash.lower()
        if key in self._pending:
            logger.warning(f"Pending transfer {transfer.hash} added twice; replacing.")
            self._pending[key] = transfer
            return
        self._pending[key] = transfer
        self._pending.move_to_end(key, last=False)
        logger.info(
            f"Tracking pending transfer {transfer.hash} "
            f"({transfer.amount} {transfer.asset_symbol}, nonce={transfer.nonce})"
        )

    def remove(self, tx_hash: str) -> bool:
        """Stop tracking *tx_hash*. Returns False if it was not tracked."""
        removed = self._pending.pop(tx_hash.lower(), None)
        if removed is None:
            return False
        logger.info(f"Retired pending transfer {tx_hash}")
        return True

    def get(self, tx_hash: str) -> PendingTransfer | None:
        return self._pending.get(tx_hash.lower())

    def find_by_nonce(self, nonce: int) -> list[PendingTransfer]:
        """All tracked transfers using *nonce* (an original and its replacements)."""
        return [t for t in self._pending.values() if t.nonce == nonce]

    def snapshot(self) -> tuple[PendingTransfer, ...]:
        return tuple(self._pending.values())

    def clear(self) -> int:
        count = len(self._pending)
        self._pending.clear()
        if count:
            logger.info(f"Cleared {count} pending transfer(s)")
        return count

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, tx_hash: object) -> bool:
        return isinstance(tx_hash, str) and tx_hash.lower() in self._pending
