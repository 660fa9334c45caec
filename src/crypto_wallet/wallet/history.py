"""Merge in-flight transfers with the backend's confirmed history."""

from __future__ import annotations

import logging
from typing import Iterable

from crypto_wallet.backend.client import BackendClient
from crypto_wallet.core.events import HISTORY_UPDATED, EventBus
from crypto_wallet.wallet.models import (
    ConfirmedTransferRecord,
    DisplayedTransfer,
    PendingTransfer,
)

logger = logging.getLogger("crypto_wallet.wallet.history")


def reconcile(
    pending: Iterable[PendingTransfer],
    confirmed: Iterable[ConfirmedTransferRecord],
) -> list[DisplayedTransfer]:
    """Build the history view from the pending set and the confirmed records.

    A pending entry is dropped once a confirmed record with the same hash
    exists, so no hash appears twice. Entries are sorted newest first;
    on equal timestamps pending entries come before confirmed ones.
    """
    confirmed_items: list[DisplayedTransfer] = []
    seen: set[str] = set()
    for record in confirmed:
        key = record.hash.lower()
        if key in seen:
            continue
        seen.add(key)
        confirmed_items.append(DisplayedTransfer.from_confirmed(record))

    pending_items: list[DisplayedTransfer] = []
    for transfer in pending:
        key = transfer.hash.lower()
        if key in seen:
            continue
        seen.add(key)
        pending_items.append(DisplayedTransfer.from_pending(transfer))

    combined = pending_items + confirmed_items
    # Stable sort: pending entries were placed first, so they win ties.
    combined.sort(key=lambda item: item.timestamp, reverse=True)
    return combined


class HistoryReconciler:
    """Owns the confirmed-history cache and serves the reconciled view.

    The view itself is not stored; :meth:`displayed` recomputes it from
    the current pending snapshot and the cache on every call.
    """

    def __init__(self, backend: BackendClient, bus: EventBus) -> None:
        self.backend = backend
        self.bus = bus
        self._confirmed: tuple[ConfirmedTransferRecord, ...] = ()
        self._generation = 0
        self.loading = False

    @property
    def confirmed(self) -> tuple[ConfirmedTransferRecord, ...]:
        return self._confirmed

    def get_confirmed(self, tx_hash: str) -> ConfirmedTransferRecord | None:
        key = tx_hash.lower()
        for record in self._confirmed:
            if record.hash.lower() == key:
                return record
        return None

    async def refresh(self, address: str) -> bool:
        """Re-fetch the confirmed history for *address*.

        Returns True if the cache was replaced. A response that arrives
        after a newer refresh was started is discarded. Backend and
        network errors propagate to the caller.
        """
        self._generation += 1
        generation = self._generation
        self.loading = True
        try:
            records = await self.backend.get_history(address)
        finally:
            if generation == self._generation:
                self.loading = False

        if generation != self._generation:
            logger.debug(f"Discarding stale history response for {address}")
            return False

        self._confirmed = tuple(records)
        logger.info(f"History refreshed for {address}: {len(records)} confirmed record(s)")
        await self.bus.emit(HISTORY_UPDATED, self._confirmed)
        return True

    def displayed(self, pending: Iterable[PendingTransfer]) -> list[DisplayedTransfer]:
        return reconcile(pending, self._confirmed)

    def clear(self) -> None:
        self._generation += 1
        self._confirmed = ()
        self.loading = False
