"""Per-transfer settlement state machine.

Every broadcast transfer gets one :class:`SettlementWatcher`. It starts in
``SUBMITTED`` and moves exactly once to a terminal state:

* ``CONFIRMED`` - mined with a successful receipt.
* ``FAILED``    - mined but reverted.
* ``DROPPED``   - never mined before the settlement timeout.
* ``REPLACED``  - the nonce was consumed by a different transaction.

The terminal outcome is published on the event bus; the watcher never
touches wallet state itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from crypto_wallet.chain.provider import Web3Provider
from crypto_wallet.core.events import (
    TRANSFER_CONFIRMED,
    TRANSFER_DROPPED,
    TRANSFER_FAILED,
    TRANSFER_REPLACED,
    EventBus,
)
from crypto_wallet.errors import NetworkError, SettlementFailure, WalletError
from crypto_wallet.wallet.models import PendingTransfer

logger = logging.getLogger("crypto_wallet.wallet.settlement")


class SettlementState(str, Enum):
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DROPPED = "dropped"
    REPLACED = "replaced"

    @property
    def is_terminal(self) -> bool:
        return self is not SettlementState.SUBMITTED


_EVENT_TOPICS = {
    SettlementState.CONFIRMED: TRANSFER_CONFIRMED,
    SettlementState.FAILED: TRANSFER_FAILED,
    SettlementState.DROPPED: TRANSFER_DROPPED,
    SettlementState.REPLACED: TRANSFER_REPLACED,
}


@dataclass(frozen=True)
class SettlementOutcome:
    hash: str
    nonce: int
    from_address: str
    state: SettlementState
    receipt: Optional[dict[str, Any]] = field(default=None, repr=False)
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state is SettlementState.CONFIRMED


class SettlementWatcher:
    """Polls the node until one transfer reaches a terminal state.

    Parameters
    ----------
    provider:
        Node access used for receipts and the account's mined nonce.
    bus:
        Receives the terminal outcome on ``transfer.<state>``.
    tx_hash, nonce, from_address:
        Identity of the watched transfer.
    poll_interval:
        Seconds between polls.
    timeout:
        Seconds after which an unmined transfer counts as dropped.
    """

    def __init__(
        self,
        provider: Web3Provider,
        bus: EventBus,
        tx_hash: str,
        nonce: int,
        from_address: str,
        poll_interval: float = 3.0,
        timeout: float = 600.0,
    ) -> None:
        self.provider = provider
        self.bus = bus
        self.tx_hash = tx_hash
        self.nonce = nonce
        self.from_address = from_address
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.state = SettlementState.SUBMITTED
        self._outcome: asyncio.Future[SettlementOutcome] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def outcome(self) -> asyncio.Future[SettlementOutcome]:
        return self._outcome

    def _transition(
        self,
        state: SettlementState,
        receipt: dict[str, Any] | None = None,
        reason: str = "",
    ) -> SettlementOutcome:
        if self.state.is_terminal:
            raise WalletError(
                f"Transfer {self.tx_hash} already settled as {self.state.value}"
            )
        self.state = state
        return SettlementOutcome(
            hash=self.tx_hash,
            nonce=self.nonce,
            from_address=self.from_address,
            state=state,
            receipt=receipt,
            reason=reason,
        )

    def _settle_from_receipt(self, receipt: dict[str, Any]) -> SettlementOutcome:
        if receipt.get("status", 1) == 1:
            return self._transition(SettlementState.CONFIRMED, receipt)
        return self._transition(SettlementState.FAILED, receipt, reason="execution reverted")

    async def _poll_once(self) -> SettlementOutcome | None:
        receipt = await self.provider.get_receipt(self.tx_hash)
        if receipt is not None:
            return self._settle_from_receipt(receipt)

        mined_nonce = await self.provider.get_transaction_count(self.from_address, "latest")
        if mined_nonce > self.nonce:
            # The nonce is used up. Look once more in case our own receipt
            # just became visible; otherwise another transaction took the slot.
            receipt = await self.provider.get_receipt(self.tx_hash)
            if receipt is not None:
                return self._settle_from_receipt(receipt)
            return self._transition(
                SettlementState.REPLACED, reason="transaction replaced"
            )
        return None

    async def run(self) -> SettlementOutcome:
        """Poll until settled, publish the outcome and return it."""
        deadline = time.monotonic() + self.timeout
        try:
            outcome: SettlementOutcome | None = None
            while outcome is None:
                try:
                    outcome = await self._poll_once()
                except NetworkError as e:
                    logger.warning(f"Polling {self.tx_hash} failed, will retry: {e}")
                except Exception as e:
                    logger.exception(f"Unexpected error polling {self.tx_hash}, will retry: {e}")
                if outcome is None:
                    if time.monotonic() >= deadline:
                        outcome = self._transition(
                            SettlementState.DROPPED,
                            reason=f"not mined within {self.timeout:.0f}s",
                        )
                        break
                    await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            if not self._outcome.done():
                self._outcome.cancel()
            raise

        logger.info(f"Transfer {self.tx_hash} settled: {outcome.state.value}")
        try:
            await self.bus.emit(_EVENT_TOPICS[outcome.state], outcome)
        finally:
            if not self._outcome.done():
                self._outcome.set_result(outcome)
        return outcome


@dataclass
class SubmissionHandle:
    """Returned by a successful submission.

    ``pending`` is the entry registered with the tracker; :meth:`wait`
    resolves once the settlement watcher reaches a terminal state.
    """

    hash: str
    nonce: int
    pending: PendingTransfer
    watcher: SettlementWatcher = field(repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def state(self) -> SettlementState:
        return self.watcher.state

    async def wait(self, raise_on_failure: bool = False) -> SettlementOutcome:
        """Wait for settlement.

        With *raise_on_failure*, ``FAILED`` and ``DROPPED`` outcomes raise
        :class:`SettlementFailure`. ``REPLACED`` never raises.
        """
        outcome = await asyncio.shield(self.watcher.outcome)
        if raise_on_failure and outcome.state in (
            SettlementState.FAILED,
            SettlementState.DROPPED,
        ):
            raise SettlementFailure(outcome.hash, outcome.reason or outcome.state.value)
        return outcome
