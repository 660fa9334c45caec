"""Build, sign and broadcast transfers, then hand them to a settlement watcher."""

from __future__ import annotations

import asyncio
import logging
import math
from decimal import Decimal
from typing import Any

from crypto_wallet.chain.provider import Web3Provider, to_checksum
from crypto_wallet.core.events import TRANSFER_SUBMITTED, EventBus
from crypto_wallet.errors import ValidationError, WalletLockedError
from crypto_wallet.wallet.calls import build_transfer_call
from crypto_wallet.wallet.models import PendingTransfer, TransferRequest
from crypto_wallet.wallet.session import WalletSession
from crypto_wallet.wallet.settlement import SettlementWatcher, SubmissionHandle
from crypto_wallet.wallet.tracker import PendingTransactionTracker

logger = logging.getLogger("crypto_wallet.wallet.submitter")


class TransactionSubmitter:
    """Turns a :class:`TransferRequest` into a broadcast transaction.

    On success the transfer is registered with the pending tracker before
    anything waits for settlement, and a :class:`SettlementWatcher` task is
    started for it. Settlement outcomes are delivered through the event
    bus; this class does not react to them.

    Parameters
    ----------
    provider:
        Node access for nonce, gas and broadcast.
    tracker:
        The session's pending set.
    bus:
        Receives ``transfer.submitted`` and the watchers' outcomes.
    poll_interval, settlement_timeout:
        Passed through to each :class:`SettlementWatcher`.
    """

    def __init__(
        self,
        provider: Web3Provider,
        tracker: PendingTransactionTracker,
        bus: EventBus,
        poll_interval: float = 3.0,
        settlement_timeout: float = 600.0,
    ) -> None:
        self.provider = provider
        self.tracker = tracker
        self.bus = bus
        self.poll_interval = poll_interval
        self.settlement_timeout = settlement_timeout
        self._tasks: set[asyncio.Task] = set()
        # Bumped by cancel_watchers; a submit that straddles it is stale.
        self._generation = 0

    async def submit(self, request: TransferRequest, session: WalletSession) -> SubmissionHandle:
        """Validate, sign and broadcast *request* from the session's address.

        Raises
        ------
        ValidationError
            Bad recipient or amount; no network call was made.
        SubmissionRejected
            The node refused the transaction; nothing is tracked.
        NetworkError
            The node could not be reached.
        WalletLockedError
            The wallet was locked before the transfer could be tracked.
        """
        generation = self._generation
        amount = request.validate()
        call = await build_transfer_call(self.provider, request, amount, session.address)
        nonce = await self.provider.get_transaction_count(session.address, "pending")
        gas_price = await self.provider.get_gas_price()
        return await self._sign_and_send(
            session,
            call,
            generation=generation,
            nonce=nonce,
            gas_price=gas_price,
            to_address=to_checksum(request.recipient),
            amount=amount,
            asset_symbol=request.asset.symbol,
        )

    async def replace(
        self,
        original: PendingTransfer,
        session: WalletSession,
        fee_bump_percent: float = 12.5,
    ) -> SubmissionHandle:
        """Broadcast a zero-value self-transfer at *original*'s nonce.

        The gas price is the higher of the current price and the original
        price bumped by *fee_bump_percent*, so nodes accept it as a
        replacement. Whichever transaction is mined first settles its
        nonce; the other resolves as ``REPLACED``.
        """
        generation = self._generation
        if original.from_address.lower() != session.address.lower():
            raise ValidationError("Only transfers sent from this wallet can be cancelled.")

        current_price = await self.provider.get_gas_price()
        bumped = 0
        if original.gas_price:
            bumped = math.ceil(original.gas_price * (100 + fee_bump_percent) / 100)
        gas_price = max(current_price, bumped)

        call = {
            "from": session.address,
            "to": session.address,
            "value": 0,
        }
        handle = await self._sign_and_send(
            session,
            call,
            generation=generation,
            nonce=original.nonce,
            gas_price=gas_price,
            to_address=session.address,
            amount=Decimal(0),
            asset_symbol=self.provider.chain.native_symbol,
        )
        logger.info(
            f"Replacement {handle.hash} broadcast for {original.hash} "
            f"(nonce={original.nonce}, gas_price={gas_price})"
        )
        return handle

    async def _sign_and_send(
        self,
        session: WalletSession,
        call: dict[str, Any],
        *,
        generation: int,
        nonce: int,
        gas_price: int,
        to_address: str,
        amount: Decimal,
        asset_symbol: str,
    ) -> SubmissionHandle:
        tx: dict[str, Any] = dict(call)
        tx["gas"] = await self.provider.estimate_gas(call)
        tx.update(
            {
                "nonce": nonce,
                "gasPrice": gas_price,
                "chainId": self.provider.chain.chain_id,
            }
        )
        tx.pop("from", None)

        signed = session.account.sign_transaction(tx)
        if generation != self._generation:
            raise WalletLockedError("Wallet was locked; transfer not sent.")
        tx_hash = await self.provider.send_raw_transaction(signed.raw_transaction)
        if generation != self._generation:
            logger.warning(f"Wallet locked during broadcast; {tx_hash} is not tracked")
            raise WalletLockedError(f"Wallet was locked; transfer {tx_hash} is not tracked.")

        pending = PendingTransfer(
            hash=tx_hash,
            from_address=session.address,
            to_address=to_address,
            amount=amount,
            asset_symbol=asset_symbol,
            nonce=nonce,
            gas_price=gas_price,
        )
        self.tracker.add(pending)
        logger.info(f"Submitted {amount} {asset_symbol} to {to_address}: tx={tx_hash}")
        await self.bus.emit(TRANSFER_SUBMITTED, pending)

        watcher = SettlementWatcher(
            self.provider,
            self.bus,
            tx_hash=tx_hash,
            nonce=nonce,
            from_address=session.address,
            poll_interval=self.poll_interval,
            timeout=self.settlement_timeout,
        )
        task = asyncio.create_task(watcher.run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SubmissionHandle(
            hash=tx_hash, nonce=nonce, pending=pending, watcher=watcher, task=task
        )

    @property
    def active_watchers(self) -> int:
        return len(self._tasks)

    async def cancel_watchers(self) -> None:
        """Stop every settlement watcher (used when the wallet is locked)."""
        self._generation += 1
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
