"""Debounced network-fee estimation for the transfer being drafted."""

from __future__ import annotations

import asyncio
import logging

from crypto_wallet.chain.provider import Web3Provider
from crypto_wallet.chain.units import NATIVE_DECIMALS, from_base_units
from crypto_wallet.core.events import FEE_ESTIMATED, EventBus
from crypto_wallet.wallet.calls import build_transfer_call
from crypto_wallet.wallet.models import FeeEstimate, TransferRequest
from crypto_wallet.wallet.session import WalletSession

logger = logging.getLogger("crypto_wallet.wallet.fees")


class FeeEstimator:
    """Estimates ``gas price x gas units`` for the current draft transfer.

    :meth:`update` is called on every recipient/amount/asset change. The
    evaluation runs ``debounce_seconds`` after the last change; earlier
    scheduled evaluations are cancelled, and every result is checked
    against a generation counter before it is applied, so a response for
    superseded inputs is never shown.
    """

    def __init__(
        self,
        provider: Web3Provider,
        bus: EventBus,
        debounce_seconds: float = 0.5,
    ) -> None:
        self.provider = provider
        self.bus = bus
        self.debounce_seconds = debounce_seconds
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._estimate: FeeEstimate | None = None
        self.loading = False

    @property
    def current(self) -> FeeEstimate | None:
        """Latest applied estimate, or ``None`` when unavailable."""
        return self._estimate

    @property
    def generation(self) -> int:
        return self._generation

    async def estimate(self, draft: TransferRequest, session: WalletSession) -> FeeEstimate | None:
        """Run one estimation pass immediately.

        Returns ``None`` for invalid drafts and on any estimation failure.
        """
        try:
            amount = draft.validate()
            call = await build_transfer_call(self.provider, draft, amount, session.address)
            gas_price = await self.provider.get_gas_price()
            gas_limit = await self.provider.estimate_gas(call)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Fee estimation unavailable: {e}")
            return None

        fee_wei = gas_price * gas_limit
        return FeeEstimate(
            amount=from_base_units(fee_wei, NATIVE_DECIMALS),
            amount_wei=fee_wei,
            gas_price=gas_price,
            gas_limit=gas_limit,
            native_symbol=self.provider.chain.native_symbol,
        )

    def update(self, draft: TransferRequest | None, session: WalletSession | None) -> None:
        """Record new draft inputs and (re)schedule estimation.

        Must be called from the running event loop.
        """
        self._generation += 1
        generation = self._generation
        self._cancel_task()

        if draft is None or session is None or not draft.is_valid():
            self._estimate = None
            self.loading = False
            return

        self._task = asyncio.create_task(self._run(generation, draft, session))

    async def _run(self, generation: int, draft: TransferRequest, session: WalletSession) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if generation != self._generation:
            return

        self.loading = True
        try:
            result = await self.estimate(draft, session)
        finally:
            if generation == self._generation:
                self.loading = False

        if generation != self._generation:
            logger.debug(f"Discarding fee estimate for superseded inputs (gen {generation})")
            return

        self._estimate = result
        await self.bus.emit(FEE_ESTIMATED, result)

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait_idle(self) -> None:
        """Wait for the scheduled evaluation (if any) to finish."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    def cancel(self) -> None:
        """Drop any scheduled evaluation and clear the estimate."""
        self._generation += 1
        self._cancel_task()
        self._estimate = None
        self.loading = False
