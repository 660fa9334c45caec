"""Native and token balance refresh for the active address."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Sequence

from crypto_wallet.chain.provider import Web3Provider
from crypto_wallet.chain.units import NATIVE_DECIMALS, from_base_units
from crypto_wallet.core.events import BALANCES_UPDATED, EventBus
from crypto_wallet.wallet.models import BalanceSnapshot, TokenAsset

logger = logging.getLogger("crypto_wallet.wallet.balances")


class BalanceAggregator:
    """Fetches every tracked balance and swaps in a new :class:`BalanceSnapshot`.

    Each asset is fetched independently; one failing call leaves the
    other balances populated and is reported once per refresh.
    """

    def __init__(
        self,
        provider: Web3Provider,
        bus: EventBus,
        tokens: Sequence[TokenAsset] = (),
    ) -> None:
        self.provider = provider
        self.bus = bus
        self.tokens = tuple(tokens)
        self.native_symbol = provider.chain.native_symbol
        self._snapshot: BalanceSnapshot | None = None
        self._generation = 0

    @property
    def snapshot(self) -> BalanceSnapshot | None:
        return self._snapshot

    async def _native(self, address: str) -> Decimal:
        wei = await self.provider.get_native_balance(address)
        return from_base_units(wei, NATIVE_DECIMALS)

    async def _token(self, token: TokenAsset, address: str) -> Decimal:
        decimals = token.decimals
        if decimals is None:
            decimals = await self.provider.get_token_decimals(token.contract_address)
        units = await self.provider.get_token_balance(token.contract_address, address)
        return from_base_units(units, decimals)

    async def refresh(self, address: str) -> BalanceSnapshot | None:
        """Fetch all balances for *address* and replace the snapshot.

        Returns the new snapshot, or ``None`` if a newer refresh started
        while this one was in flight (its results are discarded).
        """
        self._generation += 1
        generation = self._generation

        results = await asyncio.gather(
            self._native(address),
            *(self._token(token, address) for token in self.tokens),
            return_exceptions=True,
        )

        if generation != self._generation:
            logger.debug(f"Discarding stale balance refresh for {address}")
            return None

        native_result, token_results = results[0], results[1:]
        errors: dict[str, str] = {}

        native_balance: Decimal | None = None
        if isinstance(native_result, BaseException):
            errors[self.native_symbol] = str(native_result)
        else:
            native_balance = native_result

        token_balances: dict[str, Decimal] = {}
        for token, result in zip(self.tokens, token_results):
            if isinstance(result, BaseException):
                errors[token.symbol] = str(result)
            else:
                token_balances[token.symbol] = result

        snapshot = BalanceSnapshot(
            native_symbol=self.native_symbol,
            native_balance=native_balance,
            token_balances=token_balances,
            errors=errors,
        )
        self._snapshot = snapshot

        if errors:
            for symbol, message in errors.items():
                logger.warning(f"Failed to fetch {symbol} balance for {address}: {message}")
            await self.bus.notify(
                "error", f"Could not fetch balances for: {', '.join(errors)}."
            )
        await self.bus.emit(BALANCES_UPDATED, snapshot)
        return snapshot

    def clear(self) -> None:
        self._generation += 1
        self._snapshot = None
