"""
Tests for debounced fee estimation.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import BNB, RECIPIENT, USDT, EventRecorder
from crypto_wallet.core.events import FEE_ESTIMATED
from crypto_wallet.errors import SubmissionRejected
from crypto_wallet.wallet.fees import FeeEstimator
from crypto_wallet.wallet.models import TransferRequest


def draft(amount: str, asset=BNB, recipient: str = RECIPIENT) -> TransferRequest:
    return TransferRequest(recipient=recipient, amount=amount, asset=asset)


class TestEstimate:
    """Tests for a single estimation pass."""

    @pytest.mark.asyncio
    async def test_native(self, provider, bus, session) -> None:
        estimator = FeeEstimator(provider, bus)
        estimate = await estimator.estimate(draft("1.5"), session)

        assert estimate.gas_price == 5 * 10**9
        assert estimate.gas_limit == 21000
        assert estimate.amount_wei == 5 * 10**9 * 21000
        assert estimate.amount == Decimal("0.000105")
        assert estimate.native_symbol == "BNB"

        call = provider.estimate_gas.await_args.args[0]
        assert call["value"] == 1_500_000_000_000_000_000
        assert call["to"] == RECIPIENT

    @pytest.mark.asyncio
    async def test_token_calls_contract(self, provider, bus, session) -> None:
        estimator = FeeEstimator(provider, bus)
        await estimator.estimate(draft("2", asset=USDT), session)

        call = provider.estimate_gas.await_args.args[0]
        assert call["to"].lower() == USDT.contract_address.lower()
        assert call["value"] == 0
        provider.encode_transfer.assert_called_once_with(
            USDT.contract_address, RECIPIENT, 2 * 10**18
        )

    @pytest.mark.asyncio
    async def test_failure_yields_none(self, provider, bus, session) -> None:
        provider.estimate_gas = AsyncMock(side_effect=SubmissionRejected("insufficient funds"))
        estimator = FeeEstimator(provider, bus)
        assert await estimator.estimate(draft("1"), session) is None

    @pytest.mark.asyncio
    async def test_invalid_draft_yields_none(self, provider, bus, session) -> None:
        estimator = FeeEstimator(provider, bus)
        assert await estimator.estimate(draft("-1"), session) is None
        provider.estimate_gas.assert_not_awaited()


class TestDebounce:
    """Tests for FeeEstimator.update scheduling."""

    @pytest.mark.asyncio
    async def test_rapid_changes_run_one_pass(self, provider, bus, session) -> None:
        """Two changes inside the debounce window evaluate only the final input."""
        recorder = EventRecorder(bus)
        estimator = FeeEstimator(provider, bus, debounce_seconds=0.05)

        estimator.update(draft("1"), session)
        estimator.update(draft("2"), session)
        await estimator.wait_idle()

        assert provider.estimate_gas.await_count == 1
        call = provider.estimate_gas.await_args.args[0]
        assert call["value"] == 2 * 10**18
        assert len(recorder.payloads(FEE_ESTIMATED)) == 1
        assert estimator.current is not None

    @pytest.mark.asyncio
    async def test_stale_result_not_applied(self, provider, bus, session) -> None:
        """A response for superseded inputs is dropped when it arrives late."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_gas_price() -> int:
            started.set()
            await release.wait()
            return 7 * 10**9

        provider.get_gas_price = AsyncMock(side_effect=slow_gas_price)
        estimator = FeeEstimator(provider, bus, debounce_seconds=0)

        estimator.update(draft("1"), session)
        await started.wait()
        # Input changes to something invalid while the first request is in flight.
        estimator.update(draft(""), session)
        release.set()
        await asyncio.sleep(0.01)

        assert estimator.current is None

    @pytest.mark.asyncio
    async def test_invalid_input_clears_estimate(self, provider, bus, session) -> None:
        estimator = FeeEstimator(provider, bus, debounce_seconds=0)
        estimator.update(draft("1"), session)
        await estimator.wait_idle()
        assert estimator.current is not None

        estimator.update(draft("1", recipient="0xnope"), session)
        assert estimator.current is None
        assert not estimator.loading

    @pytest.mark.asyncio
    async def test_no_session(self, provider, bus) -> None:
        estimator = FeeEstimator(provider, bus, debounce_seconds=0)
        estimator.update(draft("1"), None)
        await estimator.wait_idle()
        assert estimator.current is None
        provider.estimate_gas.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel(self, provider, bus, session) -> None:
        estimator = FeeEstimator(provider, bus, debounce_seconds=0.05)
        generation = estimator.generation
        estimator.update(draft("1"), session)
        estimator.cancel()
        await asyncio.sleep(0.1)
        assert estimator.generation == generation + 2
        provider.estimate_gas.assert_not_awaited()
        assert estimator.current is None
