"""
Tests for WalletManager: session lifecycle and reactions to settlement.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import (
    RECIPIENT,
    TEST_ADDRESS,
    OTHER,
    EventRecorder,
    confirmed_record,
    make_hash,
    pending_transfer,
)
from crypto_wallet.config import FeeConfig, SettlementConfig, WalletClientConfig
from crypto_wallet.core.events import NOTIFICATION, SESSION_CHANGED, TRANSFER_REPLACED
from crypto_wallet.errors import (
    BackendError,
    SubmissionRejected,
    ValidationError,
    WalletLockedError,
)
from crypto_wallet.wallet.manager import WalletManager
from crypto_wallet.wallet.models import NativeAsset, TokenAsset
from crypto_wallet.wallet.settlement import SettlementOutcome, SettlementState

TX1 = make_hash(0xA1)
TX2 = make_hash(0xB2)


@pytest.fixture
def store():
    s = MagicMock()
    s.save = AsyncMock()
    s.load = AsyncMock(return_value=None)
    s.clear = AsyncMock()
    return s


@pytest.fixture
def manager(provider, backend, store, bus) -> WalletManager:
    config = WalletClientConfig(
        fees=FeeConfig(debounce_seconds=0),
        settlement=SettlementConfig(poll_interval_seconds=0.01, timeout_seconds=5.0),
    )
    return WalletManager(config, provider, backend, store=store, bus=bus)


def messages(recorder: EventRecorder, level: str | None = None) -> list[str]:
    return [
        n.message
        for n in recorder.payloads(NOTIFICATION)
        if level is None or n.level == level
    ]


class TestSessionLifecycle:
    """Tests for unlock / login / restore / lock."""

    @pytest.mark.asyncio
    async def test_unlock_loads_state(self, manager, provider, backend, store, session) -> None:
        recorder = EventRecorder(manager.bus)
        await manager.unlock(session)

        assert manager.session is session
        assert manager.address == TEST_ADDRESS
        store.save.assert_awaited_once_with(session)
        backend.get_history.assert_awaited_once_with(TEST_ADDRESS)
        assert manager.balance_snapshot.native_balance == Decimal(2)
        assert recorder.payloads(SESSION_CHANGED) == [session]

    @pytest.mark.asyncio
    async def test_login(self, manager, backend) -> None:
        recorder = EventRecorder(manager.bus)
        session = await manager.login("  Alice ", "secret")

        backend.access_wallet.assert_awaited_once_with("alice", "secret")
        assert session.address == TEST_ADDRESS
        assert manager.session == session
        assert "Welcome back, alice!" in messages(recorder, "success")

    @pytest.mark.asyncio
    async def test_login_requires_credentials(self, manager, backend) -> None:
        with pytest.raises(ValidationError):
            await manager.login("alice", "  ")
        backend.access_wallet.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_login_backend_error(self, manager, backend) -> None:
        backend.access_wallet = AsyncMock(side_effect=BackendError("Invalid password", 401))
        with pytest.raises(BackendError):
            await manager.login("alice", "wrong")
        assert manager.session is None

    @pytest.mark.asyncio
    async def test_restore(self, manager, store, session) -> None:
        store.load = AsyncMock(return_value=session)
        restored = await manager.restore(refresh=False)
        assert restored is session
        assert manager.session is session
        assert manager.balance_snapshot is None

    @pytest.mark.asyncio
    async def test_restore_without_cache(self, manager) -> None:
        assert await manager.restore() is None
        assert manager.session is None

    @pytest.mark.asyncio
    async def test_lock_clears_everything(self, manager, store, session) -> None:
        recorder = EventRecorder(manager.bus)
        await manager.unlock(session)
        await manager.send(RECIPIENT, "1", "BNB")
        assert len(manager.tracker) == 1

        await manager.lock()

        assert manager.session is None
        assert len(manager.tracker) == 0
        assert manager.submitter.active_watchers == 0
        assert manager.balance_snapshot is None
        assert manager.history.confirmed == ()
        store.clear.assert_awaited_once()
        assert recorder.payloads(SESSION_CHANGED)[-1] is None

    @pytest.mark.asyncio
    async def test_lock_during_broadcast(self, manager, provider, session) -> None:
        """A broadcast that finishes after lock leaves nothing behind."""
        await manager.unlock(session)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_broadcast(raw_tx: bytes) -> str:
            started.set()
            await release.wait()
            return TX1

        provider.send_raw_transaction = AsyncMock(side_effect=slow_broadcast)
        send = asyncio.create_task(manager.send(RECIPIENT, "1", "BNB"))
        await started.wait()

        await manager.lock()
        release.set()

        with pytest.raises(WalletLockedError):
            await send
        assert manager.session is None
        assert len(manager.tracker) == 0
        assert manager.submitter.active_watchers == 0

    @pytest.mark.asyncio
    async def test_create_wallet(self, manager, backend) -> None:
        generated = await manager.create_wallet("Bob", "pw")
        kwargs = backend.register_wallet.await_args.kwargs
        assert kwargs["name"] == "bob"
        assert kwargs["address"] == generated.address
        assert len(kwargs["mnemonic"].split()) == 12
        assert manager.session is None

    @pytest.mark.asyncio
    async def test_import_wallet(self, manager, backend) -> None:
        mnemonic = "abandon " * 11 + "about"
        generated = await manager.create_wallet("bob", "pw", mnemonic=mnemonic)
        assert generated.address == "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
        assert backend.register_wallet.await_args.kwargs["mnemonic"] == mnemonic

    @pytest.mark.asyncio
    async def test_import_bad_mnemonic(self, manager, backend) -> None:
        with pytest.raises(ValidationError):
            await manager.create_wallet("bob", "pw", mnemonic="not a real phrase")
        backend.register_wallet.assert_not_awaited()


class TestSend:
    """Tests for WalletManager.send."""

    @pytest.mark.asyncio
    async def test_locked(self, manager) -> None:
        with pytest.raises(WalletLockedError):
            await manager.send(RECIPIENT, "1", "BNB")

    @pytest.mark.asyncio
    async def test_invalid_amount(self, manager, provider, session) -> None:
        await manager.unlock(session)
        recorder = EventRecorder(manager.bus)

        with pytest.raises(ValidationError):
            await manager.send(RECIPIENT, "-1", "BNB")

        assert len(manager.tracker) == 0
        provider.send_raw_transaction.assert_not_awaited()
        assert len(messages(recorder, "error")) == 1

    @pytest.mark.asyncio
    async def test_rejected(self, manager, provider, session) -> None:
        await manager.unlock(session)
        recorder = EventRecorder(manager.bus)
        provider.send_raw_transaction = AsyncMock(side_effect=SubmissionRejected("nonce too low"))

        with pytest.raises(SubmissionRejected):
            await manager.send(RECIPIENT, "1", "BNB")

        assert len(manager.tracker) == 0
        assert messages(recorder, "error") == ["nonce too low"]

    @pytest.mark.asyncio
    async def test_pending_shown_then_replaced_by_confirmed(
        self, manager, provider, backend, session
    ) -> None:
        """Confirmation retires the pending entry; the count does not grow."""
        await manager.unlock(session)
        recorder = EventRecorder(manager.bus)

        provider.get_receipt = AsyncMock(return_value={"status": 1})
        backend.get_history = AsyncMock(
            return_value=[confirmed_record(0xA1, amount="1.5", minute=59)]
        )
        handle = await manager.send(RECIPIENT, "1.5", "BNB")

        shown = manager.displayed_history()
        assert len(shown) == 1
        assert shown[0].is_pending
        assert shown[0].amount == Decimal("1.5")
        assert "Transaction Submitted!" in messages(recorder, "success")

        outcome = await handle.wait()

        assert outcome.state is SettlementState.CONFIRMED
        assert len(manager.tracker) == 0
        shown = manager.displayed_history()
        assert len(shown) == 1
        assert not shown[0].is_pending
        assert shown[0].hash == TX1
        assert "Transaction Confirmed!" in messages(recorder, "success")

        await manager.close()
        backend.log_transaction.assert_awaited_once_with(TX1)

    @pytest.mark.asyncio
    async def test_log_failure_is_swallowed(self, manager, provider, backend, session) -> None:
        await manager.unlock(session)
        provider.get_receipt = AsyncMock(return_value={"status": 1})
        backend.log_transaction = AsyncMock(side_effect=BackendError("down", 503))

        handle = await manager.send(RECIPIENT, "1", "BNB")
        await handle.wait()

        assert len(manager.tracker) == 0
        assert backend.get_history.await_count == 2
        await manager.close()
        backend.log_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_slow_log_does_not_hold_confirmation(
        self, manager, provider, backend, session
    ) -> None:
        await manager.unlock(session)
        provider.get_receipt = AsyncMock(return_value={"status": 1})
        release = asyncio.Event()

        async def slow_log(tx_hash: str) -> None:
            await release.wait()

        backend.log_transaction = AsyncMock(side_effect=slow_log)
        handle = await manager.send(RECIPIENT, "1", "BNB")

        outcome = await asyncio.wait_for(handle.wait(), timeout=2)

        assert outcome.state is SettlementState.CONFIRMED
        assert len(manager.tracker) == 0
        release.set()
        await manager.close()
        backend.log_transaction.assert_awaited_once_with(TX1)

    @pytest.mark.asyncio
    async def test_failed_transfer(self, manager, provider, backend, session) -> None:
        await manager.unlock(session)
        recorder = EventRecorder(manager.bus)
        provider.get_receipt = AsyncMock(return_value={"status": 0})
        balance_calls = provider.get_native_balance.await_count

        handle = await manager.send(RECIPIENT, "1", "BNB")
        outcome = await handle.wait()

        assert outcome.state is SettlementState.FAILED
        assert len(manager.tracker) == 0
        assert "Transaction failed or was dropped." in messages(recorder, "error")
        assert provider.get_native_balance.await_count == balance_calls + 1
        backend.log_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_failure_notifies(self, manager, backend, session) -> None:
        backend.get_history = AsyncMock(side_effect=BackendError("boom", 500))
        recorder = EventRecorder(manager.bus)
        await manager.unlock(session)
        assert "Could not load history." in messages(recorder, "error")
        assert manager.session is session


class TestCancelPending:
    """Tests for WalletManager.cancel_pending."""

    @pytest.mark.asyncio
    async def test_replacement_settles_nonce(self, manager, provider, session) -> None:
        await manager.unlock(session)
        provider.send_raw_transaction = AsyncMock(side_effect=[TX1, TX2])
        original = await manager.send(RECIPIENT, "1", "BNB")

        cancel = await manager.cancel_pending(TX1)
        assert cancel.nonce == original.nonce
        assert len(manager.tracker) == 2

        async def receipt(tx_hash: str):
            return {"status": 1} if tx_hash == TX2 else None

        provider.get_receipt = AsyncMock(side_effect=receipt)
        provider.get_transaction_count = AsyncMock(return_value=original.nonce + 1)

        assert (await cancel.wait()).state is SettlementState.CONFIRMED
        assert (await original.wait()).state is SettlementState.REPLACED
        assert len(manager.tracker) == 0

    @pytest.mark.asyncio
    async def test_replaced_outcome_for_other_wallet_is_ignored(self, manager, session) -> None:
        await manager.unlock(session)
        manager.tracker.add(pending_transfer(5))

        foreign = SettlementOutcome(
            hash=make_hash(5), nonce=0, from_address=OTHER, state=SettlementState.REPLACED
        )
        await manager.bus.emit(TRANSFER_REPLACED, foreign)
        assert len(manager.tracker) == 1

        ours = SettlementOutcome(
            hash=make_hash(5), nonce=0, from_address=TEST_ADDRESS, state=SettlementState.REPLACED
        )
        await manager.bus.emit(TRANSFER_REPLACED, ours)
        assert len(manager.tracker) == 0

    @pytest.mark.asyncio
    async def test_unknown_hash(self, manager, session) -> None:
        await manager.unlock(session)
        with pytest.raises(ValidationError):
            await manager.cancel_pending(make_hash(0xFF))


class TestAssetsAndFees:
    """Tests for asset lookup and fee drafts."""

    def test_get_asset(self, manager) -> None:
        assert manager.get_asset("bnb") == NativeAsset(symbol="BNB")
        token = manager.get_asset("usdt")
        assert isinstance(token, TokenAsset)
        assert token.symbol == "USDT"
        with pytest.raises(ValidationError, match="Unknown asset"):
            manager.get_asset("DOGE")

    @pytest.mark.asyncio
    async def test_update_draft(self, manager, session) -> None:
        await manager.unlock(session)
        manager.update_draft(RECIPIENT, "1", "BNB")
        await manager.fees.wait_idle()
        assert manager.fees.current is not None

        manager.update_draft(RECIPIENT, "1", "DOGE")
        assert manager.fees.current is None

    @pytest.mark.asyncio
    async def test_estimate_fee(self, manager, session) -> None:
        await manager.unlock(session)
        estimate = await manager.estimate_fee(RECIPIENT, "1", "BNB")
        assert estimate.gas_limit == 21000

    @pytest.mark.asyncio
    async def test_add_contact_validates(self, manager, backend, session) -> None:
        await manager.unlock(session)
        with pytest.raises(ValidationError):
            await manager.add_contact("bob", "0x123")
        await manager.add_contact("bob", RECIPIENT)
        backend.add_contact.assert_awaited_once_with(TEST_ADDRESS, "bob", RECIPIENT)
