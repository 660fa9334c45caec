"""
Shared fixtures for wallet client tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account

from crypto_wallet.chain.chains import get_chain
from crypto_wallet.core.events import EventBus, WalletEvent
from crypto_wallet.wallet.models import (
    ConfirmedTransferRecord,
    NativeAsset,
    PendingTransfer,
    TokenAsset,
)
from crypto_wallet.wallet.session import WalletSession

# Well-known throwaway key (not for production use!).
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address
RECIPIENT = "0x000000000000000000000000000000000000dEaD"
OTHER = "0x1111111111111111111111111111111111111111"

BNB = NativeAsset(symbol="BNB")
USDT = TokenAsset(
    symbol="USDT",
    contract_address="0x787A697324dbA4AB965C58CD33c13ff5eeA6295F",
    decimals=18,
)
USDC = TokenAsset(
    symbol="USDC",
    contract_address="0x342e3aA1248AB77E319e3331C6fD3f1F2d4B36B1",
    decimals=18,
)


def make_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def at(minute: int) -> datetime:
    return datetime(2024, 5, 1, 12, minute, tzinfo=timezone.utc)


def pending_transfer(n: int, minute: int = 0, nonce: int = 0, **kwargs) -> PendingTransfer:
    data = dict(
        hash=make_hash(n),
        from_address=TEST_ADDRESS,
        to_address=RECIPIENT,
        amount=Decimal("1"),
        asset_symbol="BNB",
        nonce=nonce,
        submitted_at=at(minute),
        gas_price=5 * 10**9,
    )
    data.update(kwargs)
    return PendingTransfer(**data)


def confirmed_record(n: int, minute: int = 0, **kwargs) -> ConfirmedTransferRecord:
    data = {
        "hash": make_hash(n),
        "from": TEST_ADDRESS,
        "to": RECIPIENT,
        "amount": "1",
        "tokenName": "BNB",
        "timestamp": at(minute).isoformat(),
    }
    data.update(kwargs)
    return ConfirmedTransferRecord.model_validate(data)


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[WalletEvent] = []
        bus.set_global_listener(self._record)

    async def _record(self, event: WalletEvent) -> None:
        self.events.append(event)

    def topics(self) -> list[str]:
        return [e.topic for e in self.events]

    def payloads(self, topic: str) -> list:
        return [e.payload for e in self.events if e.topic == topic]


@pytest.fixture
def session() -> WalletSession:
    return WalletSession(address=TEST_ADDRESS, private_key=TEST_PRIVATE_KEY, name="alice")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def provider():
    """Mock node provider on BSC testnet."""
    p = MagicMock()
    p.chain = get_chain("bsc-testnet")
    p.get_native_balance = AsyncMock(return_value=2 * 10**18)
    p.get_gas_price = AsyncMock(return_value=5 * 10**9)
    p.estimate_gas = AsyncMock(return_value=21000)
    p.get_transaction_count = AsyncMock(return_value=7)
    p.get_receipt = AsyncMock(return_value=None)
    p.get_token_decimals = AsyncMock(return_value=18)
    p.get_token_balance = AsyncMock(return_value=10**18)
    p.send_raw_transaction = AsyncMock(return_value=make_hash(0xA1))
    p.encode_transfer = MagicMock(return_value="0xa9059cbb")
    return p


@pytest.fixture
def backend():
    """Mock backend ledger client."""
    b = MagicMock()
    b.get_history = AsyncMock(return_value=[])
    b.log_transaction = AsyncMock()
    b.register_wallet = AsyncMock()
    b.access_wallet = AsyncMock(
        return_value={"name": "alice", "address": TEST_ADDRESS, "privateKey": TEST_PRIVATE_KEY}
    )
    b.list_contacts = AsyncMock(return_value=[])
    b.add_contact = AsyncMock()
    b.delete_contact = AsyncMock()
    b.close = AsyncMock()
    return b
