"""Data model for transfers, balances and fee estimates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crypto_wallet.chain.provider import is_valid_address
from crypto_wallet.chain.units import NATIVE_DECIMALS, parse_amount
from crypto_wallet.errors import ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Assets and transfer requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NativeAsset:
    """The chain's native coin (BNB, ETH, ...)."""

    symbol: str
    decimals: int = NATIVE_DECIMALS

    @property
    def is_native(self) -> bool:
        return True


@dataclass(frozen=True)
class TokenAsset:
    """An ERC-20 token.

    ``decimals`` may be left as ``None``; it is then fetched from the
    contract (and cached by the provider) before amounts are encoded.
    """

    symbol: str
    contract_address: str
    decimals: Optional[int] = None

    @property
    def is_native(self) -> bool:
        return False


Asset = Union[NativeAsset, TokenAsset]


@dataclass(frozen=True)
class TransferRequest:
    """A transfer the user wants to make (also used as the fee-estimation draft)."""

    recipient: str
    amount: str
    asset: Asset

    def validate(self) -> Decimal:
        """Check recipient and amount; return the parsed amount.

        Raises
        ------
        ValidationError
            If the recipient is not a well-formed address or the amount is
            not a positive number.
        """
        if not is_valid_address(self.recipient):
            raise ValidationError(f"Invalid recipient address '{self.recipient}'.")
        return parse_amount(self.amount)

    def is_valid(self) -> bool:
        try:
            self.validate()
        except ValidationError:
            return False
        return True


# ---------------------------------------------------------------------------
# Transfer records
# ---------------------------------------------------------------------------


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class PendingTransfer(BaseModel):
    """A transfer broadcast in this session and not yet settled."""

    model_config = ConfigDict(frozen=True)

    hash: str
    from_address: str
    to_address: str
    amount: Decimal
    asset_symbol: str
    nonce: int
    submitted_at: datetime = Field(default_factory=_utcnow)
    gas_price: Optional[int] = None


class ConfirmedTransferRecord(BaseModel):
    """One entry of the backend's confirmed-history feed.

    Accepts the backend's JSON keys (``from``, ``to``, ``tokenName``) as
    well as the field names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    hash: str
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    amount: Decimal = Decimal(0)
    asset_symbol: str = Field(alias="tokenName")
    timestamp: datetime

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Any:
        if value is None or value == "":
            return Decimal(0)
        return Decimal(str(value))

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DisplayedTransfer(BaseModel):
    """Item of the reconciled history view."""

    model_config = ConfigDict(frozen=True)

    hash: str
    from_address: str
    to_address: str
    amount: Decimal
    asset_symbol: str
    timestamp: datetime
    status: TransferStatus
    nonce: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status is TransferStatus.PENDING

    def is_sent_by(self, address: str) -> bool:
        """True if *address* is the sender (case-insensitive)."""
        return self.from_address.lower() == address.lower()

    @classmethod
    def from_pending(cls, transfer: PendingTransfer) -> DisplayedTransfer:
        return cls(
            hash=transfer.hash,
            from_address=transfer.from_address,
            to_address=transfer.to_address,
            amount=transfer.amount,
            asset_symbol=transfer.asset_symbol,
            timestamp=transfer.submitted_at,
            status=TransferStatus.PENDING,
            nonce=transfer.nonce,
        )

    @classmethod
    def from_confirmed(cls, record: ConfirmedTransferRecord) -> DisplayedTransfer:
        return cls(
            hash=record.hash,
            from_address=record.from_address,
            to_address=record.to_address,
            amount=record.amount,
            asset_symbol=record.asset_symbol,
            timestamp=record.timestamp,
            status=TransferStatus.CONFIRMED,
        )


# ---------------------------------------------------------------------------
# Balances and fees
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceSnapshot:
    """Balances of the active address at one point in time.

    Assets whose fetch failed are absent from the balances and listed in
    ``errors`` instead.
    """

    native_symbol: str
    native_balance: Optional[Decimal] = None
    token_balances: Mapping[str, Decimal] = field(default_factory=dict)
    errors: Mapping[str, str] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=_utcnow)

    def get(self, symbol: str) -> Optional[Decimal]:
        if symbol == self.native_symbol:
            return self.native_balance
        return self.token_balances.get(symbol)


@dataclass(frozen=True)
class FeeEstimate:
    """Estimated network fee for a draft transfer, in native units."""

    amount: Decimal
    amount_wei: int
    gas_price: int
    gas_limit: int
    native_symbol: str
