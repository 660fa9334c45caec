"""Decimal <-> integer base-unit conversion for native coins and ERC-20 tokens."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from crypto_wallet.errors import ValidationError

NATIVE_DECIMALS = 18


def parse_amount(raw: str) -> Decimal:
    """Parse a user-entered amount and require it to be a positive finite number."""
    text = str(raw).strip()
    if not text:
        raise ValidationError("Amount is required.")
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount '{raw}'.") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid amount '{raw}'.")
    if value <= 0:
        raise ValidationError("Amount must be positive.")
    return value


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Scale *amount* to integer base units (wei for native coins).

    Raises :class:`ValidationError` when *amount* has more fractional
    digits than the asset supports.
    """
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {amount} has more than {decimals} decimal places."
        )
    return int(scaled)


def from_base_units(value: int, decimals: int) -> Decimal:
    """Inverse of :func:`to_base_units`."""
    return Decimal(int(value)).scaleb(-decimals)
