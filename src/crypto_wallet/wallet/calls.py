"""Transaction shapes for native and token transfers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from crypto_wallet.chain.provider import Web3Provider, to_checksum
from crypto_wallet.chain.units import to_base_units
from crypto_wallet.wallet.models import TokenAsset, TransferRequest


async def build_transfer_call(
    provider: Web3Provider,
    request: TransferRequest,
    amount: Decimal,
    from_address: str,
) -> dict[str, Any]:
    """Return the ``from``/``to``/``value``/``data`` fields for *request*.

    Native transfers move value directly to the recipient. Token
    transfers call ``transfer(recipient, units)`` on the token contract;
    the token's precision is fetched (or taken from the provider cache)
    when the asset does not carry it.
    """
    asset = request.asset
    if isinstance(asset, TokenAsset):
        decimals = asset.decimals
        if decimals is None:
            decimals = await provider.get_token_decimals(asset.contract_address)
        units = to_base_units(amount, decimals)
        return {
            "from": to_checksum(from_address),
            "to": to_checksum(asset.contract_address),
            "value": 0,
            "data": provider.encode_transfer(asset.contract_address, request.recipient, units),
        }

    return {
        "from": to_checksum(from_address),
        "to": to_checksum(request.recipient),
        "value": to_base_units(amount, asset.decimals),
    }
