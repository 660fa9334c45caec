"""The unlocked wallet identity that every wallet operation runs against."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount

from crypto_wallet.chain.provider import is_valid_address, to_checksum
from crypto_wallet.errors import ValidationError


@dataclass(frozen=True)
class WalletSession:
    """Address and signing key of one unlocked wallet.

    Immutable: unlocking again produces a new session object. ``repr``
    never includes the private key.
    """

    address: str
    private_key: str = field(repr=False)
    name: str = ""

    def __post_init__(self) -> None:
        if not is_valid_address(self.address):
            raise ValidationError(f"Invalid wallet address '{self.address}'.")
        object.__setattr__(self, "address", to_checksum(self.address))

    @property
    def account(self) -> LocalAccount:
        """Signer built from the session key."""
        return Account.from_key(self.private_key)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WalletSession:
        """Build a session from the backend's wallet payload.

        The backend uses ``privateKey``; ``private_key`` is accepted too.
        """
        key = data.get("privateKey") or data.get("private_key")
        if not key or not data.get("address"):
            raise ValidationError("Wallet data is missing an address or private key.")
        return cls(address=data["address"], private_key=key, name=data.get("name", ""))

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "address": self.address, "privateKey": self.private_key}
