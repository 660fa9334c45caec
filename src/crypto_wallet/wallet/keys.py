"""Key generation for new and imported wallets using eth-account."""

from __future__ import annotations

from dataclasses import dataclass, field

from eth_account import Account

from crypto_wallet.errors import ValidationError

Account.enable_unaudited_hdwallet_features()


@dataclass(frozen=True)
class GeneratedWallet:
    address: str
    private_key: str = field(repr=False)
    mnemonic: str = field(repr=False)


def create_account() -> GeneratedWallet:
    """Generate a fresh keypair together with its BIP-39 mnemonic."""
    acct, mnemonic = Account.create_with_mnemonic()
    return GeneratedWallet(
        address=acct.address,
        private_key="0x" + acct.key.hex().removeprefix("0x"),
        mnemonic=mnemonic,
    )


def account_from_mnemonic(mnemonic: str) -> GeneratedWallet:
    """Recover the first account of a BIP-39 mnemonic.

    Raises
    ------
    ValidationError
        If the phrase is not a valid mnemonic.
    """
    phrase = " ".join(mnemonic.split())
    try:
        acct = Account.from_mnemonic(phrase)
    except Exception as exc:
        raise ValidationError("Invalid mnemonic phrase.") from exc
    return GeneratedWallet(
        address=acct.address,
        private_key="0x" + acct.key.hex().removeprefix("0x"),
        mnemonic=phrase,
    )
