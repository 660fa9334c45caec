"""EVM chain access: network presets, unit conversion, and the async Web3 provider."""

from crypto_wallet.chain.chains import CHAINS, Chain, get_chain, list_chain_names
from crypto_wallet.chain.provider import Web3Provider, is_valid_address

__all__ = [
    "CHAINS",
    "Chain",
    "Web3Provider",
    "get_chain",
    "is_valid_address",
    "list_chain_names",
]
