"""Async Web3 provider for the configured EVM network.

Wraps :class:`web3.AsyncWeb3` so the rest of the package sees plain ints,
hex strings and the wallet exception taxonomy instead of raw RPC errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3Exception, Web3RPCError
from web3.middleware import ExtraDataToPOAMiddleware

from crypto_wallet.chain.chains import Chain
from crypto_wallet.errors import NetworkError, SubmissionRejected

logger = logging.getLogger("crypto_wallet.chain.provider")

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
]

# Transport-level failures, HTTP error statuses included.
_NETWORK_ERRORS = (OSError, asyncio.TimeoutError, aiohttp.ClientError)

# A read has nothing to refuse, so a JSON-RPC error reply is a node fault too.
_READ_ERRORS = _NETWORK_ERRORS + (Web3RPCError,)


def is_valid_address(address: str) -> bool:
    """Return True if *address* is a well-formed EVM address."""
    return isinstance(address, str) and Web3.is_address(address.strip())


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address.strip())


class Web3Provider:
    """Async connection to one EVM chain.

    Parameters
    ----------
    chain:
        Network definition (chain id, native symbol, default RPC URL).
    rpc_url:
        Optional override for ``chain.rpc_url``.
    request_timeout:
        Per-request HTTP timeout in seconds.
    """

    def __init__(
        self,
        chain: Chain,
        rpc_url: str | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.chain = chain
        self.rpc_url = rpc_url or chain.rpc_url
        self._request_timeout = request_timeout
        self._w3: AsyncWeb3 | None = None
        self._decimals_cache: dict[str, int] = {}

    def get_web3(self) -> AsyncWeb3:
        """Return the (cached) AsyncWeb3 instance.

        Injects POA middleware for non-mainnet chains.
        """
        if self._w3 is not None:
            return self._w3

        w3 = AsyncWeb3(
            AsyncHTTPProvider(
                self.rpc_url,
                request_kwargs={
                    "timeout": aiohttp.ClientTimeout(total=self._request_timeout)
                },
            )
        )
        if self.chain.chain_id != 1:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self._w3 = w3
        return w3

    def _token(self, contract_address: str):
        return self.get_web3().eth.contract(
            address=to_checksum(contract_address), abi=ERC20_ABI
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_native_balance(self, address: str) -> int:
        """Native balance in wei."""
        try:
            return await self.get_web3().eth.get_balance(to_checksum(address))
        except _READ_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc

    async def get_gas_price(self) -> int:
        try:
            return await self.get_web3().eth.gas_price
        except _READ_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        """Gas units for *tx*. A node-side refusal raises :class:`SubmissionRejected`."""
        try:
            return await self.get_web3().eth.estimate_gas(tx)
        except _NETWORK_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            raise SubmissionRejected(f"Gas estimation rejected: {exc}") from exc

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        try:
            return await self.get_web3().eth.get_transaction_count(
                to_checksum(address), block
            )
        except _READ_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Receipt for *tx_hash*, or ``None`` while it is not mined."""
        try:
            receipt = await self.get_web3().eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except _READ_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc
        return dict(receipt)

    # ------------------------------------------------------------------
    # ERC-20
    # ------------------------------------------------------------------

    async def get_token_decimals(self, contract_address: str) -> int:
        """Token precision, fetched once per contract and cached."""
        key = contract_address.lower()
        if key in self._decimals_cache:
            return self._decimals_cache[key]
        try:
            decimals = await self._token(contract_address).functions.decimals().call()
        except _READ_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc
        self._decimals_cache[key] = int(decimals)
        return self._decimals_cache[key]

    async def get_token_balance(self, contract_address: str, owner: str) -> int:
        """Token balance in base units."""
        try:
            return await self._token(contract_address).functions.balanceOf(
                to_checksum(owner)
            ).call()
        except _READ_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc

    def encode_transfer(self, contract_address: str, to_address: str, units: int) -> str:
        """ABI-encode ``transfer(to, units)`` call data. No network access."""
        return self._token(contract_address).encode_abi(
            "transfer", args=[to_checksum(to_address), units]
        )

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Broadcast a signed transaction and return its 0x-prefixed hash."""
        try:
            tx_hash = await self.get_web3().eth.send_raw_transaction(raw_tx)
        except _NETWORK_ERRORS as exc:
            raise NetworkError(f"Node request failed: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            raise SubmissionRejected(str(exc)) from exc
        return Web3.to_hex(tx_hash)
