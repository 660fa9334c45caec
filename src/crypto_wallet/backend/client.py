"""HTTP client for the backend ledger service.

The backend stores wallets, confirmed transfer history and contacts. All
endpoints speak JSON; error responses carry ``{"error": "..."}``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
import pydantic

from crypto_wallet.errors import BackendError, NetworkError
from crypto_wallet.wallet.models import ConfirmedTransferRecord

logger = logging.getLogger("crypto_wallet.backend")


class BackendClient:
    """Async client for the ledger service.

    Parameters
    ----------
    base_url:
        Service root, e.g. ``http://localhost:5001``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"Backend unreachable: {exc}") from exc

        try:
            data = resp.json() if resp.content else None
        except ValueError:
            data = None

        if resp.is_error:
            message = ""
            if isinstance(data, dict):
                message = str(data.get("error") or "")
            raise BackendError(
                message or f"Backend returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return data

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_history(self, address: str) -> list[ConfirmedTransferRecord]:
        """Confirmed transfers involving *address*, as reported by the backend."""
        data = await self._request("GET", f"/api/history/{address}")
        if not isinstance(data, list):
            raise BackendError("History response is not a list.")
        records: list[ConfirmedTransferRecord] = []
        for item in data:
            try:
                records.append(ConfirmedTransferRecord.model_validate(item))
            except pydantic.ValidationError as exc:
                logger.warning(f"Skipping malformed history entry: {exc}")
        return records

    async def log_transaction(self, tx_hash: str) -> None:
        """Ask the backend to record a confirmed transaction (idempotent)."""
        await self._request("POST", f"/api/tx/{tx_hash}")

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def register_wallet(
        self,
        name: str,
        address: str,
        private_key: str,
        mnemonic: str,
        password: str,
    ) -> None:
        """Store a newly created or imported wallet under *name*."""
        await self._request(
            "POST",
            "/api/wallet",
            json={
                "name": name,
                "address": address,
                "privateKey": private_key,
                "mnemonic": mnemonic,
                "password": password,
            },
        )

    async def access_wallet(self, name: str, password: str) -> dict[str, Any]:
        """Unlock the wallet called *name*; returns its stored wallet data."""
        data = await self._request("POST", f"/api/wallet/{name}", json={"password": password})
        if not isinstance(data, dict):
            raise BackendError("Wallet response is not an object.")
        return data

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def list_contacts(self, address: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/api/contacts/{address}")
        return data if isinstance(data, list) else []

    async def add_contact(self, wallet_address: str, name: str, contact_address: str) -> None:
        await self._request(
            "POST",
            "/api/contacts",
            json={
                "walletAddress": wallet_address,
                "contactName": name,
                "contactAddress": contact_address,
            },
        )

    async def delete_contact(self, contact_id: str) -> None:
        await self._request("DELETE", f"/api/contacts/{contact_id}")
