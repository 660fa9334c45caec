"""High-level wallet manager used by front ends."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from crypto_wallet.backend.client import BackendClient
from crypto_wallet.chain.provider import Web3Provider, is_valid_address
from crypto_wallet.config import WalletClientConfig, get_data_dir, load_config
from crypto_wallet.core.events import (
    SESSION_CHANGED,
    TRANSFER_CONFIRMED,
    TRANSFER_DROPPED,
    TRANSFER_FAILED,
    TRANSFER_REPLACED,
    EventBus,
    WalletEvent,
)
from crypto_wallet.errors import ValidationError, WalletError, WalletLockedError
from crypto_wallet.storage.database import Database, get_database
from crypto_wallet.storage.session_store import SessionStore
from crypto_wallet.wallet.balances import BalanceAggregator
from crypto_wallet.wallet.fees import FeeEstimator
from crypto_wallet.wallet.history import HistoryReconciler
from crypto_wallet.wallet.keys import GeneratedWallet, account_from_mnemonic, create_account
from crypto_wallet.wallet.models import (
    Asset,
    BalanceSnapshot,
    DisplayedTransfer,
    FeeEstimate,
    NativeAsset,
    TokenAsset,
    TransferRequest,
)
from crypto_wallet.wallet.session import WalletSession
from crypto_wallet.wallet.settlement import SettlementOutcome, SubmissionHandle
from crypto_wallet.wallet.submitter import TransactionSubmitter
from crypto_wallet.wallet.tracker import PendingTransactionTracker

logger = logging.getLogger("crypto_wallet.wallet.manager")


class WalletManager:
    """Owns the active session and every component that works against it.

    Front ends read state through the properties here and subscribe to
    :attr:`bus` for changes and notifications; all mutation goes through
    the methods below.
    """

    def __init__(
        self,
        config: WalletClientConfig,
        provider: Web3Provider,
        backend: BackendClient,
        store: SessionStore | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.backend = backend
        self.store = store
        self.bus = bus or EventBus()
        self._db: Database | None = None
        self._session: WalletSession | None = None
        self._log_tasks: set[asyncio.Task] = set()

        self.native = NativeAsset(symbol=provider.chain.native_symbol)
        self.tokens = [
            TokenAsset(
                symbol=t.symbol,
                contract_address=t.contract_address,
                decimals=t.decimals,
            )
            for t in config.tokens
        ]

        self.tracker = PendingTransactionTracker()
        self.history = HistoryReconciler(backend, self.bus)
        self.balances = BalanceAggregator(provider, self.bus, self.tokens)
        self.fees = FeeEstimator(provider, self.bus, config.fees.debounce_seconds)
        self.submitter = TransactionSubmitter(
            provider,
            self.tracker,
            self.bus,
            poll_interval=config.settlement.poll_interval_seconds,
            settlement_timeout=config.settlement.timeout_seconds,
        )

        self.bus.subscribe(TRANSFER_CONFIRMED, self._on_confirmed)
        self.bus.subscribe(TRANSFER_FAILED, self._on_failed)
        self.bus.subscribe(TRANSFER_DROPPED, self._on_failed)
        self.bus.subscribe(TRANSFER_REPLACED, self._on_replaced)

    @classmethod
    async def open(cls, base_path: Path | None = None) -> WalletManager:
        """Build a manager from ``.crypto-wallet/`` under *base_path*."""
        data_dir = get_data_dir(base_path)
        config = load_config(data_dir / "config.yaml")
        chain = config.chain.resolve()
        provider = Web3Provider(
            chain,
            rpc_url=config.chain.rpc_url,
            request_timeout=config.chain.request_timeout_seconds,
        )
        backend = BackendClient(config.backend.api_url, timeout=config.backend.timeout_seconds)
        db = get_database(data_dir)
        await db.connect()

        manager = cls(config, provider, backend, store=SessionStore(db))
        manager._db = db
        return manager

    async def close(self) -> None:
        """Stop background work and release connections. The cached session is kept."""
        await self._reset_state()
        if self._log_tasks:
            await asyncio.gather(*self._log_tasks, return_exceptions=True)
        await self.backend.close()
        if self._db is not None:
            await self._db.close()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def session(self) -> WalletSession | None:
        return self._session

    @property
    def address(self) -> str | None:
        return self._session.address if self._session else None

    def require_session(self) -> WalletSession:
        if self._session is None:
            raise WalletLockedError("Wallet is locked. Log in first.")
        return self._session

    async def create_wallet(
        self,
        name: str,
        password: str,
        mnemonic: str | None = None,
    ) -> GeneratedWallet:
        """Create (or import from *mnemonic*) a wallet and register it with the backend.

        Returns the generated keys so the caller can show the recovery
        phrase once. The wallet is not unlocked; call
        :meth:`login` afterwards.
        """
        wallet_name = name.strip().lower()
        if not wallet_name or not password.strip():
            raise ValidationError("Name and password are required.")

        generated = account_from_mnemonic(mnemonic) if mnemonic else create_account()
        await self.backend.register_wallet(
            name=wallet_name,
            address=generated.address,
            private_key=generated.private_key,
            mnemonic=generated.mnemonic,
            password=password,
        )
        action = "imported" if mnemonic else "created"
        logger.info(f"Wallet '{wallet_name}' {action}: {generated.address}")
        await self.bus.notify("success", f"Wallet {action}! Please log in.")
        return generated

    async def login(self, name: str, password: str) -> WalletSession:
        """Unlock the backend wallet *name* and make it the active session."""
        wallet_name = name.strip().lower()
        if not wallet_name or not password.strip():
            raise ValidationError("Name and password are required.")
        data = await self.backend.access_wallet(wallet_name, password)
        session = WalletSession.from_dict(data)
        await self.unlock(session)
        await self.bus.notify("success", f"Welcome back, {session.name or wallet_name}!")
        return session

    async def unlock(self, session: WalletSession) -> None:
        """Activate *session*, persist it, and load balances and history."""
        await self._reset_state()
        self._session = session
        if self.store is not None:
            await self.store.save(session)
        logger.info(f"Session started for {session.address}")
        await self.bus.emit(SESSION_CHANGED, session)
        await self.refresh_all()

    async def restore(self, refresh: bool = True) -> WalletSession | None:
        """Resume the cached session, if any, optionally reloading its state."""
        if self.store is None:
            return None
        session = await self.store.load()
        if session is None:
            return None
        self._session = session
        logger.info(f"Session restored for {session.address}")
        await self.bus.emit(SESSION_CHANGED, session)
        if refresh:
            await self.refresh_all()
        return session

    async def lock(self) -> None:
        """End the session and forget everything tied to it."""
        await self._reset_state()
        self._session = None
        if self.store is not None:
            await self.store.clear()
        logger.info("Wallet locked")
        await self.bus.emit(SESSION_CHANGED, None)

    async def _reset_state(self) -> None:
        await self.submitter.cancel_watchers()
        self.fees.cancel()
        self.tracker.clear()
        self.history.clear()
        self.balances.clear()

    # ------------------------------------------------------------------
    # Balances and history
    # ------------------------------------------------------------------

    @property
    def balance_snapshot(self) -> BalanceSnapshot | None:
        return self.balances.snapshot

    def displayed_history(self) -> list[DisplayedTransfer]:
        """Pending and confirmed transfers merged, newest first."""
        return self.history.displayed(self.tracker.snapshot())

    async def refresh_balances(self) -> BalanceSnapshot | None:
        session = self.require_session()
        return await self.balances.refresh(session.address)

    async def refresh_history(self) -> None:
        """Reload confirmed history. Failures become an error notification."""
        session = self.require_session()
        try:
            await self.history.refresh(session.address)
        except WalletError as e:
            logger.warning(f"History refresh failed: {e}")
            await self.bus.notify("error", "Could not load history.")

    async def refresh_all(self) -> None:
        await asyncio.gather(self.refresh_balances(), self.refresh_history())

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def get_asset(self, symbol: str) -> Asset:
        """Resolve *symbol* to the native coin or a configured token."""
        wanted = symbol.strip().upper()
        if wanted == self.native.symbol.upper():
            return self.native
        for token in self.tokens:
            if token.symbol.upper() == wanted:
                return token
        raise ValidationError(
            f"Unknown asset '{symbol}'. Available: "
            f"{[self.native.symbol] + [t.symbol for t in self.tokens]}"
        )

    def build_request(self, recipient: str, amount: str, symbol: str) -> TransferRequest:
        return TransferRequest(recipient=recipient.strip(), amount=amount, asset=self.get_asset(symbol))

    async def send(self, recipient: str, amount: str, symbol: str) -> SubmissionHandle:
        """Submit a transfer of *amount* *symbol* to *recipient*.

        Failures are reported as an error notification and re-raised.
        """
        try:
            request = self.build_request(recipient, amount, symbol)
        except ValidationError as e:
            await self.bus.notify("error", str(e))
            raise
        return await self.send_request(request)

    async def send_request(self, request: TransferRequest) -> SubmissionHandle:
        session = self.require_session()
        try:
            handle = await self.submitter.submit(request, session)
        except WalletError as e:
            logger.warning(f"Submission failed: {e}")
            await self.bus.notify("error", str(e))
            raise
        await self.bus.notify("success", "Transaction Submitted!")
        return handle

    async def cancel_pending(self, tx_hash: str) -> SubmissionHandle:
        """Replace a pending transfer with a zero-value self-transfer at the same nonce.

        The original entry stays pending until the node settles the nonce;
        its watcher then resolves it as replaced (or confirmed, if it was
        mined first).
        """
        session = self.require_session()
        original = self.tracker.get(tx_hash)
        if original is None:
            raise ValidationError(f"Transaction {tx_hash} is not pending.")
        try:
            handle = await self.submitter.replace(
                original,
                session,
                fee_bump_percent=self.config.settlement.replacement_fee_bump_percent,
            )
        except WalletError as e:
            await self.bus.notify("error", f"Cancel failed: {e}")
            raise
        await self.bus.notify("info", f"Cancellation submitted for {original.hash}.")
        return handle

    async def estimate_fee(self, recipient: str, amount: str, symbol: str) -> FeeEstimate | None:
        """One immediate, undebounced estimate for the given inputs."""
        session = self.require_session()
        request = self.build_request(recipient, amount, symbol)
        request.validate()
        return await self.fees.estimate(request, session)

    def update_draft(self, recipient: str, amount: str, symbol: str) -> None:
        """Feed the transfer form's current inputs to the fee estimator."""
        try:
            draft = self.build_request(recipient, amount, symbol)
        except ValidationError:
            draft = None
        self.fees.update(draft, self._session)

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def list_contacts(self) -> list[dict]:
        session = self.require_session()
        return await self.backend.list_contacts(session.address)

    async def add_contact(self, name: str, contact_address: str) -> None:
        session = self.require_session()
        if not name.strip() or not is_valid_address(contact_address):
            raise ValidationError("Valid name and address required.")
        await self.backend.add_contact(session.address, name.strip(), contact_address.strip())
        await self.bus.notify("success", "Contact added!")

    async def delete_contact(self, contact_id: str) -> None:
        self.require_session()
        await self.backend.delete_contact(contact_id)
        await self.bus.notify("success", "Contact deleted.")

    # ------------------------------------------------------------------
    # Settlement handlers
    # ------------------------------------------------------------------

    def _owns(self, outcome: SettlementOutcome) -> bool:
        return (
            self._session is not None
            and outcome.from_address.lower() == self._session.address.lower()
        )

    async def _log_transaction(self, tx_hash: str) -> None:
        try:
            await self.backend.log_transaction(tx_hash)
        except Exception as e:
            logger.error(f"Auto-logging failed for tx {tx_hash}: {e}")

    async def _on_confirmed(self, event: WalletEvent) -> None:
        outcome: SettlementOutcome = event.payload
        if not self._owns(outcome):
            return
        self.tracker.remove(outcome.hash)
        await self.bus.notify("success", "Transaction Confirmed!")
        task = asyncio.create_task(self._log_transaction(outcome.hash))
        self._log_tasks.add(task)
        task.add_done_callback(self._log_tasks.discard)
        await self.refresh_all()

    async def _on_failed(self, event: WalletEvent) -> None:
        outcome: SettlementOutcome = event.payload
        if not self._owns(outcome):
            return
        await self.bus.notify("error", "Transaction failed or was dropped.")
        self.tracker.remove(outcome.hash)
        await self.refresh_balances()

    async def _on_replaced(self, event: WalletEvent) -> None:
        outcome: SettlementOutcome = event.payload
        if not self._owns(outcome):
            return
        self.tracker.remove(outcome.hash)
