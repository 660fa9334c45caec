"""CLI for crypto-wallet - a custodial EVM wallet from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from crypto_wallet.core.events import NOTIFICATION, WalletEvent
from crypto_wallet.errors import WalletError
from crypto_wallet.wallet.settlement import SettlementState

app = typer.Typer(
    name="crypto-wallet",
    help="Send and track native and token transfers on EVM chains.",
    no_args_is_help=True,
)
console = Console()

_base_dir: Path | None = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"crypto-wallet {version('crypto-wallet')}")
        raise typer.Exit()


@app.callback()
def main(
    base_dir: Path = typer.Option(
        None,
        "--dir",
        "-d",
        help="Directory holding .crypto-wallet/ (defaults to the current directory)",
        envvar="CRYPTO_WALLET_DIR",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Send and track native and token transfers on EVM chains."""
    global _base_dir
    _base_dir = base_dir
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


_LEVEL_STYLES = {"success": "green", "info": "cyan", "error": "red"}


async def _print_notification(event: WalletEvent) -> None:
    note = event.payload
    color = _LEVEL_STYLES.get(note.level, "white")
    console.print(f"[{color}]{note.message}[/{color}]")


async def _open(require_session: bool = True, refresh: bool = False):
    """Open the wallet manager, optionally resuming the cached session."""
    from crypto_wallet.wallet.manager import WalletManager

    manager = await WalletManager.open(_base_dir)
    manager.bus.subscribe(NOTIFICATION, _print_notification)
    if require_session and await manager.restore(refresh=refresh) is None:
        await manager.close()
        console.print("[yellow]Wallet is locked.[/yellow] Run 'crypto-wallet login' first.")
        raise typer.Exit(1)
    return manager


def _fail(e: Exception) -> None:
    console.print(f"[red]{e}[/red]")
    raise typer.Exit(1)


# ------------------------------------------------------------------
# Setup
# ------------------------------------------------------------------


@app.command()
def init(
    chain: str = typer.Option("bsc-testnet", "--chain", "-c", help="Chain preset"),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Override the preset's RPC endpoint"),
    api_url: str = typer.Option("http://localhost:5001", "--api-url", help="Backend ledger URL"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Write .crypto-wallet/config.yaml."""
    from crypto_wallet.chain.chains import list_chain_names
    from crypto_wallet.config import (
        BackendConfig, ChainConfig, WalletClientConfig, get_data_dir, save_config,
    )

    if chain not in list_chain_names():
        console.print(f"[red]Unknown chain '{chain}'.[/red] Available: {', '.join(list_chain_names())}")
        raise typer.Exit(1)

    config_path = get_data_dir(_base_dir) / "config.yaml"
    if config_path.exists() and not force:
        console.print(f"[yellow]Config already exists at {config_path}[/yellow] (use --force)")
        raise typer.Exit(1)

    config = WalletClientConfig(
        chain=ChainConfig(name=chain, rpc_url=rpc_url),
        backend=BackendConfig(api_url=api_url),
    )
    save_config(config, config_path)
    console.print(Panel(
        f"[bold green]Config written.[/bold green]\n\n"
        f"Chain:   [cyan]{chain}[/cyan]\n"
        f"Backend: {api_url}\n"
        f"Tokens:  {', '.join(t.symbol for t in config.tokens)}\n\n"
        f"[dim]{config_path}[/dim]",
        title="crypto-wallet",
    ))


def _prompt_credentials(confirm: bool) -> tuple[str, str]:
    name = console.input("[bold]Wallet name: [/bold]").strip()
    password = console.input("[bold]Password: [/bold]", password=True)
    if confirm:
        again = console.input("[bold]Confirm password: [/bold]", password=True)
        if password != again:
            console.print("[red]Passwords do not match.[/red]")
            raise typer.Exit(1)
    return name, password


def _register(mnemonic: str | None) -> None:
    name, password = _prompt_credentials(confirm=True)

    async def _create():
        manager = await _open(require_session=False)
        try:
            return await manager.create_wallet(name, password, mnemonic=mnemonic)
        finally:
            await manager.close()

    try:
        generated = _run(_create())
    except WalletError as e:
        _fail(e)

    body = f"Address: [cyan]{generated.address}[/cyan]"
    if mnemonic is None:
        body += (
            f"\n\nRecovery phrase:\n[bold]{generated.mnemonic}[/bold]\n\n"
            f"[dim]Write it down. It is not shown again.[/dim]"
        )
    console.print(Panel(body, title=f"Wallet {name}"))


@app.command()
def create():
    """Generate a new wallet and register it with the backend."""
    _register(mnemonic=None)


@app.command("import")
def import_wallet():
    """Import a wallet from its recovery phrase."""
    mnemonic = console.input("[bold]Recovery phrase: [/bold]", password=True)
    _register(mnemonic=mnemonic)


# ------------------------------------------------------------------
# Session
# ------------------------------------------------------------------


@app.command()
def login(name: str = typer.Argument(None, help="Wallet name")):
    """Unlock a wallet and cache the session locally."""
    if name is None:
        name = console.input("[bold]Wallet name: [/bold]").strip()
    password = console.input("[bold]Password: [/bold]", password=True)

    async def _login():
        manager = await _open(require_session=False)
        try:
            session = await manager.login(name, password)
            return session.address, manager.provider.chain
        finally:
            await manager.close()

    try:
        address, chain = _run(_login())
    except WalletError as e:
        _fail(e)
    console.print(Panel(
        f"Address: [cyan]{address}[/cyan]\n"
        f"Chain:   {chain.name}\n"
        f"[dim]{chain.address_url(address)}[/dim]",
        title="Unlocked",
    ))


@app.command()
def lock():
    """Forget the cached session."""

    async def _lock():
        manager = await _open(require_session=False)
        try:
            await manager.lock()
        finally:
            await manager.close()

    _run(_lock())
    console.print("[bold]Wallet locked.[/bold]")


@app.command()
def status():
    """Show the active wallet, chain and backend."""

    async def _status():
        manager = await _open(require_session=False)
        try:
            session = await manager.restore(refresh=False)
            return session, manager.provider.chain, manager.config
        finally:
            await manager.close()

    session, chain, config = _run(_status())
    table = Table(title="crypto-wallet", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    if session is None:
        table.add_row("Session", "[yellow]locked[/yellow]")
    else:
        table.add_row("Wallet", session.name or "-")
        table.add_row("Address", session.address)
    table.add_row("Chain", f"{chain.name} (id {chain.chain_id})")
    table.add_row("RPC", config.chain.rpc_url or chain.rpc_url)
    table.add_row("Backend", config.backend.api_url)
    table.add_row("Tokens", ", ".join(t.symbol for t in config.tokens) or "-")
    console.print(table)


# ------------------------------------------------------------------
# Balances and history
# ------------------------------------------------------------------


@app.command()
def balance():
    """Show native and token balances."""

    async def _balance():
        manager = await _open()
        try:
            snapshot = await manager.refresh_balances()
            return snapshot, manager
        finally:
            await manager.close()

    snapshot, manager = _run(_balance())
    if snapshot is None:
        raise typer.Exit(1)

    table = Table(title="Balances")
    table.add_column("Asset", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Status", style="dim")
    table.add_row(
        snapshot.native_symbol,
        str(snapshot.native_balance) if snapshot.native_balance is not None else "-",
        f"[red]{snapshot.errors[snapshot.native_symbol]}[/red]"
        if snapshot.native_symbol in snapshot.errors else "[green]OK[/green]",
    )
    for token in manager.tokens:
        value = snapshot.token_balances.get(token.symbol)
        err = snapshot.errors.get(token.symbol)
        table.add_row(
            token.symbol,
            str(value) if value is not None else "-",
            f"[red]{err}[/red]" if err else "[green]OK[/green]",
        )
    console.print(table)


@app.command()
def history(limit: int = typer.Option(20, "--limit", "-n", help="Rows to show")):
    """Show pending and confirmed transfers, newest first."""

    async def _history():
        manager = await _open()
        try:
            await manager.refresh_history()
            return manager.displayed_history(), manager.address
        finally:
            await manager.close()

    rows, address = _run(_history())
    if not rows:
        console.print("[dim]No transactions yet.[/dim]")
        return

    table = Table(title="History")
    table.add_column("Time", style="dim")
    table.add_column("Dir")
    table.add_column("Amount", justify="right")
    table.add_column("Asset")
    table.add_column("Counterparty", style="dim")
    table.add_column("Status")
    table.add_column("Hash", style="dim")

    for t in rows[:limit]:
        outgoing = t.is_sent_by(address)
        counterparty = t.to_address if outgoing else t.from_address
        table.add_row(
            t.timestamp.strftime("%Y-%m-%d %H:%M"),
            "[red]OUT[/red]" if outgoing else "[green]IN[/green]",
            str(t.amount),
            t.asset_symbol,
            counterparty[:12] + "...",
            "[yellow]pending[/yellow]" if t.is_pending else "[green]confirmed[/green]",
            t.hash[:14] + "...",
        )
    console.print(table)


# ------------------------------------------------------------------
# Transfers
# ------------------------------------------------------------------


@app.command()
def fee(
    amount: str = typer.Argument(help="Amount to send (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", "-t", help="Recipient address (0x...)"),
    asset: str = typer.Option(None, "--asset", "-a", help="Asset symbol (defaults to the native coin)"),
):
    """Estimate the network fee for a transfer."""

    async def _fee():
        manager = await _open()
        try:
            symbol = asset or manager.native.symbol
            return await manager.estimate_fee(to, amount, symbol)
        finally:
            await manager.close()

    try:
        estimate = _run(_fee())
    except WalletError as e:
        _fail(e)
    if estimate is None:
        console.print("[yellow]Fee estimate unavailable.[/yellow]")
        raise typer.Exit(1)
    console.print(
        f"Estimated fee: [bold]{estimate.amount:.8f} {estimate.native_symbol}[/bold] "
        f"[dim]({estimate.gas_limit} gas @ {estimate.gas_price} wei)[/dim]"
    )


@app.command()
def send(
    amount: str = typer.Argument(help="Amount to send (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", "-t", help="Recipient address (0x...)"),
    asset: str = typer.Option(None, "--asset", "-a", help="Asset symbol (defaults to the native coin)"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait until the transfer settles"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Send native coins or tokens and follow the transfer until it settles."""

    async def _prepare():
        manager = await _open()
        try:
            symbol = asset or manager.native.symbol
            request = manager.build_request(to, amount, symbol)
            request.validate()
            estimate = await manager.estimate_fee(to, amount, symbol)
            return request, estimate, manager.provider.chain
        finally:
            await manager.close()

    try:
        request, estimate, chain = _run(_prepare())
    except WalletError as e:
        _fail(e)

    fee_line = (
        f"{estimate.amount:.8f} {estimate.native_symbol}" if estimate else "unavailable"
    )
    console.print(f"\n[bold]Send {request.amount} {request.asset.symbol} on {chain.name}[/bold]")
    console.print(f"  To:  {request.recipient}")
    console.print(f"  Fee: {fee_line}\n")
    if not yes:
        typer.confirm("Confirm this transaction?", abort=True)

    async def _send():
        manager = await _open()
        try:
            handle = await manager.send_request(request)
            console.print(f"Tx: [cyan]{handle.hash}[/cyan]")
            console.print(f"[dim]{chain.tx_url(handle.hash)}[/dim]")
            if not wait:
                return handle.hash, None
            with console.status("Waiting for confirmation..."):
                outcome = await handle.wait()
            return handle.hash, outcome
        finally:
            await manager.close()

    try:
        tx_hash, outcome = _run(_send())
    except WalletError as e:
        _fail(e)

    if outcome is None:
        return
    if outcome.state is SettlementState.CONFIRMED:
        console.print(Panel(
            f"[bold green]Transfer confirmed.[/bold green]\n\n"
            f"Tx: [cyan]{tx_hash}[/cyan]\n"
            f"Explorer: {chain.tx_url(tx_hash)}",
            title="Transaction Sent",
        ))
    else:
        console.print(f"[red]Transfer {outcome.state.value}: {outcome.reason}[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# contacts sub-commands
# ------------------------------------------------------------------

contacts_app = typer.Typer(
    name="contacts",
    help="Manage saved recipient addresses.",
    no_args_is_help=True,
)
app.add_typer(contacts_app, name="contacts")


@contacts_app.command("list")
def contacts_list():
    """Show saved contacts."""

    async def _list():
        manager = await _open()
        try:
            return await manager.list_contacts()
        finally:
            await manager.close()

    try:
        contacts = _run(_list())
    except WalletError as e:
        _fail(e)

    if not contacts:
        console.print("[dim]No contacts saved.[/dim]")
        return

    table = Table(title="Contacts")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Address")
    for c in contacts:
        table.add_row(str(c.get("_id", "-")), c.get("contactName", "-"), c.get("contactAddress", "-"))
    console.print(table)


@contacts_app.command("add")
def contacts_add(
    name: str = typer.Argument(help="Contact name"),
    address: str = typer.Argument(help="Contact address (0x...)"),
):
    """Save a contact."""

    async def _add():
        manager = await _open()
        try:
            await manager.add_contact(name, address)
        finally:
            await manager.close()

    try:
        _run(_add())
    except WalletError as e:
        _fail(e)


@contacts_app.command("delete")
def contacts_delete(contact_id: str = typer.Argument(help="Contact ID")):
    """Delete a saved contact."""

    async def _delete():
        manager = await _open()
        try:
            await manager.delete_contact(contact_id)
        finally:
            await manager.close()

    try:
        _run(_delete())
    except WalletError as e:
        _fail(e)


if __name__ == "__main__":
    app()
