# ~/xnft-bridge-harness/src/xnft/cli/main.py
import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..config import HarnessConfig
from ..devnet import DevnetNetwork, dev_account
from ..errors import XnftError
from ..harness import BridgeHarness
from ..rpc import connect_remote, serve_ledgers
from ..sovereign import SovereignKind, derive_sovereign, pallet_sub_account, ss58_encode

console = Console()


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _print_account(title, account, ss58):
    table = Table(title=title)
    table.add_column("Format", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("hex", "0x" + account.hex())
    table.add_row(f"ss58 ({ss58})", ss58_encode(account, ss58))
    console.print(table)


@click.group()
@click.version_option(version="0.1.0", prog_name="xnft")
def cli():
    """xnft - cross-ledger NFT bridging verification harness"""
    pass


@cli.command()
@click.argument('kind', type=click.Choice([k.name.lower() for k in SovereignKind]))
@click.argument('para_id', type=int)
@click.option('--ss58', default=42, show_default=True, help='SS58 address format')
def sovereign(kind, para_id, ss58):
    """Sovereign account of PARA_ID (child: on the relay, sibling: on a parachain)"""
    try:
        account = derive_sovereign(kind, para_id)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    _print_account(f"{kind} sovereign account of parachain {para_id}", account, ss58)


@cli.command('pallet-account')
@click.argument('pallet_id')
@click.option('--sub', type=int, default=None, help='Sub-account index')
@click.option('--ss58', default=42, show_default=True, help='SS58 address format')
def pallet_account_cmd(pallet_id, sub, ss58):
    """Account of pallet PALLET_ID (e.g. aca/aNFT), optionally a sub-account"""
    try:
        account = pallet_sub_account(pallet_id, sub)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    title = f"{pallet_id} account" if sub is None else f"{pallet_id} sub-account #{sub}"
    _print_account(title, account, ss58)


async def _run_demo(config):
    alice, bob = dev_account("//Alice"), dev_account("//Bob")
    async with DevnetNetwork.standard(config) as net:
        harness = BridgeHarness.from_ledgers(await net.connect(), config)
        await harness.setup(alice)
        return await harness.run_scenarios(alice, bob)


async def _run_remote(config):
    alice, bob = dev_account("//Alice"), dev_account("//Bob")
    ledgers = await connect_remote(config)
    try:
        harness = BridgeHarness.from_ledgers(ledgers, config)
        await harness.setup(alice)
        return await harness.run_scenarios(alice, bob)
    finally:
        for ledger in ledgers.values():
            await ledger.disconnect()


def _report(results):
    table = Table(title="Bridge scenarios")
    table.add_column("Scenario", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for result in results:
        verdict = "[bold green]PASS[/bold green]" if result.passed else "[bold red]FAIL[/bold red]"
        table.add_row(result.name, verdict, result.detail)
    console.print(table)

    if not all(r.passed for r in results):
        sys.exit(1)
    console.print(f"\n✅ [bold green]All {len(results)} scenarios passed[/bold green]")


def _load_config(**overrides):
    return HarnessConfig.from_env(**{k: v for k, v in overrides.items() if v is not None})


@cli.command()
@click.option('--block-time', type=float, default=None, help='Seconds between devnet blocks')
@click.option('--verbose', '-v', is_flag=True, help='Log every correlator attempt')
def demo(block_time, verbose):
    """Run the bridge scenarios on an in-process devnet"""
    _configure_logging(verbose)
    try:
        config = _load_config(block_time=block_time)
        console.print("🚀 [bold green]Starting devnet[/bold green] (Relay, Quartz, Karura)\n")
        results = asyncio.run(_run_demo(config))
    except (XnftError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    _report(results)


@cli.command()
@click.option('--verbose', '-v', is_flag=True, help='Log every correlator attempt')
def run(verbose):
    """Run the bridge scenarios against the ledgers at RELAY_URL, RELAY_QUARTZ_URL, RELAY_KARURA_URL"""
    _configure_logging(verbose)
    try:
        config = _load_config()
        console.print(f"🔗 [bold green]Connecting[/bold green] to {config.relay_url or '(RELAY_URL not set)'}\n")
        results = asyncio.run(_run_remote(config))
    except (XnftError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    _report(results)


_URL_VARS = {"Relay": "RELAY_URL", "Quartz": "RELAY_QUARTZ_URL", "Karura": "RELAY_KARURA_URL"}


async def _serve_devnet(config, host, port, duration):
    async with DevnetNetwork.standard(config) as net:
        servers = await serve_ledgers({b.name: b for b in net.ledgers}, host, port)
        try:
            table = Table(title="Devnet endpoints")
            table.add_column("Variable", style="cyan")
            table.add_column("Value", style="green")
            for name, server in servers.items():
                table.add_row(_URL_VARS[name], server.url)
            table.add_row("RELAY_QUARTZ_ID", str(config.quartz_id))
            table.add_row("RELAY_KARURA_ID", str(config.karura_id))
            console.print(table)

            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            for server in servers.values():
                await server.stop()


@cli.command()
@click.option('--host', default='127.0.0.1', show_default=True, help='Interface to bind')
@click.option('--port', type=int, default=9944, show_default=True,
              help='First port; ledgers take consecutive ports (0 picks free ones)')
@click.option('--block-time', type=float, default=None, help='Seconds between devnet blocks')
@click.option('--duration', type=float, default=None, help='Stop after this many seconds')
@click.option('--verbose', '-v', is_flag=True, help='Log every block and request')
def devnet(host, port, block_time, duration, verbose):
    """Serve the in-process devnet over JSON-RPC (one WebSocket per ledger)"""
    _configure_logging(verbose)
    try:
        config = _load_config(block_time=block_time)
        asyncio.run(_serve_devnet(config, host, port, duration))
    except KeyboardInterrupt:
        console.print("\n[yellow]Devnet stopped[/yellow]")
    except (XnftError, ValueError, OSError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
