"""CLI for the Moonwell risk engine."""

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from enum import StrEnum
from pathlib import Path

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from moonwell_risk.config import EngineSettings, load_settings
from moonwell_risk.core.health import RiskLevel, classify_risk
from moonwell_risk.core.models import BalanceBreakdown, MorphoMarketFilters, MorphoVaultFilters, UserPosition
from moonwell_risk.data import get_chain_id
from moonwell_risk.engine import MoonwellRiskEngine
from moonwell_risk.errors import MoonwellError, format_error_response
from moonwell_risk.monitor import HealthMonitor
from moonwell_risk.pricing import DeFiLlamaPricing
from moonwell_risk.protocols import MoonwellCoreMarket, MorphoGraphQLClient
from moonwell_risk.rpc import RetryConfig

# Install rich traceback handler
install(show_locals=False)

app = typer.Typer(
    name="moonwell-risk",
    help="Inspect Moonwell positions, balances and liquidation risk on Base",
    add_completion=False,
)

console = Console()

RISK_STYLES = {
    RiskLevel.SAFE: "green",
    RiskLevel.MODERATE: "yellow",
    RiskLevel.HIGH: "dark_orange",
    RiskLevel.CRITICAL: "bold red",
}


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


# Shared options
ADDRESS_OPTION = typer.Option(None, "--address", "-a", help="Address to inspect read-only")
CONFIG_OPTION = typer.Option(None, "--config", help="Settings YAML file")
FORMAT_OPTION = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format")


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _build_engine(settings: EngineSettings, address: str | None) -> tuple[MoonwellRiskEngine, object]:
    """
    Connect to the configured network and assemble an engine.

    A given address is watched read-only; otherwise the configured account
    alias signs, and without either the engine runs in read-only mode.
    """
    # Ape is only needed once a network connection is made
    from moonwell_risk.protocols.wallet import ApeWallet, WatchWallet
    from moonwell_risk.rpc.provider import ApeRPCProvider

    retry = RetryConfig(max_retries=settings.retry_attempts)
    provider = ApeRPCProvider(network=settings.network, rpc_url=settings.rpc_url, retry_config=retry)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"Connecting to {settings.network}...", total=None)
        provider.connect()

    wallet = None
    if address:
        wallet = WatchWallet(address)
    elif settings.account_alias:
        wallet = ApeWallet(settings.account_alias)

    engine = MoonwellRiskEngine(
        core_market=MoonwellCoreMarket(
            rpc_provider=provider,
            network=settings.network,
            retry_config=retry,
            blocks_per_year=settings.blocks_per_year,
        ),
        morpho_client=MorphoGraphQLClient(
            chain_id=get_chain_id(settings.network),
            base_url=settings.morpho_api_url,
            timeout=settings.request_timeout,
        ),
        wallet=wallet,
        pricing=DeFiLlamaPricing(base_url=settings.defillama_url, timeout=settings.request_timeout),
        settings=settings,
    )
    return engine, provider


@contextmanager
def _session(config: Path | None, address: str | None) -> Iterator[MoonwellRiskEngine]:
    """Yield a connected engine; render engine errors and exit non-zero."""
    provider = None
    engine = None
    try:
        settings = load_settings(config)
        engine, provider = _build_engine(settings, address)
        yield engine
    except MoonwellError as e:
        console.print(f"[bold red]Error:[/bold red] {format_error_response(e)}")
        raise typer.Exit(code=1) from e
    finally:
        if engine is not None:
            engine.close()
        if provider is not None:
            provider.disconnect()


def _output_json(model: BaseModel | list[BaseModel]) -> None:
    """Output models as JSON."""
    if isinstance(model, list):
        data = [m.model_dump(mode="json") for m in model]
    else:
        data = model.model_dump(mode="json")
    console.print(json.dumps(data, indent=2))


def _usd(value: Decimal) -> str:
    return f"-${abs(value):,.2f}" if value < 0 else f"${value:,.2f}"


def _pct(value: Decimal) -> str:
    return f"{value * 100:.2f}%"


def _health(value: Decimal) -> str:
    style = RISK_STYLES[classify_risk(value)]
    return f"[{style}]{value}[/{style}]"


def _output_position(position: UserPosition) -> None:
    table = Table(title="Moonwell Core Position", show_header=True, header_style="bold magenta")
    table.add_column("Side", style="yellow")
    table.add_column("Asset", style="cyan")
    table.add_column("Balance", style="white", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")
    table.add_column("APY", style="blue", justify="right")
    table.add_column("Collateral", style="white")

    for supply in position.supplies:
        collateral = "✓" if supply.is_collateral else ""
        table.add_row("Supply", supply.symbol, f"{supply.balance:,.6f}", _usd(supply.balance_in_usd), _pct(supply.apy), collateral)
    for borrow in position.borrows:
        table.add_row("Borrow", borrow.symbol, f"{borrow.balance:,.6f}", _usd(borrow.balance_in_usd), _pct(borrow.apy), "")

    if position.supplies or position.borrows:
        console.print(table)
    else:
        console.print("\n[yellow]No Moonwell core positions found[/yellow]")

    summary_table = Table(show_header=False, box=None)
    summary_table.add_column("Label", style="bold")
    summary_table.add_column("Value", style="bold green")
    summary_table.add_row("Collateral:", _usd(position.total_supplied))
    summary_table.add_row("Borrowed:", _usd(position.total_borrowed))
    summary_table.add_row("Available to borrow:", _usd(position.available_to_borrow))
    summary_table.add_row("Liquidation threshold:", _pct(position.liquidation_threshold))
    summary_table.add_row("Health factor:", _health(position.health_factor))
    console.print(summary_table)


def _output_breakdown(breakdown: BalanceBreakdown) -> None:
    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Source", style="cyan")
    table.add_column("Token", style="green")
    table.add_column("Balance", style="white", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")
    table.add_column("APY", style="blue", justify="right")

    rows = breakdown.wallet_balances + breakdown.core_positions + breakdown.morpho_positions + breakdown.vault_positions
    for balance in rows:
        apy = _pct(balance.apy) if balance.apy is not None else "-"
        table.add_row(str(balance.source), balance.symbol, f"{balance.balance:,.6f}", _usd(balance.balance_in_usd), apy)
    console.print(table)

    totals = Table(show_header=False, box=None)
    totals.add_column("Label", style="bold")
    totals.add_column("Value", style="bold green")
    totals.add_row("Wallet:", _usd(breakdown.total_wallet_value_in_usd))
    totals.add_row("Moonwell core:", _usd(breakdown.total_core_value_in_usd))
    totals.add_row("Isolated markets:", _usd(breakdown.total_morpho_value_in_usd))
    totals.add_row("Vaults:", _usd(breakdown.total_vault_value_in_usd))
    totals.add_row("Total:", _usd(breakdown.total_balance_in_usd))
    console.print(totals)

    if breakdown.failed_sources:
        failed = ", ".join(str(s) for s in breakdown.failed_sources)
        console.print(f"[yellow]Unavailable sources: {failed}[/yellow]")


@app.command()
def position(
    address: str | None = ADDRESS_OPTION,
    config: Path | None = CONFIG_OPTION,
    format: OutputFormat = FORMAT_OPTION,
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the position cache"),
) -> None:
    """
    Show the Moonwell core position and health factor.

    Examples:

        moonwell-risk position --address 0xABC...

        moonwell-risk position --format json
    """
    with _session(config, address) as engine:
        result = engine.get_user_position(force_refresh=refresh)
        if format == OutputFormat.JSON:
            _output_json(result)
        else:
            _output_position(result)


@app.command()
def balances(
    address: str | None = ADDRESS_OPTION,
    config: Path | None = CONFIG_OPTION,
    format: OutputFormat = FORMAT_OPTION,
) -> None:
    """Show balances across wallet, core market, isolated markets and vaults."""
    with _session(config, address) as engine:
        result = engine.get_all_user_balances()
        if format == OutputFormat.JSON:
            _output_json(result)
        else:
            _output_breakdown(result)


@app.command()
def summary(
    address: str | None = ADDRESS_OPTION,
    config: Path | None = CONFIG_OPTION,
    format: OutputFormat = FORMAT_OPTION,
) -> None:
    """Show the portfolio summary across every market."""
    with _session(config, address) as engine:
        data = engine.get_comprehensive_user_data()
        if format == OutputFormat.JSON:
            _output_json(data)
            return

        s = data.portfolio_summary
        table = Table(title=f"Portfolio for {data.user_address[:10]}...{data.user_address[-8:]}", show_header=False)
        table.add_column("Label", style="bold")
        table.add_column("Value", style="bold green", justify="right")
        table.add_row("Net worth", _usd(s.total_net_worth))
        table.add_row("Supplied", _usd(s.total_supplied))
        table.add_row("Borrowed", _usd(s.total_borrowed))
        table.add_row("Rewards", _usd(s.total_rewards_value))
        table.add_row("Overall health factor", _health(s.overall_health_factor))
        table.add_row("Lowest health factor", _health(s.lowest_health_factor))
        table.add_row("Avg supply APY", _pct(s.weighted_average_supply_apy))
        table.add_row("Avg borrow APY", _pct(s.weighted_average_borrow_apy))
        table.add_row("", "")
        table.add_row("[bold]By risk:[/bold]", "")
        for level, value in s.risk_distribution.model_dump().items():
            table.add_row(f"  {level}", _usd(value))
        table.add_row("[bold]By market:[/bold]", "")
        for market, value in s.market_distribution.model_dump().items():
            table.add_row(f"  {market}", _usd(value))
        console.print(table)

        if data.degraded:
            console.print(f"[yellow]Degraded: {', '.join(data.degraded)}[/yellow]")


@app.command()
def markets(
    asset: str | None = typer.Argument(None, help="Single asset symbol"),
    config: Path | None = CONFIG_OPTION,
    format: OutputFormat = FORMAT_OPTION,
) -> None:
    """Show Moonwell core market rates, liquidity and prices."""
    with _session(config, None) as engine:
        result = engine.get_market_data(asset)
        if format == OutputFormat.JSON:
            _output_json(result)
            return

        table = Table(title="Moonwell Core Markets", show_header=True, header_style="bold magenta")
        table.add_column("Asset", style="cyan")
        table.add_column("Price", style="white", justify="right")
        table.add_column("Supply APY", style="green", justify="right")
        table.add_column("Borrow APY", style="yellow", justify="right")
        table.add_column("Utilization", style="white", justify="right")
        table.add_column("Liquidity", style="white", justify="right")
        table.add_column("Collateral Factor", style="blue", justify="right")
        for market in result:
            table.add_row(
                market.symbol,
                _usd(market.price_in_usd),
                _pct(market.supply_apy),
                _pct(market.borrow_apy),
                _pct(market.utilization_rate),
                f"{market.liquidity_available:,.2f}",
                _pct(market.collateral_factor),
            )
        console.print(table)


@app.command()
def vaults(
    asset: str | None = typer.Option(None, "--asset", help="Underlying asset symbol"),
    min_apy: float | None = typer.Option(None, "--min-apy", help="Minimum APY as a fraction"),
    isolated: bool = typer.Option(False, "--isolated", help="List isolated markets instead of vaults"),
    config: Path | None = CONFIG_OPTION,
    format: OutputFormat = FORMAT_OPTION,
) -> None:
    """Show Moonwell vaults or isolated markets."""
    min_apy_dec = Decimal(str(min_apy)) if min_apy is not None else None
    with _session(config, None) as engine:
        if isolated:
            result = engine.get_morpho_markets(MorphoMarketFilters(loan_token=asset, min_supply_apy=min_apy_dec))
        else:
            result = engine.get_morpho_vaults(MorphoVaultFilters(asset=asset, min_apy=min_apy_dec))

        if format == OutputFormat.JSON:
            _output_json(result)
            return

        table = Table(show_header=True, header_style="bold magenta")
        if isolated:
            table.title = "Isolated Markets"
            table.add_column("Loan", style="cyan")
            table.add_column("Collateral", style="cyan")
            table.add_column("LLTV", style="white", justify="right")
            table.add_column("Supply APY", style="green", justify="right")
            table.add_column("Borrow APY", style="yellow", justify="right")
            table.add_column("Liquidity", style="white", justify="right")
            for market in result:
                collateral = market.collateral_token.symbol if market.collateral_token else "-"
                table.add_row(
                    market.loan_token.symbol,
                    collateral,
                    _pct(market.lltv),
                    _pct(market.supply_apy),
                    _pct(market.borrow_apy),
                    _usd(market.liquidity_usd),
                )
        else:
            table.title = "Vaults"
            table.add_column("Vault", style="cyan")
            table.add_column("Asset", style="green")
            table.add_column("APY", style="yellow", justify="right")
            table.add_column("TVL", style="bold green", justify="right")
            for vault in result:
                table.add_row(vault.name, vault.asset.symbol, _pct(vault.apy), _usd(vault.total_assets_usd))
        console.print(table)


@app.command()
def monitor(
    address: str | None = ADDRESS_OPTION,
    config: Path | None = CONFIG_OPTION,
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between checks"),
    once: bool = typer.Option(False, "--once", help="Run a single check and exit"),
) -> None:
    """Watch the health factor and warn when it drops below the alert threshold."""
    with _session(config, address) as engine:
        health_monitor = HealthMonitor(engine, interval=interval)
        if once:
            result = health_monitor.check_once()
            console.print(f"Health factor: {_health(result.health_factor)}")
            return

        if not health_monitor.start():
            console.print("[yellow]Nothing to monitor: pass --address or configure an account alias[/yellow]")
            raise typer.Exit(code=1)

        console.print(f"[bold cyan]Monitoring {engine.account}[/bold cyan] (Ctrl+C to stop)")
        try:
            while health_monitor.running:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            health_monitor.stop()


if __name__ == "__main__":
    app()
