"""
CLI entrypoint for the Delta Exchange gateway.

Provides commands for signing, credential diagnostics, read-only venue
queries and a session monitor.
"""
import asyncio
from pathlib import Path
from typing import Optional

import typer

from delta_gateway.config.config import GatewayConfig, load_config
from delta_gateway.config.dotenv_loader import load_dotenv_files
from delta_gateway.domain.models import EmptyResult
from delta_gateway.exceptions import GatewayError, InvalidCredentialFormat
from delta_gateway.exchange.signer import RequestSigner, canonical_path, encode_body
from delta_gateway.gateway import DeltaGateway
from delta_gateway.monitoring.alerting import AlertNotifier
from delta_gateway.monitoring.logger import get_logger, setup_logging

app = typer.Typer(
    name="delta-gateway",
    help="Delta Exchange authenticated gateway",
    add_completion=False,
)

logger = get_logger(__name__)


@app.callback()
def main():
    """Delta Exchange authenticated gateway."""
    # Explicit dotenv loading for local/dev. In prod this is a no-op.
    load_dotenv_files()


def _load(config_path: Optional[Path]) -> GatewayConfig:
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    return config


def _build_gateway(config: GatewayConfig) -> DeltaGateway:
    try:
        gateway = DeltaGateway.from_config(config)
    except InvalidCredentialFormat as e:
        typer.echo(f"❌ Invalid credential: {e}", err=True)
        typer.echo("   Set DELTA_API_KEY and DELTA_API_SECRET (or the exchange section of the config).", err=True)
        raise typer.Exit(2)
    if config.monitoring.alerts_enabled:
        gateway.events.subscribe(AlertNotifier())
    return gateway


def _echo_rows(result, columns) -> None:
    if isinstance(result, EmptyResult):
        typer.echo(f"⚠️  No data ({result.method} {result.path}): {result.error}")
        return
    rows = result if isinstance(result, list) else [result]
    for row in rows:
        if isinstance(row, dict):
            typer.echo("  ".join(f"{c}={row.get(c)}" for c in columns))
        else:
            typer.echo(str(row))
    typer.echo(f"({len(rows)} rows)")


@app.command()
def sign(
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path, /v2 prefix optional"),
    timestamp: int = typer.Option(..., "--timestamp", "-t", help="Unix seconds"),
    body: str = typer.Option("", "--body", help="Raw JSON body"),
    secret: str = typer.Option(..., "--secret", envvar="DELTA_API_SECRET", help="API secret"),
):
    """
    Print the signature for one request (offline).

    Example:
        delta-gateway sign GET /wallet/balances -t 1700000000
    """
    sign_path = canonical_path(path)
    signature = RequestSigner(secret).sign(method, timestamp, sign_path, encode_body(body))
    typer.echo(f"path:      {sign_path}")
    typer.echo(f"timestamp: {timestamp}")
    typer.echo(f"signature: {signature}")


@app.command()
def verify(config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file")):
    """Check that the credential and clock are accepted by the venue."""
    config = _load(config_path)
    gateway = _build_gateway(config)

    async def run_verify():
        try:
            return await gateway.verify_credentials()
        finally:
            await gateway.close()

    check = asyncio.run(run_verify())
    if check.valid:
        typer.echo(f"✅ Credentials valid (clock offset {check.offset_seconds}s)")
        return
    typer.echo(f"❌ {check.error_kind}: {check.message}", err=True)
    if check.error_kind in ("signature_expired", "signature_retries_exhausted"):
        typer.echo("   Clock skew: sync the system clock (NTP) and retry.", err=True)
    elif check.error_kind == "authentication_rejected":
        typer.echo("   Key rejected: check the key, its permissions and IP whitelist.", err=True)
    raise typer.Exit(1)


@app.command()
def products(
    contract_type: Optional[str] = typer.Option(None, "--contract-type", help="e.g. perpetual_futures"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """List tradable products (no session required)."""
    config = _load(config_path)
    gateway = _build_gateway(config)
    query = {"contract_types": contract_type} if contract_type else None

    async def run_products():
        try:
            return await gateway.get_products(query)
        finally:
            await gateway.close()

    _echo_rows(asyncio.run(run_products()), ("id", "symbol", "contract_type", "state"))


async def _with_session(gateway: DeltaGateway, operation):
    try:
        status = await gateway.start()
        if not gateway.session.is_active():
            typer.echo(f"❌ Session not active: {status.state.value} ({status.reason})", err=True)
            raise typer.Exit(1)
        return await operation()
    finally:
        await gateway.close()


@app.command()
def balances(config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file")):
    """Wallet balances (starts a session)."""
    config = _load(config_path)
    gateway = _build_gateway(config)
    result = asyncio.run(_with_session(gateway, gateway.get_balances))
    _echo_rows(result, ("asset_symbol", "balance", "available_balance"))


@app.command()
def positions(config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file")):
    """Venue margined positions (starts a session)."""
    config = _load(config_path)
    gateway = _build_gateway(config)
    result = asyncio.run(_with_session(gateway, gateway.get_positions))
    _echo_rows(result, ("product_symbol", "size", "entry_price", "unrealized_pnl"))


@app.command()
def clock(config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file")):
    """Sync with the venue clock and print the offset."""
    config = _load(config_path)
    gateway = _build_gateway(config)

    async def run_clock():
        try:
            await gateway.clock.sync()
            return gateway.clock.diagnostics()
        finally:
            await gateway.close()

    diagnostics = asyncio.run(run_clock())
    for key, value in diagnostics.to_dict().items():
        typer.echo(f"{key:<24} {value}")


@app.command()
def monitor(
    interval: float = typer.Option(10.0, "--interval", help="Seconds between status lines"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """Start a session with ledger polling and print status until interrupted."""
    config = _load(config_path)
    gateway = _build_gateway(config)

    async def run_monitor():
        try:
            status = await gateway.start(start_polling=True)
            if not gateway.session.is_active():
                typer.echo(f"❌ Session not active: {status.state.value} ({status.reason})", err=True)
                raise typer.Exit(1)
            while gateway.session.is_active():
                metrics = gateway.risk_metrics()
                typer.echo(
                    f"state={gateway.state.value} open={len(gateway.positions(open_only=True))} "
                    f"equity={metrics.total_equity} drawdown={metrics.current_drawdown_pct:.2f}% "
                    f"offset={gateway.clock.offset_seconds}s"
                )
                await asyncio.sleep(interval)
        finally:
            await gateway.stop(reason="monitor exit")
            await gateway.close()

    try:
        asyncio.run(run_monitor())
    except KeyboardInterrupt:
        typer.echo("\nMonitor stopped")
    except GatewayError as e:
        typer.echo(f"❌ {e.kind}: {e}", err=True)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
