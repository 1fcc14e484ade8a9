"""CLI package for zescrow."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from importlib import metadata
from pathlib import Path

import typer

from zescrow.core import (
    AdapterSecrets,
    BalanceAggregator,
    BalanceView,
    ConfigContext,
    ConfigManager,
    ConfigurationError,
    build_aggregator,
    default_config_dir,
)
from zescrow.session import (
    ConfiguredWalletConnector,
    DemoWalletConnector,
    SessionState,
    WalletConnector,
    WalletSession,
    WalletSessionManager,
)

from .branding import balance_table, themed_console

app = typer.Typer(help="zescrow wallet session and balance tools", no_args_is_help=True)
credentials_app = typer.Typer(help="Manage encrypted adapter credentials", no_args_is_help=True)
app.add_typer(credentials_app, name="credentials")

CLI_CONSOLE = themed_console()


def styled_echo(message: str = "", *, nl: bool = True) -> None:
    """Print using the zescrow themed console."""
    CLI_CONSOLE.print(message, end="" if not nl else "\n")


def _echo_err(message: str) -> None:
    typer.echo(message, err=True)


def _configure_logging(verbose: bool, log_dir: Path | None) -> None:
    root_logger = logging.getLogger()
    if verbose:
        if not root_logger.handlers:
            logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        root_logger.setLevel(logging.DEBUG)
    else:
        if root_logger.handlers:
            root_logger.setLevel(logging.WARNING)
        else:
            logging.basicConfig(level=logging.WARNING, format="%(message)s")
    if verbose and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / "zescrow.log", encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)


def _load_config(config_file: Path | None) -> ConfigContext:
    manager = ConfigManager(config_dir=default_config_dir(), override_config_path=config_file, echo_fn=_echo_err)
    try:
        return manager.ensure(interactive=sys.stdin.isatty())
    except ConfigurationError as exc:
        styled_echo(f"[zescrow.error]❌ {exc}[/]")
        raise typer.Exit(code=1) from exc


async def _connect_and_aggregate(
    connector: WalletConnector,
    aggregator: BalanceAggregator,
    *,
    session_ttl_secs: float,
) -> tuple[WalletSession, BalanceView | None]:
    manager = WalletSessionManager(connector, aggregator, session_ttl_secs=session_ttl_secs)
    session = await manager.connect()
    if session.state is not SessionState.AUTHENTICATED:
        return session, None
    return session, await manager.wait_for_balance()


@app.command()
def balance(
    zcash_address: str | None = typer.Option(None, "--zcash-address", help="Zcash address to query"),  # noqa: B008
    near_account: str | None = typer.Option(None, "--near-account", help="NEAR account id to query"),  # noqa: B008
    timeout: float | None = typer.Option(None, "--timeout", min=0.1, help="Aggregation deadline in seconds"),  # noqa: B008
    as_json: bool = typer.Option(False, "--json", help="Print the balance payload as JSON"),  # noqa: B008
    demo: bool = typer.Option(False, "--demo", help="Connect a throwaway demo wallet"),  # noqa: B008
    config: Path | None = typer.Option(None, "--config", help="Use an alternate config file"),  # noqa: B008
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),  # noqa: B008
) -> None:
    """Connect the escrow wallet and print its merged balance."""
    _configure_logging(verbose, default_config_dir() / "logs")
    context = _load_config(config)
    cfg = context.config
    aggregator = build_aggregator(cfg, context.secrets)
    if timeout is not None:
        aggregator.timeout = timeout

    connector: WalletConnector
    if demo:
        connector = DemoWalletConnector(near_account_id=near_account or cfg.near_account_id)
    else:
        connector = ConfiguredWalletConnector(
            zcash_address=zcash_address or cfg.zcash_address,
            near_account_id=near_account or cfg.near_account_id,
        )

    session, view = asyncio.run(
        _connect_and_aggregate(connector, aggregator, session_ttl_secs=cfg.session_ttl_secs)
    )
    if session.state is not SessionState.AUTHENTICATED:
        reason = session.error.value if session.error else "unknown error"
        styled_echo(f"[zescrow.error]❌ Wallet connection failed ({reason}). Check the configured addresses and retry.[/]")
        raise typer.Exit(code=1)
    view = view or BalanceView.unavailable()

    if as_json:
        typer.echo(json.dumps(view.to_payload(), indent=2))
    else:
        CLI_CONSOLE.print(balance_table(session, view))
    if not view.is_available:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),  # noqa: B008
    port: int = typer.Option(8000, "--port", help="Port to listen on"),  # noqa: B008
    demo: bool = typer.Option(False, "--demo", help="Connect throwaway demo wallets"),  # noqa: B008
    config: Path | None = typer.Option(None, "--config", help="Use an alternate config file"),  # noqa: B008
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),  # noqa: B008
) -> None:
    """Serve the balance and session HTTP API."""
    import uvicorn

    from zescrow.api import create_app

    _configure_logging(verbose, default_config_dir() / "logs")
    context = _load_config(config)
    application = create_app(context.config, secrets=context.secrets, demo=demo)
    uvicorn.run(application, host=host, port=port, log_level="debug" if verbose else "info")


@credentials_app.command("set")
def set_credentials(
    zcash_rpc_password: str | None = typer.Option(None, "--zcash-rpc-password", help="zcashd RPC password"),  # noqa: B008
    zcash_api_key: str | None = typer.Option(None, "--zcash-api-key", help="API key for a hosted Zcash RPC"),  # noqa: B008
    near_api_key: str | None = typer.Option(None, "--near-api-key", help="API key for a hosted NEAR RPC"),  # noqa: B008
    passphrase: str | None = typer.Option(None, "--passphrase", envvar="ZESCROW_PASSPHRASE", help="Encryption passphrase"),  # noqa: B008
) -> None:
    """Store adapter secrets encrypted under a passphrase."""
    secrets = AdapterSecrets(
        zcash_rpc_password=zcash_rpc_password,
        zcash_api_key=zcash_api_key,
        near_api_key=near_api_key,
    )
    if not secrets.as_dict():
        styled_echo("[zescrow.error]❌ Provide at least one secret to store.[/]")
        raise typer.Exit(code=2)
    manager = ConfigManager(config_dir=default_config_dir(), echo_fn=styled_echo)
    if not passphrase:
        if manager.credentials_path.exists():
            passphrase = typer.prompt("Enter zescrow passphrase", hide_input=True)
        else:
            passphrase = typer.prompt("Create a passphrase to secure your zescrow credentials", hide_input=True, confirmation_prompt=True)
    try:
        manager.save_credentials(passphrase, secrets)
    except ConfigurationError as exc:
        styled_echo(f"[zescrow.error]❌ {exc}[/]")
        raise typer.Exit(code=1) from exc


@app.command()
def version() -> None:
    """Show CLI version."""
    try:
        pkg_version = metadata.version("zescrow")
    except metadata.PackageNotFoundError:
        pkg_version = "0.0.0"
    styled_echo(f"zescrow version {pkg_version}")


def main() -> None:
    app()


__all__ = ["app", "main"]
