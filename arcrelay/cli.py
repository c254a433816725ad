"""Command line interface for running a relay session."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from arcrelay import ArcRelayConfig, SessionLoop, load_config
from arcrelay.errors import ConfigFault
from arcrelay.proxy import start_local_proxy

app = typer.Typer(help="Keep an authenticated relay session to a managed server alive")

CONFIG_FAULT_EXIT_CODE = 2


@app.callback()
def main() -> None:
    """arcrelay CLI entry point."""
    pass


def _load(config_path: Optional[str]) -> ArcRelayConfig:
    try:
        return load_config(config_path)
    except ConfigFault as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=CONFIG_FAULT_EXIT_CODE)


@app.command("run")
def run(
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to appsettings.json or config.yaml"
    ),
    max_generations: Optional[int] = typer.Option(
        None, help="Stop after this many relay endpoints (default: run forever)"
    ),
    start_proxy: bool = typer.Option(
        False, help="Launch the local proxy helper configured as path_to_proxy"
    ),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """
    Provision relay endpoints and poll the relayed API until interrupted.

    Each relay endpoint is renewed when the remote side rejects a call or, with
    renew_before_seconds configured, shortly before it expires.

    Example:
        arcrelay run --config appsettings.json
        arcrelay run -c config.yaml --max-generations 3 --start-proxy
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = _load(config_path)

    proxy = None
    try:
        if start_proxy:
            proxy = start_local_proxy(config.path_to_proxy)
        session = SessionLoop.from_config(config, max_generations=max_generations)
        session.run()
    except ConfigFault as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=CONFIG_FAULT_EXIT_CODE)
    except KeyboardInterrupt:
        typer.echo("Interrupted, stopping session")
    finally:
        if proxy is not None:
            proxy.terminate()


@app.command("check-config")
def check_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to appsettings.json or config.yaml"
    ),
) -> None:
    """Validate configuration and print the derived endpoints."""
    config = _load(config_path)
    typer.echo(f"Authority: {config.authority}")
    typer.echo(f"Expected server identity: {config.expected_server_identity}")
    typer.echo(f"Credentials URL: {config.credentials_url}")
    typer.echo(f"Registration URL: {config.registration_url}")
    typer.echo(f"Relay hostname: {config.relay_hostname}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
