"""CLI commands for wgexporter using Typer."""

import sys
import time
from pathlib import Path
from typing import Optional

import httpx
import typer
from pydantic import ValidationError

from wgexporter import __version__
from wgexporter.config import ExporterConfig, load_config, setup_logging
from wgexporter.display import (
    console,
    print_checks,
    print_config,
    print_error,
    print_peers,
    print_success,
)
from wgexporter.executor import ExecError

# Create Typer app
app = typer.Typer(
    name="wgexporter",
    help="Prometheus exporter for WireGuard tunnel statistics",
    add_completion=False,
    no_args_is_help=True,
)

# Subcommand groups
config_app = typer.Typer(help="Configuration commands")

app.add_typer(config_app, name="config")

ConfigOption = typer.Option(None, "--config", "-c", help="YAML config file")


def get_config(path: Optional[Path]) -> ExporterConfig:
    """Load config or exit with a readable error."""
    try:
        return load_config(path)
    except ValidationError as e:
        print_error(f"Invalid configuration:\n{e}")
        raise typer.Exit(2)


# ═══════════════════════════════════════════════════════════════
# SERVICE COMMANDS
# ═══════════════════════════════════════════════════════════════

@app.command()
def serve(config_path: Optional[Path] = ConfigOption):
    """Start the HTTP exporter in the foreground."""
    from wgexporter.daemon import run_daemon

    config = get_config(config_path)
    try:
        run_daemon(config)
    except OSError as e:
        print_error(f"Cannot listen on {config.listen_address}:{config.listen_port}: {e}")
        raise typer.Exit(1)


@app.command()
def collect(config_path: Optional[Path] = ConfigOption):
    """Collect once and print metrics to stdout."""
    from wgexporter.collector import WireGuardCollector

    config = get_config(config_path)
    setup_logging(config)

    try:
        sys.stdout.write(WireGuardCollector(config).collect())
    except ExecError as e:
        print_error(f"Collection failed: {e}")
        raise typer.Exit(1)


@app.command()
def peers(config_path: Optional[Path] = ConfigOption):
    """Show interfaces and peers as a table."""
    from wgexporter.collector import WireGuardCollector

    config = get_config(config_path)
    collector = WireGuardCollector(config)

    try:
        names = collector.resolve_interfaces()
    except ExecError as e:
        print_error(f"Cannot list interfaces: {e}")
        raise typer.Exit(1)

    records = []
    errors = []
    for name in names:
        try:
            records.append(collector.collect_interface(name))
        except ExecError as e:
            errors.append(f"{name}: {e}")

    print_peers(records, time.time(), errors)


@app.command()
def test(config_path: Optional[Path] = ConfigOption):
    """Test configuration and WireGuard accessibility."""
    from wgexporter.collector import WireGuardCollector

    config = get_config(config_path)
    setup_logging(config.model_copy(update={'log_level': 'WARNING'}))

    checks = WireGuardCollector(config).diagnose()
    print_checks(checks)

    if not all(ok for ok, _ in checks):
        raise typer.Exit(1)


@app.command()
def health(
    url: Optional[str] = typer.Option(None, "--url", help="Health endpoint URL"),
    timeout: float = typer.Option(5.0, "--timeout", help="Request timeout (seconds)"),
    config_path: Optional[Path] = ConfigOption,
):
    """Query a running exporter's /health endpoint."""
    if url is None:
        config = get_config(config_path)
        host = config.listen_address
        if host in ("0.0.0.0", "::", ""):
            host = "127.0.0.1"
        url = f"http://{host}:{config.listen_port}/health"

    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.RequestError as e:
        print_error(f"Health check failed: {e}")
        raise typer.Exit(1)

    if response.status_code == 200:
        print_success(f"Healthy ({url})")
    else:
        print_error(f"Unhealthy: HTTP {response.status_code} {response.text.strip()}")
        raise typer.Exit(1)


@app.command()
def version():
    """Version information."""
    console.print(f"WireGuard Exporter v{__version__}")


# ═══════════════════════════════════════════════════════════════
# CONFIG COMMANDS
# ═══════════════════════════════════════════════════════════════

@config_app.command("show")
def config_show(config_path: Optional[Path] = ConfigOption):
    """Show effective configuration."""
    config = get_config(config_path)
    print_config(config.model_dump())


if __name__ == "__main__":
    app()
