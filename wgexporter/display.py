"""Rich-based display functions for wgexporter."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from wgexporter.metrics import is_connected, short_key
from wgexporter.models import InterfaceRecord
from wgexporter.utils import format_age, format_bytes

console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print error message."""
    err_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_checks(checks: list[tuple[bool, str]]) -> None:
    """Print diagnostic results, one line per check."""
    console.print()
    for ok, message in checks:
        if ok:
            print_success(message)
        else:
            print_error(message)

    failed = sum(1 for ok, _ in checks if not ok)
    console.print()
    if failed:
        print_warning(f"Configuration test completed with {failed} errors/warnings")
    else:
        print_success("Configuration test completed successfully")
    console.print()


def print_config(config_data: dict) -> None:
    """Print configuration panel."""
    lines = []

    interface = config_data.get('interface')
    lines.append(f"Interface: {interface or '[dim]all (auto-detect)[/dim]'}")

    container = config_data.get('docker_container')
    lines.append(f"Target: {f'container {container}' if container else 'host'}")

    lines.append(f"Metrics prefix: {config_data.get('metrics_prefix')}")
    lines.append(f"Listen: {config_data.get('listen_address')}:{config_data.get('listen_port')}")
    lines.append(f"Max connections: {config_data.get('max_connections')}")
    lines.append(f"Timeout: {config_data.get('timeout')}s")
    lines.append(f"Log level: {config_data.get('log_level')}")
    lines.append(f"State file: {config_data.get('state_file')}")
    lines.append(f"Cache TTL: {config_data.get('cache_ttl')}s [dim](advisory)[/dim]")
    lines.append(f"Extended metrics: {'on' if config_data.get('enable_extended_metrics') else 'off'}")

    panel = Panel(
        "\n".join(lines),
        title="[bold]Configuration[/bold]",
        border_style="blue"
    )

    console.print()
    console.print(panel)
    console.print()


def print_peers(interfaces: list[InterfaceRecord], now: float, errors: Optional[list[str]] = None) -> None:
    """Print a table of peers per interface.

    Args:
        interfaces: Collected interfaces
        now: Current UNIX time, for handshake ages
        errors: Interfaces that could not be queried
    """
    if not interfaces and not errors:
        console.print("\n[dim]No WireGuard interfaces found.[/dim]\n")
        return

    for iface in interfaces:
        state = "[green]up[/green]" if iface.up else "[red]down[/red]"
        table = Table(
            title=f"[bold]{iface.name}[/bold] ({state}, port {iface.listen_port}, {iface.peer_count} peers)",
            show_header=True,
            header_style="bold cyan"
        )

        table.add_column("Peer", style="white", width=10)
        table.add_column("Endpoint", width=22)
        table.add_column("Handshake", justify="right")
        table.add_column("Received", justify="right", style="blue")
        table.add_column("Sent", justify="right", style="green")
        table.add_column("")

        for peer in iface.peers:
            if peer.latest_handshake:
                handshake = f"{format_age(max(now - peer.latest_handshake, 0))} ago"
            else:
                handshake = "never"
            connected = is_connected(peer.latest_handshake, now)

            table.add_row(
                short_key(peer.public_key),
                peer.endpoint or "-",
                handshake,
                format_bytes(peer.rx_bytes),
                format_bytes(peer.tx_bytes),
                "[green]●[/green]" if connected else "[dim]○[/dim]"
            )

        console.print()
        console.print(table)

    for message in errors or []:
        print_error(message)

    console.print()
