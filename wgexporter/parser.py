"""`wg` command output parser for wgexporter."""

import logging
from typing import Optional

from wgexporter.models import DumpResult, PeerRecord

logger = logging.getLogger(__name__)

PEER_FIELDS = 8
HEADER_FIELDS = 4
NONE_VALUE = '(none)'


def parse_interfaces(raw: str) -> list[str]:
    """Parse `wg show interfaces` (or `wg show <iface> peers`) output.

    Names may be separated by spaces, tabs or newlines.

    Args:
        raw: Raw command output

    Returns:
        Names in first-seen order, without duplicates
    """
    names: list[str] = []
    for token in raw.split():
        if token not in names:
            names.append(token)
    return names


def parse_int(value: str, default: int = 0) -> int:
    """Parse a non-negative integer field, returning default on garbage."""
    try:
        number = int(value.strip())
    except (ValueError, AttributeError):
        return default
    return number if number >= 0 else default


def parse_keepalive(value: str) -> int:
    """Parse persistent-keepalive; 'off' means disabled (0)."""
    if value.strip().lower() == 'off':
        return 0
    return parse_int(value)


def parse_endpoint(value: str) -> Optional[str]:
    """Parse the endpoint field; `(none)` or empty means no endpoint.

    Args:
        value: Raw endpoint field, e.g. "1.2.3.4:51820"

    Returns:
        host:port string or None
    """
    value = value.strip()
    if not value or value == NONE_VALUE:
        return None
    return value


def parse_allowed_ips(value: str) -> list[str]:
    """Split the comma separated allowed-ips field."""
    return [
        part.strip() for part in value.split(',')
        if part.strip() and part.strip() != NONE_VALUE
    ]


def parse_peer_line(fields: list[str], interface: str) -> PeerRecord:
    """Build a PeerRecord from the 8 positional dump fields.

    Order: public-key, preshared-key, endpoint, allowed-ips,
    latest-handshake, rx-bytes, tx-bytes, persistent-keepalive.
    """
    return PeerRecord(
        interface=interface,
        public_key=fields[0],
        endpoint=parse_endpoint(fields[2]),
        allowed_ips=parse_allowed_ips(fields[3]),
        latest_handshake=parse_int(fields[4]),
        rx_bytes=parse_int(fields[5]),
        tx_bytes=parse_int(fields[6]),
        persistent_keepalive=parse_keepalive(fields[7]),
    )


def parse_dump(raw: str, interface: str) -> DumpResult:
    """Parse `wg show <iface> dump` output.

    The first line of a real dump describes the interface itself
    (private-key, public-key, listen-port, fwmark). Every following line
    is a peer. Short lines are dropped and counted, never fatal.

    Args:
        raw: Raw dump output
        interface: Interface the dump belongs to

    Returns:
        DumpResult with peers, parse error count and listen port
    """
    result = DumpResult()
    first = True

    for line in raw.splitlines():
        fields = line.split()
        if not fields:
            continue

        if first and len(fields) == HEADER_FIELDS:
            first = False
            port = parse_int(fields[2], default=-1)
            result.listen_port = port if 0 <= port <= 65535 else None
            continue
        first = False

        if len(fields) < PEER_FIELDS:
            result.parse_errors += 1
            logger.debug(f"Dropping short dump line on {interface}: {len(fields)} fields")
            continue

        result.peers.append(parse_peer_line(fields, interface))

    return result


def parse_version(raw: str) -> str:
    """Extract the version from `wg --version`.

    Example: 'wireguard-tools v1.0.20210914 - https://git.zx2c4.com/...'
    """
    lines = raw.strip().splitlines()
    if not lines:
        return 'unknown'
    parts = lines[0].split()
    return parts[1] if len(parts) > 1 else 'unknown'
