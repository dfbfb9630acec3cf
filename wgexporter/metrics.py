"""Derived WireGuard metrics and sample builders."""

from typing import Iterable, Optional, Union

from wgexporter.models import InterfaceRecord, MetricKind, MetricSample, PeerRecord
from wgexporter.parser import NONE_VALUE, parse_allowed_ips, parse_keepalive

# A peer is connected if it completed a handshake within this many seconds
HANDSHAKE_TIMEOUT = 180

SHORT_KEY_LENGTH = 8
NO_ENDPOINT = NONE_VALUE

HELP = {
    'version_info': 'WireGuard version information',
    'interfaces_total': 'Total number of WireGuard interfaces',
    'interface_up': 'WireGuard interface status (1=up, 0=down)',
    'interface_listen_port': 'WireGuard interface listen port',
    'interface_peers': 'Number of peers configured on interface',
    'peer_connected': 'Peer connection status (1=connected, 0=disconnected)',
    'peer_latest_handshake_seconds': 'UNIX timestamp of the last handshake',
    'peer_receive_bytes_total': 'Total bytes received from peer',
    'peer_transmit_bytes_total': 'Total bytes transmitted to peer',
    'peer_persistent_keepalive_interval': 'Persistent keepalive interval in seconds',
    'peer_allowed_ips_count': 'Number of allowed IP ranges for peer',
    'collection_errors_total': 'Interface collections that failed since exporter start',
    'parse_errors_total': 'Malformed dump lines dropped since exporter start',
    'scrape_duration_seconds': 'Time spent collecting this scrape',
    'peer_receive_bytes_per_second': 'Receive rate since the previous scrape',
    'peer_transmit_bytes_per_second': 'Transmit rate since the previous scrape',
}


def metric_name(prefix: str, suffix: str) -> str:
    """Join prefix and suffix; an empty prefix leaves the suffix alone."""
    return f"{prefix}_{suffix}" if prefix else suffix


def sample(
    prefix: str,
    suffix: str,
    value: Union[int, float],
    labels: Optional[dict[str, str]] = None,
    kind: MetricKind = MetricKind.GAUGE,
) -> MetricSample:
    """Build a MetricSample for a catalogue metric."""
    return MetricSample(
        name=metric_name(prefix, suffix),
        value=value,
        labels=labels or {},
        help=HELP[suffix],
        kind=kind,
    )


def is_connected(handshake: int, now: float) -> bool:
    """True when a handshake happened and is younger than HANDSHAKE_TIMEOUT."""
    return handshake != 0 and (now - handshake) < HANDSHAKE_TIMEOUT


def allowed_ip_count(allowed_ips: Union[str, Iterable[str]]) -> int:
    """Count allowed IP ranges.

    Accepts the raw comma separated field or an already split list. An empty
    field or the '(none)' placeholder counts as zero ranges.
    """
    if isinstance(allowed_ips, str):
        return len(parse_allowed_ips(allowed_ips))
    return sum(1 for ip in allowed_ips if ip and ip != NONE_VALUE)


def normalize_keepalive(value: Union[str, int]) -> int:
    """Positive intervals pass through; 'off', 0 and garbage become 0."""
    if isinstance(value, int):
        return value if value > 0 else 0
    return parse_keepalive(value)


def short_key(public_key: str) -> str:
    """First 8 characters of a public key, shorter keys unchanged."""
    return public_key[:SHORT_KEY_LENGTH]


def peer_labels(peer: PeerRecord) -> dict[str, str]:
    """Label set of every per-peer series.

    Args:
        peer: Parsed peer record

    Returns:
        interface, short public_key and endpoint (`(none)` when unset)
    """
    return {
        'interface': peer.interface,
        'public_key': short_key(peer.public_key),
        'endpoint': peer.endpoint or NO_ENDPOINT,
    }


def interface_labels(name: str) -> dict[str, str]:
    """Label set of every per-interface series."""
    return {'interface': name}


def version_samples(version: str, prefix: str) -> list[MetricSample]:
    """`version_info` gauge carrying the tool version as a label."""
    return [sample(prefix, 'version_info', 1, {'version': version})]


def interfaces_total_samples(count: int, prefix: str) -> list[MetricSample]:
    """Number of monitored interfaces."""
    return [sample(prefix, 'interfaces_total', count)]


def interface_samples(iface: InterfaceRecord, prefix: str) -> list[MetricSample]:
    """Interface level samples in catalogue order."""
    labels = interface_labels(iface.name)
    return [
        sample(prefix, 'interface_up', 1 if iface.up else 0, labels),
        sample(prefix, 'interface_listen_port', iface.listen_port, labels),
        sample(prefix, 'interface_peers', iface.peer_count, labels),
    ]


def peer_samples(peer: PeerRecord, now: float, prefix: str) -> list[MetricSample]:
    """Peer level samples in catalogue order."""
    labels = peer_labels(peer)
    return [
        sample(prefix, 'peer_connected', 1 if is_connected(peer.latest_handshake, now) else 0, labels),
        sample(prefix, 'peer_latest_handshake_seconds', peer.latest_handshake, labels),
        sample(prefix, 'peer_receive_bytes_total', peer.rx_bytes, labels, MetricKind.COUNTER),
        sample(prefix, 'peer_transmit_bytes_total', peer.tx_bytes, labels, MetricKind.COUNTER),
        sample(prefix, 'peer_persistent_keepalive_interval',
               normalize_keepalive(peer.persistent_keepalive), labels),
        sample(prefix, 'peer_allowed_ips_count', allowed_ip_count(peer.allowed_ips), labels),
    ]
