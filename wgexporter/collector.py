"""WireGuard state collector: runs `wg`/`ip`, derives and renders metrics."""

import logging
import shutil
import time
from threading import Event, Lock
from typing import Callable, Optional, Sequence

from wgexporter.config import ExporterConfig, load_config, resolve_state_file
from wgexporter.executor import (
    CommandCancelled,
    CommandTimeout,
    ContainerStateSource,
    ExecError,
    StateSource,
    create_state_source,
)
from wgexporter.exposition import render
from wgexporter.metrics import (
    interface_samples,
    interfaces_total_samples,
    peer_labels,
    peer_samples,
    sample,
    version_samples,
)
from wgexporter.models import InterfaceRecord, MetricKind, MetricSample
from wgexporter.parser import parse_dump, parse_interfaces, parse_int, parse_version
from wgexporter.state import PeerSnapshotStore
from wgexporter.utils import get_timestamp_utc

logger = logging.getLogger(__name__)

Check = tuple[bool, str]


class WireGuardCollector:
    """Collects WireGuard metrics for every monitored interface."""

    def __init__(
        self,
        config: Optional[ExporterConfig] = None,
        source: Optional[StateSource] = None,
        clock: Callable[[], float] = time.time,
        snapshots: Optional[PeerSnapshotStore] = None,
    ):
        self.config = config or load_config()
        self.source = source or create_state_source(self.config)
        self.clock = clock
        self.snapshots = snapshots
        if self.snapshots is None and self.config.enable_extended_metrics:
            self.snapshots = PeerSnapshotStore()
        self._lock = Lock()
        self._collection_errors = 0
        self._parse_errors = 0

    @property
    def prefix(self) -> str:
        return self.config.metrics_prefix

    @property
    def collection_errors(self) -> int:
        with self._lock:
            return self._collection_errors

    @property
    def parse_errors(self) -> int:
        with self._lock:
            return self._parse_errors

    def _record_errors(self, collection: int = 0, parse: int = 0) -> None:
        with self._lock:
            self._collection_errors += collection
            self._parse_errors += parse

    def _deadline(self) -> float:
        return time.monotonic() + self.config.timeout

    def _run(self, args: Sequence[str], deadline: float, cancel: Optional[Event] = None) -> str:
        """Run a command within what is left of the request deadline."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CommandTimeout(args, self.config.timeout)
        return self.source.execute(args, timeout=remaining, cancel=cancel)

    def resolve_interfaces(self, deadline: Optional[float] = None, cancel: Optional[Event] = None) -> list[str]:
        """Configured interface, or every interface `wg show interfaces` reports."""
        if self.config.interface:
            return [self.config.interface]
        if deadline is None:
            deadline = self._deadline()
        return parse_interfaces(self._run(['wg', 'show', 'interfaces'], deadline, cancel))

    def is_link_up(self, name: str, deadline: float, cancel: Optional[Event] = None) -> bool:
        try:
            self._run(['ip', 'link', 'show', name], deadline, cancel)
        except (CommandTimeout, CommandCancelled):
            raise
        except ExecError as e:
            logger.debug(f"Link query failed for {name}: {e}")
            return False
        return True

    def collect_interface(
        self,
        name: str,
        deadline: Optional[float] = None,
        cancel: Optional[Event] = None,
    ) -> InterfaceRecord:
        """Gather interface and peer facts for one interface.

        Raises:
            ExecError: A `wg show` query for this interface failed
        """
        if deadline is None:
            deadline = self._deadline()

        listen_port = parse_int(self._run(['wg', 'show', name, 'listen-port'], deadline, cancel))
        peer_keys = parse_interfaces(self._run(['wg', 'show', name, 'peers'], deadline, cancel))
        dump = parse_dump(self._run(['wg', 'show', name, 'dump'], deadline, cancel), name)
        up = self.is_link_up(name, deadline, cancel)

        if dump.parse_errors:
            logger.warning(f"{name}: dropped {dump.parse_errors} malformed dump line(s)")
            self._record_errors(parse=dump.parse_errors)

        if not listen_port and dump.listen_port:
            listen_port = dump.listen_port

        return InterfaceRecord(
            name=name,
            listen_port=listen_port if listen_port <= 65535 else 0,
            up=up,
            peers=dump.peers,
            peer_count=len(peer_keys),
        )

    def collect_version(self, deadline: float, cancel: Optional[Event] = None) -> Optional[str]:
        try:
            return parse_version(self._run(['wg', '--version'], deadline, cancel))
        except (CommandTimeout, CommandCancelled):
            raise
        except ExecError as e:
            logger.debug(f"wg version unavailable: {e}")
            return None

    def collect_samples(self, cancel: Optional[Event] = None) -> tuple[list[MetricSample], list[str]]:
        """Run one collection cycle.

        Args:
            cancel: Event that aborts the in-flight command when set

        Returns:
            Tuple of (samples, comment lines)

        Raises:
            CommandTimeout: The request deadline passed
            CommandCancelled: The cancel event was set
        """
        started = time.monotonic()
        deadline = started + self.config.timeout
        now = self.clock()
        samples: list[MetricSample] = []
        comments: list[str] = []

        version = self.collect_version(deadline, cancel)
        if version:
            samples += version_samples(version, self.prefix)

        try:
            interfaces = self.resolve_interfaces(deadline, cancel)
        except (CommandTimeout, CommandCancelled):
            raise
        except ExecError as e:
            logger.error(f"Interface discovery failed: {e}")
            self._record_errors(collection=1)
            comments.append(f"# Error collecting metrics: {e.reason.value}")
            interfaces = []

        if not interfaces:
            logger.warning("No WireGuard interfaces found")

        samples += interfaces_total_samples(len(interfaces), self.prefix)

        records: list[InterfaceRecord] = []
        for name in interfaces:
            logger.debug(f"Collecting metrics for interface: {name}")
            try:
                records.append(self.collect_interface(name, deadline, cancel))
            except (CommandTimeout, CommandCancelled):
                raise
            except ExecError as e:
                logger.warning(f"Skipping interface {name}: {e}")
                self._record_errors(collection=1)
                comments.append(f"# Error collecting interface {name}: {e.reason.value}")

        for record in records:
            samples += interface_samples(record, self.prefix)
            for peer in record.peers:
                samples += peer_samples(peer, now, self.prefix)

        if self.config.enable_extended_metrics:
            samples += self._extended_samples(records, now, time.monotonic() - started)

        return samples, comments

    def _extended_samples(
        self,
        records: list[InterfaceRecord],
        now: float,
        duration: float,
    ) -> list[MetricSample]:
        samples = [
            sample(self.prefix, 'collection_errors_total', self.collection_errors, kind=MetricKind.COUNTER),
            sample(self.prefix, 'parse_errors_total', self.parse_errors, kind=MetricKind.COUNTER),
            sample(self.prefix, 'scrape_duration_seconds', round(duration, 6)),
        ]

        if self.snapshots is None:
            return samples

        peers = [peer for record in records for peer in record.peers]
        rates = self.snapshots.update(peers, now, interfaces=[record.name for record in records])
        for peer in peers:
            rate = rates.get(peer.key)
            if rate is None:
                continue
            labels = peer_labels(peer)
            samples.append(sample(self.prefix, 'peer_receive_bytes_per_second', rate.rx_per_second, labels))
            samples.append(sample(self.prefix, 'peer_transmit_bytes_per_second', rate.tx_per_second, labels))

        return samples

    def collect(self, cancel: Optional[Event] = None) -> str:
        """Collect and render all metrics as exposition text."""
        samples, comments = self.collect_samples(cancel)

        lines = [
            "# WireGuard VPN Metrics",
            f"# Generated at {get_timestamp_utc()}",
            *comments,
        ]
        return '\n'.join(lines) + '\n' + render(samples)

    def check_health(self) -> Check:
        """Lightweight reachability check of the query command.

        Returns:
            Tuple of (ok, message)
        """
        try:
            self.source.execute(['wg', 'show', 'interfaces'], timeout=self.config.timeout)
        except ExecError as e:
            logger.warning(f"Health check failed: {e}")
            return False, str(e)
        return True, "OK"

    def diagnose(self) -> list[Check]:
        """Check configuration and WireGuard accessibility.

        Returns:
            List of (ok, message) checks
        """
        checks: list[Check] = []
        timeout = self.config.timeout

        def check(ok: bool, message: str) -> bool:
            checks.append((ok, message))
            if ok:
                logger.info(message)
            else:
                logger.error(message)
            return ok

        if isinstance(self.source, ContainerStateSource):
            container = self.source.container
            check(True, f"Docker mode enabled: monitoring container '{container}'")
            check(shutil.which('docker') is not None, "docker command is available")
            check(self.source.is_running(timeout=timeout), f"Container '{container}' is running")
            try:
                self.source.execute(['which', 'wg'], timeout=timeout)
                check(True, "wg command is available in container")
            except ExecError as e:
                check(False, f"wg command not found in container ({e.reason.value})")
        else:
            check(True, "Host mode: monitoring WireGuard on local system")
            check(shutil.which('wg') is not None, "wg command is available")

        deadline = time.monotonic() + timeout
        try:
            version = self.collect_version(deadline)
        except ExecError:
            version = None
        if version:
            check(True, f"WireGuard version: {version}")

        try:
            self.source.execute(['wg', 'show'], timeout=timeout)
            check(True, "Can execute 'wg show'")
        except ExecError as e:
            check(False, f"Cannot execute 'wg show' ({e.reason.value}); run as root or with CAP_NET_ADMIN")

        try:
            interfaces = self.resolve_interfaces()
        except ExecError as e:
            interfaces = []
            logger.debug(f"Interface discovery failed: {e}")

        if check(bool(interfaces), f"Found WireGuard interface(s): {' '.join(interfaces) or 'none'}"):
            for name in interfaces:
                try:
                    peers = parse_interfaces(self.source.wg('show', name, 'peers', timeout=timeout))
                    check(True, f"Interface {name} has {len(peers)} peer(s)")
                except ExecError as e:
                    check(False, f"Interface {name} cannot be queried ({e.reason.value})")

        state_file = resolve_state_file(self.config)
        check(True, f"State file: {state_file}")

        return checks
