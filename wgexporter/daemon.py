"""Foreground run loop for the wgexporter HTTP server."""

import logging
import signal
from threading import Event
from typing import Optional

from wgexporter import __version__
from wgexporter.collector import WireGuardCollector
from wgexporter.config import ExporterConfig, load_config, resolve_state_file, setup_logging
from wgexporter.server import ScrapeServer
from wgexporter.state import PeerSnapshotStore

logger = logging.getLogger(__name__)

# How often the main loop wakes up to persist snapshots
STATE_SAVE_INTERVAL = 300


class GracefulKiller:
    """Signal handler for graceful shutdown."""

    def __init__(self):
        self.stop_event = Event()
        signal.signal(signal.SIGINT, self._exit_handler)
        signal.signal(signal.SIGTERM, self._exit_handler)

    @property
    def kill_now(self) -> bool:
        return self.stop_event.is_set()

    def _exit_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        self.stop_event.set()


def build_collector(config: ExporterConfig) -> WireGuardCollector:
    """Create the collector, restoring rate snapshots when extended metrics are on."""
    snapshots = None
    if config.enable_extended_metrics:
        state_file = resolve_state_file(config)
        logger.info(f"Using state file: {state_file}")
        snapshots = PeerSnapshotStore(state_file)
        snapshots.load()
    return WireGuardCollector(config, snapshots=snapshots)


def run_daemon(config: Optional[ExporterConfig] = None) -> None:
    """Run the exporter until SIGINT/SIGTERM.

    Args:
        config: Optional config object
    """
    if config is None:
        config = load_config()

    setup_logging(config)

    logger.info("=" * 60)
    logger.info(f"WireGuard Prometheus Exporter v{__version__} starting")

    collector = build_collector(config)
    server = ScrapeServer(config, collector)
    killer = GracefulKiller()

    logger.info(f"Target: {collector.source.describe()}")
    logger.info(f"Interface: {config.interface or 'all'}")
    logger.info(f"Metrics prefix: {config.metrics_prefix}")
    logger.info(f"Timeout: {config.timeout:g}s")
    if config.cache_ttl:
        logger.debug(f"cache_ttl={config.cache_ttl}s is advisory; every scrape collects live state")
    logger.info("=" * 60)

    ok, message = collector.check_health()
    if ok:
        logger.info("Exporter test successful")
    else:
        logger.warning(f"Exporter test failed, but continuing anyway: {message}")

    server.start()

    try:
        while not killer.kill_now:
            killer.stop_event.wait(timeout=STATE_SAVE_INTERVAL)
            if collector.snapshots is not None and collector.snapshots.path is not None:
                collector.snapshots.save()
    finally:
        logger.info("Shutting down...")
        server.stop()
        if collector.snapshots is not None and collector.snapshots.path is not None:
            collector.snapshots.save()
        logger.info("WireGuard exporter stopped")
