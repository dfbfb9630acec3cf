"""Last-sample snapshots for per-peer transfer rates."""

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Iterable, Optional

from pydantic import BaseModel, ValidationError

from wgexporter.models import PeerRecord

logger = logging.getLogger(__name__)


class PeerSnapshot(BaseModel):
    """Counters of one peer at one point in time."""

    timestamp: float
    rx_bytes: int
    tx_bytes: int


class PeerRate(BaseModel):
    """Per-second transfer rates of one peer between two snapshots."""

    rx_per_second: float
    tx_per_second: float


class PeerSnapshotStore:
    """Thread-safe map of (interface, public_key) -> last PeerSnapshot."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._snapshots: dict[tuple[str, str], PeerSnapshot] = {}
        self._lock = Lock()

    def update(
        self,
        peers: list[PeerRecord],
        now: float,
        interfaces: Optional[Iterable[str]] = None,
    ) -> dict[tuple[str, str], PeerRate]:
        """Record new counters and return rates against the previous snapshot.

        Peers seen for the first time, peers whose counters went backwards
        (interface restart) and zero-length intervals get no rate.
        Snapshots of peers that are gone from a collected interface are
        dropped.

        Args:
            peers: Peers collected in this cycle
            now: Collection timestamp
            interfaces: Interfaces collected in this cycle; defaults to the
                interfaces of the given peers

        Returns:
            Rates keyed by (interface, public_key)
        """
        rates: dict[tuple[str, str], PeerRate] = {}

        with self._lock:
            for peer in peers:
                previous = self._snapshots.get(peer.key)
                self._snapshots[peer.key] = PeerSnapshot(
                    timestamp=now, rx_bytes=peer.rx_bytes, tx_bytes=peer.tx_bytes
                )
                if previous is None:
                    continue

                elapsed = now - previous.timestamp
                rx_delta = peer.rx_bytes - previous.rx_bytes
                tx_delta = peer.tx_bytes - previous.tx_bytes
                if elapsed <= 0 or rx_delta < 0 or tx_delta < 0:
                    continue

                rates[peer.key] = PeerRate(
                    rx_per_second=rx_delta / elapsed,
                    tx_per_second=tx_delta / elapsed,
                )

            collected = set(interfaces) if interfaces is not None else {peer.interface for peer in peers}
            seen = {peer.key for peer in peers}
            stale = [key for key in self._snapshots if key[0] in collected and key not in seen]
            for key in stale:
                del self._snapshots[key]
            if stale:
                logger.debug(f"Dropped {len(stale)} stale peer snapshots")

        return rates

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def load(self) -> int:
        """Load snapshots from the state file.

        Returns:
            Number of snapshots loaded
        """
        if self.path is None or not self.path.exists():
            return 0

        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
            snapshots = {
                (entry['interface'], entry['public_key']): PeerSnapshot(**entry['snapshot'])
                for entry in data.get('peers', [])
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return 0

        with self._lock:
            self._snapshots = snapshots
        logger.info(f"Loaded {len(snapshots)} peer snapshots from {self.path}")
        return len(snapshots)

    def save(self) -> bool:
        """Write snapshots to the state file.

        Returns:
            True if written
        """
        if self.path is None:
            return False

        with self._lock:
            entries = [
                {'interface': iface, 'public_key': key, 'snapshot': snap.model_dump()}
                for (iface, key), snap in self._snapshots.items()
            ]

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + '.tmp')
            tmp_path.write_text(json.dumps({'peers': entries}), encoding='utf-8')
            tmp_path.replace(self.path)
        except OSError as e:
            logger.warning(f"Cannot write state file {self.path}: {e}")
            return False

        logger.debug(f"Saved {len(entries)} peer snapshots to {self.path}")
        return True
