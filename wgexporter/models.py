"""Pydantic data models for wgexporter."""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MetricKind(str, Enum):
    """Exposition metric type."""

    GAUGE = "gauge"
    COUNTER = "counter"


class PeerRecord(BaseModel):
    """Single peer line from `wg show <iface> dump`."""

    model_config = ConfigDict(frozen=True)

    interface: str
    public_key: str
    endpoint: Optional[str] = None
    allowed_ips: list[str] = Field(default_factory=list)
    latest_handshake: int = 0
    rx_bytes: int = 0
    tx_bytes: int = 0
    persistent_keepalive: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return self.interface, self.public_key


class InterfaceRecord(BaseModel):
    """Interface level facts gathered in one collection cycle."""

    model_config = ConfigDict(frozen=True)

    name: str
    listen_port: int = Field(default=0, ge=0, le=65535)
    up: bool = False
    peers: list[PeerRecord] = Field(default_factory=list)
    peer_count: int = 0

    @model_validator(mode="before")
    @classmethod
    def _default_peer_count(cls, data: Any) -> Any:
        """Derive peer_count from the parsed peers unless given explicitly."""
        if isinstance(data, dict) and data.get("peer_count") is None:
            data = {**data, "peer_count": len(data.get("peers") or [])}
        return data


class DumpResult(BaseModel):
    """Parsed dump output for one interface."""

    peers: list[PeerRecord] = Field(default_factory=list)
    parse_errors: int = 0
    listen_port: Optional[int] = None


class MetricSample(BaseModel):
    """One exposition sample plus the metadata of its family."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: Union[int, float]
    labels: dict[str, str] = Field(default_factory=dict)
    help: str = ""
    kind: MetricKind = MetricKind.GAUGE
