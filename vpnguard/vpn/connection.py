"""Connection provider seam used by the orchestrator's connect/disconnect."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from ..utils.logging import get_logger

logger = get_logger("vpn.connection")


@dataclass
class ConnectionInfo:
    """Where the tunnel ended up after a successful connect."""
    server: Optional[str] = None
    ip: Optional[str] = None
    location: Optional[str] = None


@dataclass
class ConnectionState:
    """Thin connection record kept by the orchestrator."""
    connected: bool = False
    server: Optional[str] = None
    ip: Optional[str] = None
    location: Optional[str] = None
    connected_since: Optional[datetime] = None

    def apply(self, info: ConnectionInfo) -> None:
        self.connected = True
        self.server = info.server
        self.ip = info.ip
        self.location = info.location
        self.connected_since = datetime.now(timezone.utc)

    def reset(self) -> None:
        self.connected = False
        self.server = None
        self.ip = None
        self.location = None
        self.connected_since = None

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "server": self.server,
            "ip": self.ip,
            "location": self.location,
            "connected_since": self.connected_since.isoformat() if self.connected_since else None,
        }


class ConnectionProvider(Protocol):
    async def connect(self, server_id: Optional[str] = None) -> ConnectionInfo: ...

    async def disconnect(self) -> None: ...


class StaticConnectionProvider:
    """Reports a fixed endpoint without bringing up a tunnel."""

    def __init__(
        self,
        default_server: str = "us-ny-001",
        exit_ip: str = "203.0.113.1",
        location: str = "New York, USA",
    ):
        self._default_server = default_server
        self._exit_ip = exit_ip
        self._location = location

    async def connect(self, server_id: Optional[str] = None) -> ConnectionInfo:
        server = server_id or self._default_server
        logger.info("static_connection_established", server=server)
        return ConnectionInfo(server=server, ip=self._exit_ip, location=self._location)

    async def disconnect(self) -> None:
        logger.info("static_connection_closed")
