"""VPN-facing collaborators: leak checks and the connection provider seam."""

from .connection import ConnectionInfo, ConnectionProvider, ConnectionState, StaticConnectionProvider
from .leak_checker import (
    AlertType,
    CheckResult,
    EncryptionStatus,
    LeakChecker,
    SecurityProbes,
    Severity,
    default_security_probes,
    fetch_public_ip,
)

__all__ = [
    "AlertType",
    "CheckResult",
    "ConnectionInfo",
    "ConnectionProvider",
    "ConnectionState",
    "EncryptionStatus",
    "LeakChecker",
    "SecurityProbes",
    "Severity",
    "StaticConnectionProvider",
    "default_security_probes",
    "fetch_public_ip",
]
