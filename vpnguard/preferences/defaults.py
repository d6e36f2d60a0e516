"""Default preference tree and per-path validation rules."""

from typing import Any, Callable

DEFAULT_PREFERENCES: dict[str, Any] = {
    "connection": {
        "autoConnect": False,
        "autoReconnect": True,
        "killSwitch": True,
        "preferredProtocol": "OpenVPN",
        "dnsLeakProtection": True,
        "ipv6LeakProtection": True,
        "splitTunneling": {
            "enabled": False,
            "apps": [],
            "mode": "exclude",  # exclude / include
        },
    },
    "server": {
        "autoSelectServer": True,
        "preferredLocation": None,
        "preferredServerType": "fastest",
        "serverChangeNotifications": True,
    },
    "notifications": {
        "connectionStatus": True,
        "securityAlerts": True,
        "serverChanges": True,
        "bandwidthWarnings": True,
        "updateNotifications": True,
        "sound": True,
    },
    "security": {
        "multiHopVPN": False,
        "obfuscation": False,
        "malwareProtection": True,
        "adBlocking": False,
        "trackerBlocking": False,
        "threatLevel": "balanced",
    },
    "privacy": {
        "shareAnonymousAnalytics": False,
        "crashReports": True,
        "diagnosticData": False,
    },
    "performance": {
        "dataCompression": False,
        "tcpFallback": True,
        "mtu": 1500,
        "connectionTimeout": 30,
        "maxRetries": 3,
    },
    "interface": {
        "theme": "dark",
        "language": "en",
        "startMinimized": False,
        "minimizeToTray": True,
        "showInTaskbar": True,
        "showSpeedInTray": False,
        "compactMode": False,
    },
    "analytics": {
        "trackBandwidth": True,
        "trackLatency": True,
        "trackQuality": True,
        "historyDays": 30,
    },
    "advanced": {
        "customDNS": {
            "enabled": False,
            "primary": "1.1.1.1",
            "secondary": "1.0.0.1",
        },
        "port": None,
        "mssfix": None,
        "customConfig": "",
    },
}

PROTOCOLS = ("OpenVPN", "WireGuard", "IKEv2")
SERVER_TYPES = ("fastest", "nearest", "p2p", "streaming")
THREAT_LEVELS = ("permissive", "balanced", "strict")
THEMES = ("light", "dark", "auto")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _in_range(low: float, high: float) -> Callable[[Any], bool]:
    def check(v: Any) -> bool:
        return _is_number(v) and low <= v <= high
    return check


def _one_of(allowed: tuple) -> Callable[[Any], bool]:
    def check(v: Any) -> bool:
        return isinstance(v, str) and v in allowed
    return check


VALIDATORS: dict[str, Callable[[Any], bool]] = {
    "connection.preferredProtocol": _one_of(PROTOCOLS),
    "server.preferredServerType": _one_of(SERVER_TYPES),
    "security.threatLevel": _one_of(THREAT_LEVELS),
    "interface.theme": _one_of(THEMES),
    "performance.mtu": _in_range(576, 1500),
    "performance.connectionTimeout": _in_range(5, 120),
}
