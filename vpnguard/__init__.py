"""vpnguard: leak alerts, connection metrics and preferences for a VPN client."""

__version__ = "1.0.0"
