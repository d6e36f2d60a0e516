"""Long-running engines and the orchestrator that composes them."""

from .metrics_tracker import BytesTransferred, MetricsEngine, RealtimeMetrics, Session
from .security_monitor import Alert, AlertEngine
from .vpn_guardian import VPNGuardian

__all__ = [
    "Alert",
    "AlertEngine",
    "BytesTransferred",
    "MetricsEngine",
    "RealtimeMetrics",
    "Session",
    "VPNGuardian",
]
