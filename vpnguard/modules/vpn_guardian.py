"""VPN Guardian Module: wires the security monitor, metrics tracker and
preference store together behind one event surface and dashboard snapshot.
"""

import asyncio
from typing import Any, Callable, Optional

from ..config import VPNGuardConfig
from ..preferences.store import ALL_PATHS, PreferenceChange, PreferenceStore
from ..storage import KeyValueStorage, create_storage
from ..utils.event_bus import EventBus
from ..utils.logging import get_logger
from ..vpn.connection import ConnectionProvider, ConnectionState, StaticConnectionProvider
from ..vpn.leak_checker import LeakChecker, default_security_probes
from .base_module import BaseModule
from .metrics_tracker import MetricsEngine, RealtimeMetrics
from .security_monitor import Alert, AlertEngine

logger = get_logger("module.vpn_guardian")

EVENT_TYPES = ("connect", "disconnect", "security_alert", "metrics_update", "preference_change")
RECENT_ALERTS = 10


class VPNGuardian(BaseModule):
    """Orchestrator for the VPN client's monitoring and configuration.

    Manages:
    - leak-check monitoring (AlertEngine)
    - connection metrics tracking (MetricsEngine)
    - user preferences (PreferenceStore)
    - connection state via an injected provider

    Engine events are re-emitted as ``security_alert`` and ``metrics_update``,
    preference changes as ``preference_change``. Engine state is only read or
    changed through the engines' public methods.
    """

    def __init__(
        self,
        config: Optional[VPNGuardConfig] = None,
        storage: Optional[KeyValueStorage] = None,
        alert_engine: Optional[AlertEngine] = None,
        metrics_engine: Optional[MetricsEngine] = None,
        preferences: Optional[PreferenceStore] = None,
        connection_provider: Optional[ConnectionProvider] = None,
    ):
        super().__init__(name="vpn_guardian")

        self.config = config or VPNGuardConfig()
        cfg = self.config
        if storage is None and (preferences is None or metrics_engine is None):
            storage = create_storage(cfg)

        self.state = ConnectionState()
        self.connection_provider = connection_provider or StaticConnectionProvider()

        self.preferences = preferences or PreferenceStore(
            storage=storage,
            storage_key=cfg.preferences_storage_key,
        )
        self.security = alert_engine or AlertEngine(
            leak_checker=LeakChecker(
                default_security_probes(
                    expected_dns=cfg.vpn_expected_dns,
                    vpn_exit_ip=self._expected_exit_ip,
                    ip_services=cfg.public_ip_services,
                    kill_switch_active=lambda: bool(self.preferences.get("connection.killSwitch")),
                ),
                probe_timeout=cfg.probe_timeout,
            ),
            check_interval=cfg.security_check_interval,
            history_limit=cfg.alert_history_limit,
            dedup_window=cfg.alert_dedup_window,
            probe_timeout=cfg.probe_timeout,
        )
        self.analytics = metrics_engine or MetricsEngine(
            storage=storage,
            storage_key=cfg.analytics_storage_key,
            update_interval=cfg.analytics_update_interval,
            history_limit=cfg.history_limit,
            session_log_limit=cfg.session_log_limit,
            probe_timeout=cfg.probe_timeout,
        )

        self._events = EventBus("vpn_guardian", event_types=EVENT_TYPES)
        self._setup_event_handlers()

    def _expected_exit_ip(self) -> Optional[str]:
        return self.state.ip or self.config.vpn_exit_ip

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Start both engines and honour the auto-connect preference."""
        logger.info("vpn_guardian_starting")
        self.running = True
        self.health_status = "starting"

        await self.security.start_monitoring()
        await self.analytics.start_tracking()

        if self.preferences.get("connection.autoConnect"):
            await self.connect()

        self.health_status = "running"
        self.heartbeat()
        logger.info("vpn_guardian_started", connected=self.state.connected)

    async def shutdown(self) -> None:
        logger.info("vpn_guardian_stopping")
        await asyncio.gather(self.security.stop(), self.analytics.stop())

        if self.state.connected:
            await self.disconnect()

        self.running = False
        self.health_status = "stopped"
        logger.info("vpn_guardian_stopped")

    async def start(self) -> None:
        await self.initialize()

    async def stop(self) -> None:
        await self.shutdown()

    # --- Connection ---

    async def connect(self, server_id: Optional[str] = None) -> dict:
        logger.info("vpn_connecting", server=server_id)
        previous_server = self.state.server if self.state.connected else None
        try:
            info = await self.connection_provider.connect(server_id)
        except Exception as e:
            logger.error("vpn_connect_failed", error=str(e))
            return {"success": False, "error": str(e)}

        self.state.apply(info)
        if previous_server is not None and previous_server != info.server:
            self.analytics.record_server_switch()

        logger.info("vpn_connected", server=info.server, ip=info.ip, location=info.location)
        self._emit("connect", {"server": self.state.server})
        return {"success": True, "server": self.state.server}

    async def disconnect(self) -> dict:
        logger.info("vpn_disconnecting")
        try:
            await self.connection_provider.disconnect()
        except Exception as e:
            logger.error("vpn_disconnect_failed", error=str(e))
            return {"success": False, "error": str(e)}

        was_connected = self.state.connected
        self.state.reset()
        if was_connected:
            self.analytics.record_disconnection()

        self._emit("disconnect", {})
        return {"success": True}

    # --- Snapshots ---

    def get_status(self) -> dict:
        status = self.state.to_dict()
        status.update({
            "metrics": self.analytics.get_realtime_metrics(),
            "alerts": len(self.security.get_active_alerts()),
        })
        return status

    def get_dashboard_data(self) -> dict:
        """Read-only aggregate of status, alerts, metrics and preferences."""
        return {
            "status": self.get_status(),
            "security": {
                "active_alerts": [a.to_dict() for a in self.security.get_active_alerts()],
                "alert_history": [a.to_dict() for a in self.security.get_alert_history(RECENT_ALERTS)],
                "severity_counts": self.security.severity_counts(),
            },
            "analytics": {
                "session": self.analytics.get_session_stats(),
                "realtime": self.analytics.get_realtime_metrics(),
                "bandwidth": self.analytics.get_bandwidth_summary(),
            },
            "preferences": self.preferences.get_summary(),
        }

    # --- Events ---

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        self._events.subscribe(event, handler)

    def off(self, event: str, handler: Callable[[Any], Any]) -> bool:
        return self._events.unsubscribe(event, handler)

    def _emit(self, event: str, data: Any) -> None:
        self._events.publish(event, data)

    def _setup_event_handlers(self) -> None:
        self.security.on_alert(self._on_security_alert)
        self.analytics.subscribe(self._on_metrics_update)
        self.preferences.on_change(self._on_preference_change)

    def _on_security_alert(self, alert: Alert) -> None:
        self._emit("security_alert", alert)

    def _on_metrics_update(self, metrics: RealtimeMetrics) -> None:
        self._emit("metrics_update", metrics)

    def _on_preference_change(self, change: PreferenceChange) -> None:
        self._emit("preference_change", change)
        self._handle_preference_change(change)

    def _handle_preference_change(self, change: PreferenceChange) -> None:
        if change.path in ("connection.killSwitch", ALL_PATHS):
            self._apply_kill_switch(self.preferences.get("connection.killSwitch"))
        if change.path in ("security.threatLevel", ALL_PATHS):
            self._apply_threat_level(self.preferences.get("security.threatLevel"))

    def _apply_kill_switch(self, enabled: Any) -> None:
        # Tunnel reconfiguration hook; no tunnel driver is attached here
        logger.info("kill_switch_setting_changed", enabled=enabled)

    def _apply_threat_level(self, level: Any) -> None:
        logger.info("threat_level_changed", level=level)

    async def health_check(self) -> dict:
        self.heartbeat()
        security = await self.security.health_check()
        analytics = await self.analytics.health_check()
        return {
            "status": self.health_status,
            "details": {
                "connected": self.state.connected,
                "server": self.state.server,
                "security_monitor": security,
                "metrics_tracker": analytics,
                "event_bus": self._events.get_stats(),
            },
        }
