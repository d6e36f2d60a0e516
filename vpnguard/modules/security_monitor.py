"""Security Monitor Module: periodic leak checks turned into alerts.

Runs the leak-check battery on a timer, converts failed checks into
alerts, keeps the active set and a bounded newest-first history, and
notifies alert subscribers.
"""

import asyncio
import copy
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..utils.event_bus import EventBus
from ..utils.probes import call_probe
from ..vpn.leak_checker import AlertType, CheckResult, LeakChecker, Severity
from .base_module import BaseModule

Check = Callable[[], Awaitable[Any]]


def generate_alert_id() -> str:
    return f"alert_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class Alert:
    id: str
    type: AlertType
    severity: Severity
    details: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    message: Optional[str] = None

    @classmethod
    def from_check(cls, result: CheckResult) -> "Alert":
        return cls(
            id=generate_alert_id(),
            type=result.type,
            severity=result.severity or Severity.MEDIUM,
            details=copy.deepcopy(result.details),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }


class AlertEngine(BaseModule):
    """Runs leak checks on a timer and keeps the alert state.

    Cycles never overlap: the loop re-arms only after a cycle completes, and
    a cycle requested while another one is in flight is skipped.
    """

    def __init__(
        self,
        checks: Optional[Sequence[Check]] = None,
        leak_checker: Optional[LeakChecker] = None,
        check_interval: float = 5.0,
        history_limit: int = 100,
        dedup_window: float = 0.0,
        probe_timeout: Optional[float] = None,
    ):
        super().__init__(name="security_monitor")

        if checks is None:
            if leak_checker is None:
                raise ValueError("AlertEngine needs either checks or a leak_checker")
            checks = leak_checker.battery()
        self._checks: list[Check] = list(checks)
        self._check_interval = check_interval
        self._probe_timeout = probe_timeout
        self._dedup_window = dedup_window

        self._active_alerts: dict[str, Alert] = {}
        self._alert_history: deque[Alert] = deque(maxlen=history_limit)
        self._last_triggered: dict[tuple[AlertType, Severity], float] = {}
        self._events = EventBus("alerts", event_types=("alert",))

        self._monitoring = False
        self._cycle_in_progress = False
        self._cycles_completed = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._monitor_task: Optional[asyncio.Task] = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    # --- Lifecycle ---

    async def start_monitoring(self) -> None:
        """Run one cycle now, then every ``check_interval`` seconds."""
        if self._monitoring:
            self.logger.warning("security_monitoring_already_active")
            return

        self._monitoring = True
        self.running = True
        self.health_status = "running"
        self._stop_event = asyncio.Event()
        self.logger.info("security_monitoring_started", interval=self._check_interval)

        await self.perform_security_check()
        self._monitor_task = asyncio.create_task(self._monitor_loop())

    def stop_monitoring(self) -> None:
        """Disarm future cycles. A cycle already running is left to finish."""
        if not self._monitoring:
            return
        self._monitoring = False
        self.running = False
        self.health_status = "stopped"
        if self._stop_event is not None:
            self._stop_event.set()
        self.logger.info("security_monitoring_stopped")

    async def start(self) -> None:
        await self.start_monitoring()

    async def stop(self) -> None:
        self.stop_monitoring()
        if self._monitor_task and not self._monitor_task.done():
            await self._monitor_task
        self._monitor_task = None

    async def _monitor_loop(self) -> None:
        stop_event = self._stop_event
        while self._monitoring:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._check_interval)
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break
            if not self._monitoring or stop_event.is_set():
                break
            await self.perform_security_check()

    # --- Check cycle ---

    async def perform_security_check(self) -> list[Alert]:
        """Run every check, wait for all of them, and raise alerts for leaks.

        Returns the alerts raised by this cycle.
        """
        if self._cycle_in_progress:
            self.logger.debug("security_check_skipped_busy")
            return []

        self._cycle_in_progress = True
        try:
            results = await asyncio.gather(
                *(call_probe(check, timeout=self._probe_timeout) for check in self._checks),
                return_exceptions=True,
            )
            raised = self._process_check_results(results)
        except Exception as e:
            self.logger.error("security_check_failed", error=str(e))
            alert = Alert(
                id=generate_alert_id(),
                type=AlertType.SYSTEM_ERROR,
                severity=Severity.MEDIUM,
                details={"error": str(e)},
                message="Security monitoring system encountered an error",
            )
            raised = [self.trigger_alert(alert)]
        finally:
            self._cycle_in_progress = False

        self._cycles_completed += 1
        self.heartbeat()
        return raised

    def _process_check_results(self, results: Sequence[Any]) -> list[Alert]:
        raised = []
        for check, result in zip(self._checks, results):
            name = getattr(check, "__name__", repr(check))
            if isinstance(result, BaseException):
                self.logger.error("security_check_probe_failed", check=name, error=str(result))
                continue

            try:
                outcome = CheckResult.coerce(result)
            except (TypeError, KeyError, ValueError) as e:
                self.logger.error("security_check_bad_result", check=name, error=str(e))
                continue

            if not outcome.leak:
                continue
            if self._is_echo(outcome):
                self.logger.info(
                    "alert_echo_suppressed",
                    type=outcome.type.value,
                    severity=(outcome.severity or Severity.MEDIUM).value,
                )
                continue
            raised.append(self.trigger_alert(Alert.from_check(outcome)))
        return raised

    def _is_echo(self, outcome: CheckResult) -> bool:
        if self._dedup_window <= 0:
            return False
        key = (outcome.type, outcome.severity or Severity.MEDIUM)
        last = self._last_triggered.get(key)
        return last is not None and time.monotonic() - last < self._dedup_window

    # --- Alert state ---

    def trigger_alert(self, alert: Alert) -> Alert:
        """Record an alert as active and in history, then notify subscribers."""
        self._active_alerts[alert.id] = alert
        self._alert_history.appendleft(alert)
        self._last_triggered[(alert.type, alert.severity)] = time.monotonic()

        self.logger.warning(
            "security_alert",
            alert_id=alert.id,
            type=alert.type.value,
            severity=alert.severity.value,
        )
        self._events.publish("alert", copy.deepcopy(alert))
        return alert

    def dismiss_alert(self, alert_id: str) -> bool:
        """Remove from the active set; history keeps the entry."""
        if alert_id in self._active_alerts:
            del self._active_alerts[alert_id]
            self.logger.info("alert_dismissed", alert_id=alert_id)
            return True
        return False

    def dismiss_all(self) -> int:
        count = len(self._active_alerts)
        self._active_alerts.clear()
        return count

    def get_active_alerts(self, min_severity: Optional[Severity] = None) -> list[Alert]:
        alerts = list(self._active_alerts.values())
        if min_severity is not None:
            threshold = Severity(min_severity).rank
            alerts = [a for a in alerts if a.severity.rank >= threshold]
        return copy.deepcopy(alerts)

    def get_alert_history(self, limit: int = 10) -> list[Alert]:
        """Most recent alerts first, at most ``limit`` of them."""
        return copy.deepcopy(list(self._alert_history)[:max(limit, 0)])

    def severity_counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for alert in self._active_alerts.values():
            counts[alert.severity.value] += 1
        return counts

    def highest_active_severity(self) -> Optional[Severity]:
        if not self._active_alerts:
            return None
        return max((a.severity for a in self._active_alerts.values()), key=lambda s: s.rank)

    # --- Subscriptions ---

    def on_alert(self, callback: Callable[[Alert], Any]) -> None:
        self._events.subscribe("alert", callback)

    def off_alert(self, callback: Callable[[Alert], Any]) -> bool:
        return self._events.unsubscribe("alert", callback)

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {
                "monitoring": self._monitoring,
                "checks": len(self._checks),
                "cycles_completed": self._cycles_completed,
                "active_alerts": len(self._active_alerts),
                "history_size": len(self._alert_history),
            },
        }
