"""Metrics Tracker Module: connection sampling and session statistics.

Samples speed, latency and packet loss at a fixed interval, derives jitter
and a connection-strength score, keeps bounded per-session sample windows,
and appends finished sessions to a persisted, capped history log.
"""

import asyncio
import copy
import json
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..analytics.probes import MetricProbes
from ..analytics.stats import average, compute_jitter, connection_strength, format_bytes, format_duration
from ..storage import KeyValueStorage, MemoryStorage
from ..utils.event_bus import EventBus
from ..utils.probes import call_probe
from .base_module import BaseModule

PEAK_SPEED_FACTOR = 1.5


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class BytesTransferred:
    upload: int = 0
    download: int = 0

    @property
    def total(self) -> int:
        return self.upload + self.download

    def add(self, upload: int, download: int) -> None:
        self.upload += upload
        self.download += download

    def to_dict(self) -> dict:
        return {"upload": self.upload, "download": self.download, "total": self.total}


@dataclass
class Session:
    """One tracking run, from start_tracking to stop_tracking."""
    session_id: str = field(default_factory=generate_session_id)
    history_limit: int = 3600
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_duration: float = 0.0
    bytes_transferred: BytesTransferred = field(default_factory=BytesTransferred)
    latency: deque = field(default_factory=deque)
    connection_quality: deque = field(default_factory=deque)
    server_switches: int = 0
    disconnections: int = 0

    def __post_init__(self):
        # Oldest samples fall off once the window is full
        self.latency = deque(self.latency, maxlen=self.history_limit)
        self.connection_quality = deque(self.connection_quality, maxlen=self.history_limit)

    @property
    def started(self) -> bool:
        return self.start_time is not None

    @property
    def finalized(self) -> bool:
        return self.end_time is not None

    def latency_values(self) -> list[float]:
        return [sample["value"] for sample in self.latency]

    def quality_values(self) -> list[float]:
        return [sample["quality"] for sample in self.connection_quality]

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_duration": self.total_duration,
            "bytes_transferred": self.bytes_transferred.to_dict(),
            "connection_quality": [
                {"timestamp": s["timestamp"].isoformat(), "quality": s["quality"]}
                for s in self.connection_quality
            ],
            "latency": [
                {"timestamp": s["timestamp"].isoformat(), "value": s["value"]}
                for s in self.latency
            ],
            "server_switches": self.server_switches,
            "disconnections": self.disconnections,
        }


@dataclass
class RealtimeMetrics:
    timestamp: Optional[datetime] = None
    current_speed: dict = field(default_factory=lambda: {"upload": 0, "download": 0})
    latency: float = 0
    packet_loss: float = 0.0
    jitter: int = 0
    connection_strength: float = 100.0

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "current_speed": dict(self.current_speed),
            "latency": self.latency,
            "packet_loss": self.packet_loss,
            "jitter": self.jitter,
            "connection_strength": self.connection_strength,
        }


def _coerce_speed(value: Any) -> dict:
    upload = round(_coerce_number(value["upload"]))
    download = round(_coerce_number(value["download"]))
    if upload < 0 or download < 0:
        raise ValueError("speed sample must not be negative")
    return {"upload": upload, "download": download}


def _coerce_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {type(value).__name__}")
    return value


def _coerce_packet_loss(value: Any) -> float:
    return min(100.0, max(0.0, float(_coerce_number(value))))


class MetricsEngine(BaseModule):
    """Samples connection metrics and maintains session/historical stats."""

    def __init__(
        self,
        probes: Optional[MetricProbes] = None,
        storage: Optional[KeyValueStorage] = None,
        storage_key: str = "vpnguard_analytics",
        update_interval: float = 1.0,
        history_limit: int = 3600,
        session_log_limit: int = 1000,
        probe_timeout: Optional[float] = None,
    ):
        super().__init__(name="metrics_tracker")

        self._probes = probes or MetricProbes()
        self._storage = storage if storage is not None else MemoryStorage()
        self._storage_key = storage_key
        self._update_interval = update_interval
        self._history_limit = history_limit
        self._session_log_limit = session_log_limit
        self._probe_timeout = probe_timeout

        self._session = Session(history_limit=history_limit)
        self._realtime = RealtimeMetrics()
        self._historical_data: list[dict] = self._load_historical_data()
        self._events = EventBus("metrics", event_types=("metrics",))

        self._tracking = False
        self._tick_in_progress = False
        self._ticks_completed = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._track_task: Optional[asyncio.Task] = None

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def session(self) -> Session:
        return self._session

    # --- Lifecycle ---

    async def start_tracking(self) -> None:
        """Begin a session: sample now, then every ``update_interval`` seconds."""
        if self._tracking:
            self.logger.warning("metrics_tracking_already_active")
            return

        if self._session.started:
            self._session = Session(history_limit=self._history_limit)
            self._realtime = RealtimeMetrics()

        self._tracking = True
        self.running = True
        self.health_status = "running"
        self._session.start_time = datetime.now(timezone.utc)
        self._stop_event = asyncio.Event()
        self.logger.info(
            "metrics_tracking_started",
            session_id=self._session.session_id,
            interval=self._update_interval,
        )

        await self.collect_metrics()
        self._track_task = asyncio.create_task(self._track_loop())

    def stop_tracking(self) -> None:
        """Finalize the session and append it to the history log."""
        if not self._tracking:
            return

        self._tracking = False
        self.running = False
        self.health_status = "stopped"
        if self._stop_event is not None:
            self._stop_event.set()

        session = self._session
        session.end_time = datetime.now(timezone.utc)
        session.total_duration = (session.end_time - session.start_time).total_seconds()
        self._save_session()
        self.logger.info(
            "metrics_tracking_stopped",
            session_id=session.session_id,
            duration=session.total_duration,
        )

    async def start(self) -> None:
        await self.start_tracking()

    async def stop(self) -> None:
        self.stop_tracking()
        if self._track_task and not self._track_task.done():
            await self._track_task
        self._track_task = None

    async def _track_loop(self) -> None:
        stop_event = self._stop_event
        while self._tracking:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._update_interval)
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break
            if not self._tracking or stop_event.is_set():
                break
            await self.collect_metrics()

    # --- Sampling ---

    async def collect_metrics(self) -> Optional[RealtimeMetrics]:
        """Take one sample. Returns the new realtime record, or None if skipped."""
        if self._tick_in_progress:
            self.logger.debug("metrics_tick_skipped_busy")
            return None

        self._tick_in_progress = True
        try:
            return await self._collect()
        except Exception as e:
            self.logger.error("metrics_collection_failed", error=str(e))
            return None
        finally:
            self._tick_in_progress = False

    def _accept(self, source: str, result: Any, coerce: Callable[[Any], Any]) -> Any:
        """Coerced probe result, or None if the probe failed this tick."""
        if isinstance(result, BaseException):
            self.logger.error("metrics_probe_failed", probe=source, error=str(result))
            return None
        try:
            return coerce(result)
        except (TypeError, KeyError, ValueError, OverflowError) as e:
            self.logger.error("metrics_probe_bad_value", probe=source, error=str(e))
            return None

    async def _collect(self) -> RealtimeMetrics:
        timestamp = datetime.now(timezone.utc)
        speed_raw, latency_raw, loss_raw = await asyncio.gather(
            call_probe(self._probes.measure_speed, timeout=self._probe_timeout),
            call_probe(self._probes.measure_latency, timeout=self._probe_timeout),
            call_probe(self._probes.measure_packet_loss, timeout=self._probe_timeout),
            return_exceptions=True,
        )
        speed = self._accept("speed", speed_raw, _coerce_speed)
        latency = self._accept("latency", latency_raw, _coerce_number)
        packet_loss = self._accept("packet_loss", loss_raw, _coerce_packet_loss)

        previous = self._realtime
        session = self._session

        # Jitter looks at samples recorded before this tick
        jitter = compute_jitter(session.latency_values())
        effective_latency = latency if latency is not None else previous.latency
        effective_loss = packet_loss if packet_loss is not None else previous.packet_loss
        strength = connection_strength(effective_latency, effective_loss, jitter)

        if latency is not None:
            session.latency.append({"timestamp": timestamp, "value": latency})
        session.connection_quality.append({"timestamp": timestamp, "quality": strength})
        if speed is not None:
            session.bytes_transferred.add(speed["upload"], speed["download"])

        self._realtime = RealtimeMetrics(
            timestamp=timestamp,
            current_speed=speed if speed is not None else dict(previous.current_speed),
            latency=effective_latency,
            packet_loss=effective_loss,
            jitter=jitter,
            connection_strength=strength,
        )
        self._ticks_completed += 1
        self.heartbeat()

        self._events.publish("metrics", copy.deepcopy(self._realtime))
        return copy.deepcopy(self._realtime)

    # --- Session statistics ---

    def get_session_stats(self) -> dict:
        session = self._session
        if self._tracking and session.start_time:
            duration = (datetime.now(timezone.utc) - session.start_time).total_seconds()
        else:
            duration = session.total_duration

        stats = session.to_dict()
        stats.update({
            "duration": duration,
            "average_latency": average(session.latency_values()),
            "average_quality": average(session.quality_values()),
            "peak_speed": self._calculate_peak_speed(),
        })
        return stats

    def _calculate_peak_speed(self) -> dict:
        # Approximation: scales the current sample, not a running maximum
        speed = self._realtime.current_speed
        return {
            "upload": round(speed["upload"] * PEAK_SPEED_FACTOR),
            "download": round(speed["download"] * PEAK_SPEED_FACTOR),
        }

    def get_realtime_metrics(self) -> dict:
        return self._realtime.to_dict()

    def get_bandwidth_summary(self) -> dict:
        current = self._session.bytes_transferred
        return {
            "current": current.to_dict(),
            "formatted": {
                "upload": format_bytes(current.upload),
                "download": format_bytes(current.download),
                "total": format_bytes(current.total),
            },
        }

    def record_server_switch(self) -> None:
        self._session.server_switches += 1

    def record_disconnection(self) -> None:
        self._session.disconnections += 1

    # --- Historical data ---

    def get_historical_data(self, days: float = 7) -> list[dict]:
        """Finished sessions that started within the trailing ``days`` window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        sessions = []
        for record in self._historical_data:
            start = _parse_time(record.get("start_time"))
            if start is not None and start >= cutoff:
                sessions.append(record)
        return copy.deepcopy(sessions)

    def get_aggregate_stats(self, days: float = 7) -> dict:
        sessions = self.get_historical_data(days)

        total_duration = sum(float(s.get("total_duration") or 0) for s in sessions)
        total_bandwidth = sum(
            int((s.get("bytes_transferred") or {}).get("total") or 0) for s in sessions
        )
        latencies = [sample["value"] for s in sessions for sample in s.get("latency") or []]
        qualities = [sample["quality"] for s in sessions for sample in s.get("connection_quality") or []]

        return {
            "total_sessions": len(sessions),
            "total_duration": total_duration,
            "total_bandwidth": total_bandwidth,
            "average_latency": average(latencies),
            "average_quality": average(qualities),
            "formatted": {
                "duration": format_duration(total_duration),
                "bandwidth": format_bytes(total_bandwidth),
            },
        }

    def export_data(self) -> dict:
        return {
            "current_session": self.get_session_stats(),
            "historical_data": copy.deepcopy(self._historical_data),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }

    def clear_history(self) -> None:
        self._historical_data = []
        self._persist_historical_data()

    # --- Subscriptions ---

    def subscribe(self, callback: Callable[[RealtimeMetrics], Any]) -> None:
        self._events.subscribe("metrics", callback)

    def unsubscribe(self, callback: Callable[[RealtimeMetrics], Any]) -> bool:
        return self._events.unsubscribe("metrics", callback)

    # --- Persistence ---

    def _save_session(self) -> None:
        self._historical_data.insert(0, self._session.to_dict())
        del self._historical_data[self._session_log_limit:]
        self._persist_historical_data()

    def _load_historical_data(self) -> list[dict]:
        try:
            stored = self._storage.get_item(self._storage_key)
            if stored:
                data = json.loads(stored)
                if isinstance(data, list):
                    return [s for s in data if isinstance(s, dict)][:self._session_log_limit]
                self.logger.warning("historical_data_not_list", key=self._storage_key)
        except Exception as e:
            self.logger.error("historical_data_load_failed", error=str(e))
        return []

    def _persist_historical_data(self) -> None:
        try:
            self._storage.set_item(self._storage_key, json.dumps(self._historical_data))
        except Exception as e:
            self.logger.error("historical_data_persist_failed", error=str(e))

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {
                "tracking": self._tracking,
                "session_id": self._session.session_id,
                "ticks_completed": self._ticks_completed,
                "latency_samples": len(self._session.latency),
                "historical_sessions": len(self._historical_data),
            },
        }
