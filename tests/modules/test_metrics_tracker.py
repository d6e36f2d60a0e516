"""Tests for the metrics tracker (metrics engine)."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from vpnguard.modules.metrics_tracker import MetricsEngine, RealtimeMetrics, Session
from vpnguard.storage import MemoryStorage


def _session_record(days_ago, duration=60.0, total=1000, latencies=(), qualities=()):
    start = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return {
        "session_id": f"session_{days_ago}",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(seconds=duration)).isoformat(),
        "total_duration": duration,
        "bytes_transferred": {"upload": total // 2, "download": total - total // 2, "total": total},
        "latency": [{"timestamp": start.isoformat(), "value": v} for v in latencies],
        "connection_quality": [{"timestamp": start.isoformat(), "quality": q} for q in qualities],
        "server_switches": 0,
        "disconnections": 0,
    }


class TestSampling:
    @pytest.mark.asyncio
    async def test_bytes_accumulate(self, make_metric_probes):
        probes = make_metric_probes(speeds=[
            {"upload": 100, "download": 200},
            {"upload": 50, "download": 0},
            {"upload": 1, "download": 9},
        ])
        engine = MetricsEngine(probes=probes)

        for _ in range(3):
            await engine.collect_metrics()

        transferred = engine.session.bytes_transferred
        assert transferred.upload == 151
        assert transferred.download == 209
        assert transferred.total == transferred.upload + transferred.download

    @pytest.mark.asyncio
    async def test_realtime_reflects_latest_tick(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(latencies=[120], losses=[0.0]))

        realtime = await engine.collect_metrics()

        assert isinstance(realtime, RealtimeMetrics)
        assert realtime.latency == 120
        assert realtime.connection_strength == 80
        assert engine.get_realtime_metrics()["connection_strength"] == 80

    @pytest.mark.asyncio
    async def test_jitter_uses_earlier_samples(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(latencies=[10, 30, 50]))

        jitters = [(await engine.collect_metrics()).jitter for _ in range(3)]

        assert jitters == [0, 0, 10]

    @pytest.mark.asyncio
    async def test_sample_windows_are_bounded(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(latencies=[1, 2, 3, 4, 5]), history_limit=3)

        for _ in range(5):
            await engine.collect_metrics()

        assert engine.session.latency_values() == [3, 4, 5]
        assert len(engine.session.connection_quality) == 3

    @pytest.mark.asyncio
    async def test_failed_probe_keeps_previous_value(self, make_metric_probes):
        probes = make_metric_probes(
            speeds=[{"upload": 10, "download": 10}, RuntimeError("nic gone")],
            latencies=[40, OSError("timeout")],
        )
        engine = MetricsEngine(probes=probes)

        await engine.collect_metrics()
        realtime = await engine.collect_metrics()

        assert realtime.latency == 40
        assert realtime.current_speed == {"upload": 10, "download": 10}
        assert engine.session.latency_values() == [40]
        assert len(engine.session.connection_quality) == 2
        assert engine.session.bytes_transferred.total == 20

    @pytest.mark.asyncio
    async def test_bad_probe_value_is_ignored(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(latencies=["fast"], speeds=[{"upload": -1, "download": 0}]))
        realtime = await engine.collect_metrics()
        assert realtime.latency == 0
        assert engine.session.latency_values() == []
        assert engine.session.bytes_transferred.total == 0

    @pytest.mark.asyncio
    async def test_fractional_speed_is_rounded_not_truncated(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(speeds=[{"upload": 100.9, "download": 200.9}]))

        await engine.collect_metrics()
        realtime = await engine.collect_metrics()

        assert realtime.current_speed == {"upload": 101, "download": 201}
        assert engine.session.bytes_transferred.to_dict() == {"upload": 202, "download": 402, "total": 604}

    @pytest.mark.asyncio
    async def test_packet_loss_clamped(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(losses=[250]))
        realtime = await engine.collect_metrics()
        assert realtime.packet_loss == 100.0
        assert realtime.connection_strength == 0

    @pytest.mark.asyncio
    async def test_subscribers_notified(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes())
        received = []
        engine.subscribe(received.append)

        await engine.collect_metrics()
        assert len(received) == 1
        assert engine.unsubscribe(received.append) is True
        await engine.collect_metrics()
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, make_metric_probes):
        release = asyncio.Event()

        async def slow_latency():
            await release.wait()
            return 30

        probes = make_metric_probes()
        probes.measure_latency = slow_latency
        engine = MetricsEngine(probes=probes)

        first = asyncio.create_task(engine.collect_metrics())
        await asyncio.sleep(0)
        assert await engine.collect_metrics() is None
        release.set()
        assert (await first).latency == 30
        assert engine._ticks_completed == 1


class TestTrackingLifecycle:
    @pytest.mark.asyncio
    async def test_stop_persists_session_newest_first(self, make_metric_probes):
        storage = MemoryStorage()
        engine = MetricsEngine(probes=make_metric_probes(), storage=storage, storage_key="analytics",
                               update_interval=60.0)

        await engine.start()
        first_id = engine.session.session_id
        await engine.stop()
        await engine.start()
        second_id = engine.session.session_id
        await engine.stop()

        assert first_id != second_id
        saved = json.loads(storage.get_item("analytics"))
        assert [s["session_id"] for s in saved] == [second_id, first_id]
        assert saved[0]["end_time"] is not None
        assert saved[0]["bytes_transferred"]["total"] == 3000

    @pytest.mark.asyncio
    async def test_session_log_is_capped(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(), update_interval=60.0, session_log_limit=2)

        ids = []
        for _ in range(3):
            await engine.start()
            ids.append(engine.session.session_id)
            await engine.stop()

        assert [s["session_id"] for s in engine.get_historical_data()] == [ids[2], ids[1]]

    @pytest.mark.asyncio
    async def test_loop_samples_until_stopped(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(), update_interval=0.01)
        await engine.start()
        await asyncio.sleep(0.1)
        await engine.stop()

        ticks = engine._ticks_completed
        assert ticks >= 2
        await asyncio.sleep(0.05)
        assert engine._ticks_completed == ticks

    @pytest.mark.asyncio
    async def test_duration_frozen_after_stop(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(), update_interval=60.0)
        await engine.start()
        await engine.stop()

        stats = engine.get_session_stats()
        assert stats["duration"] == engine.session.total_duration
        assert stats["duration"] >= 0
        assert stats["end_time"] is not None

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(), update_interval=60.0)
        await engine.start()
        session_id = engine.session.session_id
        await engine.start_tracking()
        assert engine.session.session_id == session_id
        assert engine._ticks_completed == 1
        await engine.stop()

    def test_stop_when_idle_is_noop(self):
        engine = MetricsEngine(probes=MagicMock())
        engine.stop_tracking()
        assert engine.get_historical_data() == []

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged(self, make_metric_probes):
        storage = MagicMock()
        storage.get_item.return_value = None
        storage.set_item.side_effect = OSError("read-only")
        engine = MetricsEngine(probes=make_metric_probes(), storage=storage, update_interval=60.0)

        await engine.start()
        await engine.stop()

        assert len(engine.get_historical_data()) == 1


class TestSessionStats:
    @pytest.mark.asyncio
    async def test_stats_shape(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(
            speeds=[{"upload": 100, "download": 1000}],
            latencies=[20, 40],
        ))
        await engine.collect_metrics()
        await engine.collect_metrics()

        stats = engine.get_session_stats()
        assert stats["average_latency"] == 30
        assert stats["average_quality"] == 100
        assert stats["peak_speed"] == {"upload": 150, "download": 1500}
        assert stats["bytes_transferred"]["total"] == 2200

    @pytest.mark.asyncio
    async def test_bandwidth_summary(self, make_metric_probes):
        engine = MetricsEngine(probes=make_metric_probes(speeds=[{"upload": 1024, "download": 2048}]))
        await engine.collect_metrics()
        summary = engine.get_bandwidth_summary()
        assert summary["current"] == {"upload": 1024, "download": 2048, "total": 3072}
        assert summary["formatted"]["total"] == "3.00 KB"

    def test_switch_and_disconnect_counters(self):
        engine = MetricsEngine(probes=MagicMock())
        engine.record_server_switch()
        engine.record_disconnection()
        engine.record_disconnection()
        stats = engine.get_session_stats()
        assert stats["server_switches"] == 1
        assert stats["disconnections"] == 2

    def test_session_window_uses_history_limit(self):
        session = Session(history_limit=2)
        for n in range(3):
            session.latency.append({"timestamp": datetime.now(timezone.utc), "value": n})
        assert session.latency_values() == [1, 2]


class TestHistoricalData:
    def test_window_filters_by_start_time(self):
        storage = MemoryStorage({"analytics": json.dumps([
            _session_record(1, duration=60, total=1000, latencies=[20, 40], qualities=[100]),
            _session_record(3, duration=120, total=2048, latencies=[60], qualities=[80, 90]),
            _session_record(10, duration=999, total=99999, latencies=[500], qualities=[0]),
        ])})
        engine = MetricsEngine(probes=MagicMock(), storage=storage, storage_key="analytics")

        assert len(engine.get_historical_data(days=7)) == 2
        assert len(engine.get_historical_data(days=30)) == 3

        stats = engine.get_aggregate_stats(days=7)
        assert stats["total_sessions"] == 2
        assert stats["total_duration"] == 180
        assert stats["total_bandwidth"] == 3048
        assert stats["average_latency"] == 40
        assert stats["average_quality"] == 90
        assert stats["formatted"] == {"duration": "3m 0s", "bandwidth": "2.98 KB"}

    def test_empty_window(self):
        stats = MetricsEngine(probes=MagicMock()).get_aggregate_stats()
        assert stats["total_sessions"] == 0
        assert stats["average_latency"] == 0
        assert stats["formatted"]["bandwidth"] == "0 B"

    @pytest.mark.parametrize("stored", ["garbage", json.dumps({"not": "a list"})])
    def test_corrupt_history_starts_empty(self, stored):
        engine = MetricsEngine(probes=MagicMock(), storage=MemoryStorage({"analytics": stored}),
                               storage_key="analytics")
        assert engine.get_historical_data(days=365) == []

    def test_clear_history(self):
        storage = MemoryStorage({"analytics": json.dumps([_session_record(1)])})
        engine = MetricsEngine(probes=MagicMock(), storage=storage, storage_key="analytics")

        engine.clear_history()

        assert engine.get_historical_data() == []
        assert json.loads(storage.get_item("analytics")) == []

    def test_export_data(self):
        storage = MemoryStorage({"analytics": json.dumps([_session_record(2)])})
        engine = MetricsEngine(probes=MagicMock(), storage=storage, storage_key="analytics")
        exported = engine.export_data()
        assert exported["historical_data"][0]["session_id"] == "session_2"
        assert "current_session" in exported
        assert "exported_at" in exported
