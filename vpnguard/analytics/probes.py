"""Default measurement probes for the metrics tracker.

Throughput comes from psutil network counters, latency from a TCP connect
to the VPN endpoint. Packet loss has no cheap portable measurement and
reports 0 unless a real probe is injected.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import psutil

from ..utils.logging import get_logger

logger = get_logger("analytics.probes")


class ThroughputProbe:
    """Bytes per second since the previous call, from psutil NIC counters."""

    def __init__(self, interface: Optional[str] = None):
        self._interface = interface
        self._last: Optional[tuple[float, int, int]] = None

    def _counters(self) -> tuple[int, int]:
        if self._interface:
            per_nic = psutil.net_io_counters(pernic=True)
            if self._interface not in per_nic:
                raise LookupError(f"interface {self._interface} not found")
            counters = per_nic[self._interface]
        else:
            counters = psutil.net_io_counters()
        return counters.bytes_sent, counters.bytes_recv

    def __call__(self) -> dict:
        sent, recv = self._counters()
        now = time.monotonic()
        previous, self._last = self._last, (now, sent, recv)
        if previous is None:
            return {"upload": 0, "download": 0}

        elapsed = max(now - previous[0], 1e-6)
        return {
            "upload": max(0, round((sent - previous[1]) / elapsed)),
            "download": max(0, round((recv - previous[2]) / elapsed)),
        }


class TcpLatencyProbe:
    """Round trip estimate: time to complete a TCP handshake, in ms."""

    def __init__(self, host: str, port: int = 443, timeout: float = 5.0):
        self._host = host
        self._port = port
        self._timeout = timeout

    async def __call__(self) -> int:
        start = time.perf_counter()
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(self._host, self._port),
            timeout=self._timeout,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return max(1, round(elapsed_ms))


def no_packet_loss() -> float:
    return 0.0


@dataclass
class MetricProbes:
    """Injected suppliers for one sampling tick (plain or async callables)."""
    measure_speed: Callable[[], Any] = field(default_factory=ThroughputProbe)
    measure_latency: Callable[[], Any] = field(
        default_factory=lambda: TcpLatencyProbe("1.1.1.1", 443)
    )
    measure_packet_loss: Callable[[], Any] = no_packet_loss
