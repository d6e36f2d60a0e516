"""Pure statistics and formatting helpers for connection metrics."""

import math
from typing import Iterable, Sequence

JITTER_WINDOW = 10
BYTE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def compute_jitter(latencies: Sequence[float], window: int = JITTER_WINDOW) -> int:
    """Rounded standard deviation of the most recent ``window`` latencies.

    Needs at least two samples; otherwise 0.
    """
    recent = list(latencies)[-window:]
    if len(recent) < 2:
        return 0
    avg = sum(recent) / len(recent)
    variance = sum((v - avg) ** 2 for v in recent) / len(recent)
    return round(math.sqrt(variance))


def connection_strength(latency: float, packet_loss: float, jitter: float) -> float:
    """Score 0-100: latency penalty, then packet loss, then jitter."""
    strength = 100.0

    if latency > 100:
        strength -= 20
    elif latency > 50:
        strength -= 10

    strength -= packet_loss * 10

    if jitter > 20:
        strength -= 15
    elif jitter > 10:
        strength -= 5

    return max(0.0, min(100.0, strength))


def average(values: Iterable[float]) -> int:
    values = list(values)
    if not values:
        return 0
    return round(sum(values) / len(values))


def format_bytes(num_bytes: float) -> str:
    if num_bytes <= 0:
        return "0 B"
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(BYTE_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{value:.2f} {BYTE_UNITS[i]}"


def format_duration(seconds: float) -> str:
    """Two most significant units, e.g. ``"2d 3h"``, ``"4m 5s"``, ``"7s"``."""
    total = int(max(seconds, 0))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
