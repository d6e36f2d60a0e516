"""Tests for metric statistics and formatting helpers."""

import pytest

from vpnguard.analytics.stats import (
    average,
    compute_jitter,
    connection_strength,
    format_bytes,
    format_duration,
)


class TestConnectionStrength:
    def test_high_latency_penalty(self):
        assert connection_strength(120, 0, 0) == 80

    def test_combined_penalties(self):
        assert connection_strength(60, 1.0, 15) == 75

    def test_perfect_connection(self):
        assert connection_strength(20, 0, 0) == 100

    def test_clamped_at_zero(self):
        assert connection_strength(500, 50, 100) == 0

    @pytest.mark.parametrize("latency,expected", [(50, 100), (51, 90), (100, 90), (101, 80)])
    def test_latency_thresholds(self, latency, expected):
        assert connection_strength(latency, 0, 0) == expected

    @pytest.mark.parametrize("jitter,expected", [(10, 100), (11, 95), (20, 95), (21, 85)])
    def test_jitter_thresholds(self, jitter, expected):
        assert connection_strength(0, 0, jitter) == expected


class TestJitter:
    def test_needs_two_samples(self):
        assert compute_jitter([]) == 0
        assert compute_jitter([42]) == 0

    def test_population_std_dev(self):
        assert compute_jitter([10, 30]) == 10

    def test_uses_recent_window(self):
        latencies = [1000] * 5 + [20] * 10
        assert compute_jitter(latencies) == 0

    def test_steady_latency(self):
        assert compute_jitter([25, 25, 25]) == 0


class TestAverage:
    def test_empty(self):
        assert average([]) == 0

    def test_rounded(self):
        assert average([1, 2]) == 2
        assert average([10, 20, 31]) == 20


class TestFormatBytes:
    @pytest.mark.parametrize("value,expected", [
        (0, "0 B"),
        (-5, "0 B"),
        (512, "512.00 B"),
        (1024, "1.00 KB"),
        (1536, "1.50 KB"),
        (1048576, "1.00 MB"),
        (5 * 1024 ** 3, "5.00 GB"),
        (3 * 1024 ** 5, "3072.00 TB"),
    ])
    def test_format(self, value, expected):
        assert format_bytes(value) == expected


class TestFormatDuration:
    @pytest.mark.parametrize("seconds,expected", [
        (0, "0s"),
        (7, "7s"),
        (65, "1m 5s"),
        (3660, "1h 1m"),
        (2 * 86400 + 3 * 3600 + 59, "2d 3h"),
        (-10, "0s"),
    ])
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected
