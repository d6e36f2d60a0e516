"""Shared test fixtures."""

import logging

import pytest
import structlog

from vpnguard.analytics.probes import MetricProbes
from vpnguard.storage import MemoryStorage
from vpnguard.vpn.leak_checker import EncryptionStatus, SecurityProbes


@pytest.fixture(autouse=True)
def quiet_structlog():
    """Keep engine logging off stdout; capture_logs still works on top of this."""
    structlog.configure(
        processors=[structlog.processors.add_log_level],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def secure_probes():
    """Probes describing a healthy tunnel: every leak check passes."""
    return SecurityProbes(
        dns_servers=lambda: ["10.8.0.2", "10.8.0.1"],
        expected_dns=lambda: ["10.8.0.1", "10.8.0.2"],
        public_ip=lambda: "203.0.113.1",
        vpn_exit_ip=lambda: "203.0.113.1",
        encryption_status=lambda: EncryptionStatus(
            active=True, protocol="WireGuard", cipher="ChaCha20-Poly1305", strength=256
        ),
        kill_switch_active=lambda: True,
        webrtc_candidates=None,
    )


class SequenceProbe:
    """Returns queued values in order, repeating the last one."""

    def __init__(self, *values):
        self._values = list(values)
        self.calls = 0

    def __call__(self):
        index = min(self.calls, len(self._values) - 1)
        self.calls += 1
        value = self._values[index]
        if isinstance(value, BaseException):
            raise value
        return value


@pytest.fixture
def make_metric_probes():
    def _make(speeds=None, latencies=None, losses=None):
        return MetricProbes(
            measure_speed=SequenceProbe(*(speeds or [{"upload": 1000, "download": 2000}])),
            measure_latency=SequenceProbe(*(latencies or [30])),
            measure_packet_loss=SequenceProbe(*(losses or [0.0])),
        )
    return _make
