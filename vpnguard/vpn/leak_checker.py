"""DNS/IP/WebRTC/encryption/kill-switch leak checks for the VPN client.

Each check pulls its inputs from an injected probe and reports a
``CheckResult``. The checks do not raise alerts themselves; the security
monitor turns failed checks into alerts.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from ..utils.logging import get_logger
from ..utils.probes import call_probe

logger = get_logger("vpn.leak_checker")

Probe = Callable[..., Any]

DEFAULT_IP_SERVICES = [
    "https://api.ipify.org?format=json",
    "https://httpbin.org/ip",
]

MIN_CIPHER_STRENGTH = 256

IPV4_RE = re.compile(r"(?:[0-9]{1,3}\.){3}[0-9]{1,3}")


class AlertType(str, Enum):
    DNS_LEAK = "DNS_LEAK"
    IP_LEAK = "IP_LEAK"
    WEBRTC_LEAK = "WEBRTC_LEAK"
    WEAK_ENCRYPTION = "WEAK_ENCRYPTION"
    KILLSWITCH_DISABLED = "KILLSWITCH_DISABLED"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


@dataclass
class CheckResult:
    """Outcome of a single leak check."""
    leak: bool
    type: AlertType
    severity: Optional[Severity] = None
    details: dict = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "CheckResult":
        """Accept a ``CheckResult`` or a plain mapping like ``{"leak": True, ...}``."""
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            severity = value.get("severity")
            return cls(
                leak=bool(value.get("leak", False)),
                type=AlertType(value["type"]),
                severity=Severity(severity) if severity is not None else None,
                details=dict(value.get("details") or {}),
            )
        raise TypeError(f"check returned unsupported result {type(value).__name__}")

    def to_dict(self) -> dict:
        return {
            "leak": self.leak,
            "type": self.type.value,
            "severity": self.severity.value if self.severity else None,
            "details": self.details,
        }


@dataclass
class EncryptionStatus:
    active: bool = True
    protocol: Optional[str] = None
    cipher: Optional[str] = None
    strength: int = 0

    @classmethod
    def coerce(cls, value: Any) -> "EncryptionStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(
                active=bool(value.get("active", False)),
                protocol=value.get("protocol"),
                cipher=value.get("cipher"),
                strength=int(value.get("strength") or 0),
            )
        raise TypeError(f"unsupported encryption status {type(value).__name__}")

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "protocol": self.protocol,
            "cipher": self.cipher,
            "strength": self.strength,
        }


async def fetch_public_ip(
    services: Iterable[str] = DEFAULT_IP_SERVICES,
    timeout: float = 10.0,
) -> Optional[str]:
    """Ask public lookup services for the visible IP; first answer wins."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        for service in services:
            try:
                resp = await client.get(service)
                if resp.status_code == 200:
                    data = resp.json()
                    visible_ip = data.get("ip") or data.get("origin", "").split(",")[0].strip()
                    if visible_ip:
                        return visible_ip
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("public_ip_service_failed", service=service, error=str(e))
                continue
    logger.error("public_ip_lookup_failed")
    return None


def extract_candidate_ips(candidates: Iterable[str]) -> list[str]:
    """Unique IPv4 addresses found in ICE candidate lines, skipping ``0.*``."""
    leaked: list[str] = []
    for line in candidates:
        match = IPV4_RE.search(line or "")
        if match and not match.group(0).startswith("0.") and match.group(0) not in leaked:
            leaked.append(match.group(0))
    return leaked


@dataclass
class SecurityProbes:
    """Injected suppliers for the leak checks.

    Each may be a plain or async callable. ``webrtc_candidates`` is None on
    targets without a real-time negotiation stack; the WebRTC check then
    reports no leak.
    """
    dns_servers: Probe
    expected_dns: Probe
    public_ip: Probe
    vpn_exit_ip: Probe
    encryption_status: Probe
    kill_switch_active: Probe
    webrtc_candidates: Optional[Probe] = None


class LeakChecker:
    """Runs the fixed battery of leak checks against injected probes."""

    def __init__(self, probes: SecurityProbes, probe_timeout: Optional[float] = None):
        self._probes = probes
        self._probe_timeout = probe_timeout

    async def _probe(self, probe: Probe) -> Any:
        return await call_probe(probe, timeout=self._probe_timeout)

    async def check_dns_leak(self) -> CheckResult:
        """Flag a leak when the live resolver set differs from the VPN's."""
        detected, expected = await asyncio.gather(
            self._probe(self._probes.dns_servers),
            self._probe(self._probes.expected_dns),
        )
        detected = list(detected or [])
        expected = list(expected or [])

        if set(detected) != set(expected):
            logger.warning("dns_leak_detected", detected=detected, expected=expected)
            return CheckResult(
                leak=True,
                type=AlertType.DNS_LEAK,
                severity=Severity.HIGH,
                details={"detected": sorted(detected), "expected": sorted(expected)},
            )
        return CheckResult(leak=False, type=AlertType.DNS_LEAK)

    async def check_ip_leak(self) -> CheckResult:
        """Flag a leak when the visible public IP is not the VPN exit IP."""
        current_ip, vpn_ip = await asyncio.gather(
            self._probe(self._probes.public_ip),
            self._probe(self._probes.vpn_exit_ip),
        )
        if current_ip != vpn_ip:
            logger.warning("ip_leak_detected", visible_ip=current_ip, expected_ip=vpn_ip)
            return CheckResult(
                leak=True,
                type=AlertType.IP_LEAK,
                severity=Severity.CRITICAL,
                details={"real_ip": current_ip, "vpn_ip": vpn_ip},
            )
        return CheckResult(leak=False, type=AlertType.IP_LEAK)

    async def check_webrtc_leak(self) -> CheckResult:
        """Flag local addresses exposed through WebRTC candidate gathering."""
        if self._probes.webrtc_candidates is None:
            return CheckResult(leak=False, type=AlertType.WEBRTC_LEAK)

        candidates = await self._probe(self._probes.webrtc_candidates)
        leaked = extract_candidate_ips(candidates or [])
        if leaked:
            logger.warning("webrtc_leak_detected", leaked_ips=leaked)
            return CheckResult(
                leak=True,
                type=AlertType.WEBRTC_LEAK,
                severity=Severity.HIGH,
                details={"leaked_ips": leaked},
            )
        return CheckResult(leak=False, type=AlertType.WEBRTC_LEAK)

    async def check_encryption(self) -> CheckResult:
        status = EncryptionStatus.coerce(await self._probe(self._probes.encryption_status))
        if not status.active or status.strength < MIN_CIPHER_STRENGTH:
            logger.warning(
                "weak_encryption_detected",
                active=status.active,
                strength=status.strength,
            )
            return CheckResult(
                leak=True,
                type=AlertType.WEAK_ENCRYPTION,
                severity=Severity.HIGH,
                details=status.to_dict(),
            )
        return CheckResult(leak=False, type=AlertType.WEAK_ENCRYPTION)

    async def check_kill_switch(self) -> CheckResult:
        if not await self._probe(self._probes.kill_switch_active):
            return CheckResult(
                leak=True,
                type=AlertType.KILLSWITCH_DISABLED,
                severity=Severity.MEDIUM,
                details={
                    "message": "Kill switch is not active - connection may leak if VPN drops",
                },
            )
        return CheckResult(leak=False, type=AlertType.KILLSWITCH_DISABLED)

    def battery(self) -> list[Callable[[], Awaitable[CheckResult]]]:
        """The checks in the order a security cycle runs them."""
        return [
            self.check_dns_leak,
            self.check_ip_leak,
            self.check_webrtc_leak,
            self.check_encryption,
            self.check_kill_switch,
        ]


def default_security_probes(
    expected_dns: list[str],
    vpn_exit_ip: Probe,
    ip_services: Iterable[str] = DEFAULT_IP_SERVICES,
    kill_switch_active: Probe | None = None,
    encryption_status: Probe | None = None,
    dns_servers: Probe | None = None,
) -> SecurityProbes:
    """Probes for a client without a tunnel driver attached.

    Only the public IP is measured for real (over HTTPS), against whatever
    ``vpn_exit_ip`` reports. The other probes echo the configured
    expectations unless replaced, so they never flag by themselves.
    """
    services = list(ip_services)

    async def public_ip() -> Optional[str]:
        return await fetch_public_ip(services)

    return SecurityProbes(
        dns_servers=dns_servers or (lambda: list(expected_dns)),
        expected_dns=lambda: list(expected_dns),
        public_ip=public_ip,
        vpn_exit_ip=vpn_exit_ip,
        encryption_status=encryption_status or (
            lambda: EncryptionStatus(active=True, protocol="OpenVPN", cipher="AES-256-GCM", strength=256)
        ),
        kill_switch_active=kill_switch_active or (lambda: True),
        webrtc_candidates=None,
    )
