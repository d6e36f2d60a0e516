"""vpnguard configuration system using Pydantic Settings."""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VPNGuardConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "VPNGUARD"
    debug: bool = False
    log_dir: str = "logs"

    # Timers (seconds)
    security_check_interval: float = 5.0
    analytics_update_interval: float = 1.0
    probe_timeout: Optional[float] = 10.0

    # Retention
    history_limit: int = 3600  # samples per session, 1 hour at 1s
    alert_history_limit: int = 100
    session_log_limit: int = 1000
    alert_dedup_window: float = 0.0  # 0 disables echo suppression

    # Persistence
    storage_backend: str = "json"  # memory / json / sqlite
    storage_path: str = "vpnguard_state.json"
    database_url: str = "sqlite:///./vpnguard.db"
    analytics_storage_key: str = "vpnguard_analytics"
    preferences_storage_key: str = "vpnguard_preferences"

    # VPN expectations used by the default leak checks
    vpn_expected_dns: list[str] = ["10.8.0.1", "10.8.0.2"]
    vpn_exit_ip: Optional[str] = None
    public_ip_services: list[str] = [
        "https://api.ipify.org?format=json",
        "https://httpbin.org/ip",
    ]

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        allowed = {"memory", "json", "sqlite"}
        if v not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}")
        return v

    @field_validator("security_check_interval", "analytics_update_interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals must be positive")
        return v

    @field_validator("history_limit", "alert_history_limit", "session_log_limit")
    @classmethod
    def validate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("limits must be at least 1")
        return v


def get_config() -> VPNGuardConfig:
    """Factory function to create config instance."""
    return VPNGuardConfig()
