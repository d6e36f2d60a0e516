"""Preference store with default merging, persistence and change events."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ValidationError, field_validator

from ..storage import KeyValueStorage, MemoryStorage
from ..utils.event_bus import EventBus
from ..utils.logging import get_logger
from .defaults import DEFAULT_PREFERENCES, VALIDATORS
from .tree import MISSING, assign, deep_copy, deep_merge, is_mapping, lookup, object_diff

logger = get_logger("preferences.store")

PREFERENCES_VERSION = "1.0.0"
ALL_PATHS = "*"


@dataclass
class PreferenceChange:
    """One change notification. ``path`` is ``"*"`` for whole-tree replacement."""
    path: str
    new_value: Any
    old_value: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "new_value": self.new_value,
            "old_value": self.old_value,
            "timestamp": self.timestamp.isoformat(),
        }


class PreferencesExport(BaseModel):
    """Shape accepted by ``PreferenceStore.import_preferences``."""

    version: Union[str, int, float]
    exported_at: Optional[datetime] = None
    preferences: dict[str, Any]

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: Union[str, int, float]) -> Union[str, int, float]:
        if not (v.strip() if isinstance(v, str) else v):
            raise ValueError("version must not be empty")
        return v


class PreferenceStore:
    """Owns the live preference tree.

    The tree always contains every key of the defaults; keys found only in
    saved or imported data are kept. Readers get copies, never the live
    nodes. ``set`` does not validate; call ``validate`` first when needed.
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        storage_key: str = "vpnguard_preferences",
        defaults: dict | None = None,
    ):
        self._storage = storage if storage is not None else MemoryStorage()
        self._storage_key = storage_key
        self._defaults: dict = deep_copy(defaults if defaults is not None else DEFAULT_PREFERENCES)
        self._events = EventBus("preferences", event_types=("change",))
        self._preferences: dict = self._load_preferences()

    # --- Reads ---

    def get_all(self) -> dict:
        return deep_copy(self._preferences)

    def get_category(self, category: str) -> Optional[dict]:
        value = self._preferences.get(category)
        if not is_mapping(value):
            logger.warning("preference_category_not_found", category=category)
            return None
        return deep_copy(value)

    def get(self, path: str, default: Any = None) -> Any:
        """Value at a dot-delimited path, or ``default`` if it does not resolve."""
        value = lookup(self._preferences, path)
        return default if value is MISSING else deep_copy(value)

    def has(self, path: str) -> bool:
        return lookup(self._preferences, path) is not MISSING

    def get_default_value(self, path: str, default: Any = None) -> Any:
        value = lookup(self._defaults, path)
        return default if value is MISSING else deep_copy(value)

    @property
    def defaults(self) -> dict:
        return deep_copy(self._defaults)

    # --- Writes ---

    def set(self, path: str, value: Any) -> bool:
        """Write one value, persist the tree and notify subscribers.

        Returns False only if persisting failed; the in-memory write and the
        change event happen either way.
        """
        old_value = assign(self._preferences, path, deep_copy(value))
        saved = self._save_preferences()
        self._notify_change(path, deep_copy(value), None if old_value is MISSING else old_value)
        return saved

    def update(self, updates: dict[str, Any]) -> list[dict]:
        """Apply ``set`` per entry; each entry persists and notifies on its own."""
        changes = []
        for path, value in updates.items():
            old_value = self.get(path)
            self.set(path, value)
            changes.append({"path": path, "value": value, "old_value": old_value})
        return changes

    def reset(self, path: str) -> bool:
        """Restore one path to its default. False if the path has no default."""
        default_value = lookup(self._defaults, path)
        if default_value is MISSING:
            logger.warning("preference_reset_no_default", path=path)
            return False
        return self.set(path, deep_copy(default_value))

    def reset_all(self) -> bool:
        self._preferences = deep_copy(self._defaults)
        saved = self._save_preferences()
        self._notify_change(ALL_PATHS, self.get_all(), None)
        return saved

    def clear(self) -> bool:
        """Drop the stored tree and fall back to defaults without notifying."""
        try:
            self._storage.remove_item(self._storage_key)
        except Exception as e:
            logger.error("preferences_clear_failed", error=str(e))
            return False
        self._preferences = deep_copy(self._defaults)
        return True

    # --- Validation & comparison ---

    def validate(self, path: str, value: Any) -> bool:
        """Advisory check; paths without a rule are always valid."""
        validator = VALIDATORS.get(path)
        if validator is None:
            return True
        return bool(validator(value))

    def get_diff(self) -> dict:
        return object_diff(self._defaults, self._preferences)

    def is_default(self) -> bool:
        return not self.get_diff()

    def merge_with_defaults(self, saved: dict) -> dict:
        return deep_merge(self._defaults, saved)

    # --- Import / export ---

    def export_preferences(self) -> dict:
        return {
            "version": PREFERENCES_VERSION,
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "preferences": self.get_all(),
        }

    def import_preferences(self, payload: dict | str) -> bool:
        """Replace the tree with an exported payload merged onto defaults.

        Malformed payloads are rejected with False, never raised.
        """
        try:
            if isinstance(payload, (str, bytes)):
                payload = json.loads(payload)
            data = PreferencesExport.model_validate(payload)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("preferences_import_rejected", error=str(e))
            return False

        self._preferences = self.merge_with_defaults(data.preferences)
        self._save_preferences()
        self._notify_change(ALL_PATHS, self.get_all(), None)
        logger.info("preferences_imported", version=data.version)
        return True

    def get_summary(self) -> dict:
        """Digest of the settings a dashboard shows."""
        return {
            "connection": {
                "auto_connect": self.get("connection.autoConnect"),
                "kill_switch": self.get("connection.killSwitch"),
                "protocol": self.get("connection.preferredProtocol"),
            },
            "security": {
                "threat_level": self.get("security.threatLevel"),
                "malware_protection": self.get("security.malwareProtection"),
                "multi_hop_vpn": self.get("security.multiHopVPN"),
            },
            "notifications": {
                "security_alerts": self.get("notifications.securityAlerts"),
                "connection_status": self.get("notifications.connectionStatus"),
            },
            "privacy": {
                "share_analytics": self.get("privacy.shareAnonymousAnalytics"),
            },
        }

    # --- Subscriptions ---

    def on_change(self, callback: Callable[[PreferenceChange], Any]) -> None:
        self._events.subscribe("change", callback)

    def off_change(self, callback: Callable[[PreferenceChange], Any]) -> bool:
        return self._events.unsubscribe("change", callback)

    def _notify_change(self, path: str, new_value: Any, old_value: Any) -> None:
        change = PreferenceChange(path=path, new_value=new_value, old_value=old_value)
        logger.debug("preference_changed", path=path)
        self._events.publish("change", change)

    # --- Persistence ---

    def _load_preferences(self) -> dict:
        try:
            stored = self._storage.get_item(self._storage_key)
            if stored:
                parsed = json.loads(stored)
                if is_mapping(parsed):
                    return self.merge_with_defaults(parsed)
                logger.warning("preferences_stored_not_mapping", key=self._storage_key)
        except Exception as e:
            logger.error("preferences_load_failed", error=str(e))
        return deep_copy(self._defaults)

    def _save_preferences(self) -> bool:
        try:
            self._storage.set_item(self._storage_key, json.dumps(self._preferences))
            return True
        except Exception as e:
            logger.error("preferences_save_failed", error=str(e))
            return False
