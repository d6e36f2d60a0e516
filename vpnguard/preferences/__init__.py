"""User preference tree: defaults, path access, validation, change events."""

from .defaults import DEFAULT_PREFERENCES, VALIDATORS
from .store import PreferenceChange, PreferenceStore, PREFERENCES_VERSION
from .tree import MISSING, deep_merge, object_diff

__all__ = [
    "DEFAULT_PREFERENCES",
    "VALIDATORS",
    "PreferenceChange",
    "PreferenceStore",
    "PREFERENCES_VERSION",
    "MISSING",
    "deep_merge",
    "object_diff",
]
