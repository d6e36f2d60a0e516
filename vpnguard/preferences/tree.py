"""Pure helpers over the nested preference tree.

A tree node is either a mapping (``dict`` with string keys), a list, or a
scalar (bool, int, float, str, None). Lists are leaves: they are replaced
wholesale by merges and compared as a whole by diffs.
"""

import copy
import json
from typing import Any, Union

Scalar = Union[bool, int, float, str, None]
PreferenceValue = Union[Scalar, list, dict]

PATH_SEPARATOR = "."


class _Missing:
    """Marker for "no value at this path" (``None`` is a legitimate value)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def is_mapping(value: Any) -> bool:
    return isinstance(value, dict)


def split_path(path: str) -> list[str]:
    if not isinstance(path, str) or not path:
        raise ValueError("preference path must be a non-empty string")
    return path.split(PATH_SEPARATOR)


def deep_copy(value: PreferenceValue) -> PreferenceValue:
    return copy.deepcopy(value)


def lookup(tree: dict, path: str) -> Any:
    """Resolve ``path`` segment by segment; ``MISSING`` if any step fails."""
    node: Any = tree
    for key in split_path(path):
        if is_mapping(node) and key in node:
            node = node[key]
        else:
            return MISSING
    return node


def assign(tree: dict, path: str, value: PreferenceValue) -> Any:
    """Write ``value`` at ``path``, creating mapping nodes on the way.

    A non-mapping found where a mapping is needed is overwritten. Returns
    the previous value at ``path`` (``MISSING`` if there was none).
    """
    *parents, last = split_path(path)
    node = tree
    for key in parents:
        if not is_mapping(node.get(key)):
            node[key] = {}
        node = node[key]
    old_value = node.get(last, MISSING)
    node[last] = value
    return old_value


def deep_merge(target: dict, source: dict) -> dict:
    """Merge ``source`` onto ``target`` and return a new mapping.

    Mappings on both sides recurse; anything else from ``source`` wins
    outright. Keys only in ``target`` are kept, keys only in ``source`` are
    added. Neither input is mutated.
    """
    output = {key: copy.deepcopy(value) for key, value in target.items()}
    for key, value in source.items():
        if is_mapping(value) and is_mapping(output.get(key)):
            output[key] = deep_merge(output[key], value)
        else:
            output[key] = copy.deepcopy(value)
    return output


def canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def object_diff(default: Any, current: Any) -> dict:
    """Recursive diff; leaves look like ``{"default": d, "current": c}``.

    Values absent on one side are reported as ``None``.
    """
    diff: dict = {}
    default = default if is_mapping(default) else {}
    current = current if is_mapping(current) else {}

    keys = list(default) + [k for k in current if k not in default]
    for key in keys:
        d_val = default.get(key)
        c_val = current.get(key)
        if is_mapping(d_val) and is_mapping(c_val):
            nested = object_diff(d_val, c_val)
            if nested:
                diff[key] = nested
        elif key not in default or key not in current or canonical(d_val) != canonical(c_val):
            diff[key] = {"default": copy.deepcopy(d_val), "current": copy.deepcopy(c_val)}
    return diff


def key_paths(tree: dict, prefix: str = "") -> list[str]:
    """Every path in ``tree`` (mapping nodes and leaves), depth first."""
    paths = []
    for key, value in tree.items():
        path = f"{prefix}{PATH_SEPARATOR}{key}" if prefix else key
        paths.append(path)
        if is_mapping(value):
            paths.extend(key_paths(value, path))
    return paths
