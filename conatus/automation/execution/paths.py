"""
Conatus Path Access

Dotted-path lookup over nested mappings and sequences
(``user.name``, ``items[0].title``, ``items.0.title``).
"""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Sequence, Union

from conatus.automation.types import UNDEFINED

_SEGMENT_PATTERN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def split_path(path: str) -> List[Union[str, int]]:
    """Split a dotted path into keys and list indices."""
    parts: List[Union[str, int]] = []
    for key, index in _SEGMENT_PATTERN.findall(path.strip()):
        parts.append(int(index) if index else key.strip())
    return parts


def get_path(data: Any, path: str, default: Any = UNDEFINED) -> Any:
    """
    Get a nested value.

    An exact key match on the top-level mapping wins over path traversal, so
    keys that themselves contain dots stay reachable.
    """
    if isinstance(data, Mapping) and path in data:
        return data[path]

    parts = split_path(path)
    if not parts:
        return default

    return _get_nested(data, parts, default)


def _get_nested(data: Any, parts: List[Union[str, int]], default: Any) -> Any:
    if not parts:
        return data

    if data is None or data is UNDEFINED:
        return default

    head = parts[0]

    if isinstance(data, Mapping):
        if head in data:
            return _get_nested(data[head], parts[1:], default)
        if isinstance(head, int) and str(head) in data:
            return _get_nested(data[str(head)], parts[1:], default)
        return default

    if isinstance(data, Sequence) and not isinstance(data, (str, bytes)):
        try:
            index = int(head)
        except ValueError:
            return default
        if 0 <= index < len(data):
            return _get_nested(data[index], parts[1:], default)
        return default

    return default
