"""
Conatus Built-in Functions

Functions callable from workflow value expressions.

Every function receives its already-resolved arguments and never raises on
malformed input: it returns the neutral value of its result type instead
(``""``, ``[]``, ``0`` or ``None``).
"""

from __future__ import annotations

import json
import math
import random as _random
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from conatus.automation.types import UNDEFINED, is_missing, to_jsonable

logger = structlog.get_logger(__name__)

BuiltinFunction = Callable[[List[Any]], Any]


def render_text(value: Any) -> str:
    """Render a resolved value as text for templates and string joins."""
    if is_missing(value):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(to_jsonable(value), default=str)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value) if "." in value else int(value)
        except ValueError:
            return 0
    return 0


def _numeric_args(args: List[Any]) -> List[Any]:
    # A single list argument is spread: sum([1, 2]) == sum(1, 2)
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        args = list(args[0])
    return [_to_number(a) for a in args]


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if _is_number(value):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


class FunctionRegistry:
    """
    Registry of built-in functions.

    Provides the standard function table and allows custom registration.
    """

    def __init__(self):
        self._functions: Dict[str, BuiltinFunction] = {}
        self._register_builtin_functions()

    def _register_builtin_functions(self) -> None:
        """Register built-in functions."""
        self._functions["concat"] = self._concat
        self._functions["join"] = self._join
        self._functions["length"] = self._length
        self._functions["lowercase"] = self._lowercase
        self._functions["uppercase"] = self._uppercase
        self._functions["substring"] = self._substring
        self._functions["replace"] = self._replace
        self._functions["split"] = self._split
        self._functions["now"] = self._now
        self._functions["formatDate"] = self._format_date
        self._functions["sum"] = self._sum
        self._functions["avg"] = self._avg
        self._functions["min"] = self._min
        self._functions["max"] = self._max
        self._functions["random"] = self._random
        self._functions["if"] = self._if

    def register(self, name: str, func: BuiltinFunction) -> None:
        """Register a custom function."""
        self._functions[name] = func

    def has(self, name: str) -> bool:
        return name in self._functions

    def call(self, name: str, args: List[Any]) -> Any:
        """Call a function; unknown names resolve to undefined."""
        func = self._functions.get(name)
        if func is None:
            logger.warning("unknown_function", function=name)
            return UNDEFINED

        return func(args)

    # === Function Implementations ===

    @staticmethod
    def _concat(args: List[Any]) -> str:
        return "".join(render_text(a) for a in args)

    @staticmethod
    def _join(args: List[Any]) -> str:
        if len(args) < 1 or not isinstance(args[0], (list, tuple)):
            return ""
        separator = args[1] if len(args) > 1 and isinstance(args[1], str) else ""
        return separator.join(render_text(a) for a in args[0])

    @staticmethod
    def _length(args: List[Any]) -> int:
        value = args[0] if args else None
        if isinstance(value, (str, list, tuple, dict)):
            return len(value)
        return 0

    @staticmethod
    def _lowercase(args: List[Any]) -> str:
        if args and isinstance(args[0], str):
            return args[0].lower()
        return ""

    @staticmethod
    def _uppercase(args: List[Any]) -> str:
        if args and isinstance(args[0], str):
            return args[0].upper()
        return ""

    @staticmethod
    def _substring(args: List[Any]) -> str:
        if len(args) < 2 or not isinstance(args[0], str) or not _is_number(args[1]):
            return ""
        text = args[0]
        start = max(0, min(int(args[1]), len(text)))
        end = len(text)
        if len(args) > 2 and _is_number(args[2]):
            end = max(0, min(int(args[2]), len(text)))
        if start > end:
            start, end = end, start
        return text[start:end]

    @staticmethod
    def _replace(args: List[Any]) -> str:
        if len(args) < 3 or not isinstance(args[0], str):
            return ""
        text, pattern, replacement = args[0], render_text(args[1]), render_text(args[2])
        try:
            compiled = re.compile(pattern)
        except re.error:
            logger.debug("replace_invalid_pattern", pattern=pattern)
            return text

        # $1-style group references in the replacement
        def substitute(match: re.Match) -> str:
            def group(ref: re.Match) -> str:
                index = int(ref.group(1))
                if index <= compiled.groups:
                    return match.group(index) or ""
                return ref.group(0)
            return re.sub(r"\$(\d+)", group, replacement.replace("$&", match.group(0)))

        return compiled.sub(substitute, text)

    @staticmethod
    def _split(args: List[Any]) -> List[str]:
        if len(args) < 2 or not isinstance(args[0], str) or not isinstance(args[1], str):
            return []
        if args[1] == "":
            return list(args[0])
        return args[0].split(args[1])

    @staticmethod
    def _now(args: List[Any]) -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _format_date(args: List[Any]) -> str:
        if not args:
            return ""
        date = _parse_date(args[0])
        if date is None:
            return ""

        fmt = args[1] if len(args) > 1 and args[1] else "ISO"
        if fmt == "ISO":
            return date.isoformat()
        if fmt == "date":
            return date.date().isoformat()
        if fmt == "time":
            return date.strftime("%H:%M:%S")
        if fmt == "localeDate":
            return date.strftime("%x")
        if fmt == "localeTime":
            return date.strftime("%X")
        return date.strftime("%c")

    @staticmethod
    def _sum(args: List[Any]) -> Any:
        return sum(_numeric_args(args))

    @staticmethod
    def _avg(args: List[Any]) -> Any:
        values = _numeric_args(args)
        if not values:
            return 0
        return sum(values) / len(values)

    @staticmethod
    def _min(args: List[Any]) -> Any:
        values = _numeric_args(args)
        return min(values) if values else None

    @staticmethod
    def _max(args: List[Any]) -> Any:
        values = _numeric_args(args)
        return max(values) if values else None

    @staticmethod
    def _random(args: List[Any]) -> Any:
        if not args:
            return _random.random()
        if not all(_is_number(a) for a in args[:2]):
            return 0
        if len(args) == 1:
            return math.floor(_random.random() * args[0])
        low, high = args[0], args[1]
        return math.floor(_random.random() * (high - low)) + low

    @staticmethod
    def _if(args: List[Any]) -> Any:
        if len(args) < 3:
            return None
        return args[1] if args[0] else args[2]
