"""Object-id filter deciding whether a controller frame may reach the station.

A rule consists of an explicit id list and comparison expressions such as
``">= 1000"`` or ``"< 50"``. Expressions are evaluated in configured order and
the first one with a recognised comparator decides the outcome.
"""
from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional, Tuple

from ..config import FilterConfig
from ..protocol.command import Command

logger = logging.getLogger("middleman.filter")

# Two-character comparators must be tried before their one-character prefixes.
COMPARATORS: Tuple[Tuple[str, Callable[[int, int], bool]], ...] = (
    (">=", operator.ge),
    ("<=", operator.le),
    ("==", operator.eq),
    ("<", operator.lt),
    (">", operator.gt),
)


@dataclass(frozen=True)
class RangeExpression:
    comparator: str
    value: int

    def matches(self, object_id: int) -> bool:
        for symbol, fn in COMPARATORS:
            if symbol == self.comparator:
                return fn(object_id, self.value)
        return False

    def __str__(self) -> str:
        return f"{self.comparator}{self.value}"


def parse_range_expression(expression: Optional[str]) -> Optional[RangeExpression]:
    """Parse ``"<op> <int>"``; returns ``None`` for anything unusable."""
    text = (expression or "").strip()
    if len(text) < 2:
        return None
    for symbol, _ in COMPARATORS:
        if text.startswith(symbol):
            literal = text[len(symbol):].strip()
            try:
                return RangeExpression(symbol, int(literal))
            except ValueError:
                logger.warning("Ignoring filter range '%s': '%s' is not an integer", text, literal)
                return None
    logger.warning("Ignoring filter range '%s': unknown comparator", text)
    return None


class ObjectFilter:
    """Compiled form of a :class:`FilterConfig`."""

    def __init__(self, enabled: bool, object_ids: FrozenSet[int], ranges: List[RangeExpression]):
        self.enabled = enabled
        self.object_ids = object_ids
        self.ranges = ranges

    @classmethod
    def from_config(cls, rule: Optional[FilterConfig]) -> "ObjectFilter":
        if rule is None:
            return cls(False, frozenset(), [])
        ranges = []
        for expression in rule.object_id_ranges:
            parsed = parse_range_expression(expression)
            if parsed is not None:
                ranges.append(parsed)
        return cls(rule.enabled, frozenset(rule.object_ids), ranges)

    def is_filtered(self, command: Command) -> bool:
        if not self.enabled or command is None:
            return False

        object_id = command.object_id
        if object_id == -1:
            return True
        if object_id in self.object_ids:
            return True
        if self.ranges:
            # first usable expression decides, the rest are never consulted
            return self.ranges[0].matches(object_id)
        return False


def is_filtered(rule: Optional[FilterConfig], command: Command) -> bool:
    """True when ``command`` must not be forwarded under ``rule``."""
    return ObjectFilter.from_config(rule).is_filtered(command)
