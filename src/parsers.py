"""Rule-based line parser.

Rules are tried in priority order; the first rule whose pattern matches
decides the program and the structured fields. The last rule is always an
unconditional fallback, so every input line yields exactly one LogEntry and
the raw line is always kept.

Default rules:
  1. connect -> ``<time> ... connect: <level>:<ip> [<facility>:<lineno>] <message>``
  2. kernel  -> anything else
"""

import re
from dataclasses import dataclass
from typing import Callable

from src.models import LogEntry, ObjectKeyInfo

# (time, level, facility, message)
Fields = tuple[str, str, str, str]

# The line number may sit inside the brackets ("[Auth:42]") or follow them ("[Auth]:42").
CONNECT_PATTERN = re.compile(
    r".*(\d{2}:\d{2}:\d{2}).*connect: ([DIWENC]):[\d.]+\s+T?\[([\w\s]+)(?::\d+\]|\]:\d+)\s+(.*)",
    re.ASCII,
)


def _groups_in_order(match: re.Match) -> Fields:
    """Take the first four capture groups as time, level, facility, message."""
    time, level, facility, message = match.group(1, 2, 3, 4)
    return time or "", level or "", facility or "", message or ""


def _empty_fields(match: re.Match | None) -> Fields:
    return "", "", "", ""


@dataclass(frozen=True)
class ParseRule:
    name: str
    program: str
    pattern: re.Pattern | None = None
    extractor: Callable[[re.Match], Fields] = _groups_in_order

    @property
    def is_fallback(self) -> bool:
        return self.pattern is None


CONNECT_RULE = ParseRule(name="connect", program="Connect", pattern=CONNECT_PATTERN)
KERNEL_RULE = ParseRule(name="kernel", program="Kernel", extractor=_empty_fields)


class LineParser:
    """Ordered set of parse rules ending in a fallback."""

    def __init__(self, rules: list[ParseRule] | None = None):
        rules = list(rules) if rules is not None else [CONNECT_RULE, KERNEL_RULE]
        fallbacks = [i for i, rule in enumerate(rules) if rule.is_fallback]
        if fallbacks and fallbacks[0] != len(rules) - 1:
            raise ValueError("A fallback rule (pattern=None) must be the last rule")
        if not fallbacks:
            rules.append(KERNEL_RULE)
        self._rules = rules

    @property
    def rules(self) -> list[ParseRule]:
        return list(self._rules)

    def register(self, rule: ParseRule, index: int | None = None):
        """Insert a pattern rule, by default just ahead of the fallback."""
        if rule.is_fallback:
            raise ValueError("Cannot register a second fallback rule")
        fallback_pos = len(self._rules) - 1
        if index is None or index > fallback_pos:
            index = fallback_pos
        self._rules.insert(index, rule)

    def parse(self, raw_line: str) -> LogEntry:
        """Classify a single raw line. Never raises."""
        for rule in self._rules:
            if rule.is_fallback:
                match = None
            else:
                match = rule.pattern.match(raw_line)
                if match is None:
                    continue
            try:
                time, level, facility, message = rule.extractor(match)
            except (IndexError, ValueError, TypeError):
                # A rule whose extractor does not fit its own match is skipped
                continue
            return LogEntry(
                program=rule.program,
                raw_line=raw_line,
                time=time,
                level=level,
                facility=facility,
                message=message,
            )
        # Only reachable if the fallback extractor itself misbehaves
        return LogEntry(program=KERNEL_RULE.program, raw_line=raw_line)

    def parse_for_object(self, raw_line: str, key_info: ObjectKeyInfo) -> LogEntry:
        """Parse a line and stamp it with its object's location, date and correlation id."""
        return self.parse(raw_line).with_object(key_info)


_default_parser = LineParser()


def parse_line(raw_line: str) -> LogEntry:
    """Parse with the default connect/kernel rules."""
    return _default_parser.parse(raw_line)
