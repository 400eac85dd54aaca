from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from normalizers.base import LogRecord

logger = logging.getLogger(__name__)

VALID_MODIFIERS: Tuple[str, ...] = ("contains", "startswith", "endswith", "re")
DEFAULT_MODIFIER = "contains"

RECORD_ATTRIBUTES: Tuple[str, ...] = ("message", "hostname", "program", "pid", "timestamp")


def resolve_field(record: LogRecord, name: str) -> str:
    """
    Returns the value of a logical field for a record.

    Well-known names map to record attributes; anything else is looked up in
    the record's extracted fields and yields an empty string when absent.
    """
    if name in RECORD_ATTRIBUTES:
        return getattr(record, name)
    return record.fields.get(name, "")


def coerce_scalar(value: Any) -> Optional[str]:
    """Renders a YAML scalar as the string it is compared as; None for non-scalars."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return None


def _contains_ci(haystack: str, needle: str) -> bool:
    return needle.lower() in haystack.lower()


def _startswith_ci(haystack: str, prefix: str) -> bool:
    return haystack.lower().startswith(prefix.lower())


def _endswith_ci(haystack: str, suffix: str) -> bool:
    return haystack.lower().endswith(suffix.lower())


def _compile_regex(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.debug(f"Invalid regex {pattern!r} treated as non-matching: {e}")
        return None


@dataclass(frozen=True)
class StringPattern:
    """One string criterion with its modifier resolved and its regex compiled."""

    modifier: str
    value: str
    regex: Optional[re.Pattern] = None

    @classmethod
    def build(cls, modifier: str, value: str) -> "StringPattern":
        regex = _compile_regex(value) if modifier == "re" else None
        return cls(modifier=modifier, value=value, regex=regex)

    @classmethod
    def parse(cls, raw: str, default_modifier: str = DEFAULT_MODIFIER) -> "StringPattern":
        """Splits an embedded `|modifier|` prefix off a literal criterion."""
        for modifier in VALID_MODIFIERS:
            prefix = f"|{modifier}|"
            if raw.startswith(prefix):
                return cls.build(modifier, raw[len(prefix):])
        return cls.build(default_modifier, raw)

    def matches(self, actual: str) -> bool:
        if self.modifier == "re":
            # A pattern that failed to compile never matches.
            return self.regex is not None and self.regex.search(actual) is not None
        if self.modifier == "startswith":
            return _startswith_ci(actual, self.value)
        if self.modifier == "endswith":
            return _endswith_ci(actual, self.value)
        return _contains_ci(actual, self.value)


@dataclass(frozen=True)
class ScalarCriteria:
    pattern: StringPattern


@dataclass(frozen=True)
class ListCriteria:
    """Alternatives combined with OR; an empty tuple never matches."""

    patterns: Tuple[StringPattern, ...]


@dataclass(frozen=True)
class MapCriteria:
    """
    Explicit `{modifier: value}` criterion.

    Only the first valid modifier key with a scalar value (document order) is
    evaluated; `ignored` keeps the names of the other modifier keys.
    """

    pattern: Optional[StringPattern]
    ignored: Tuple[str, ...] = ()


Criteria = Union[ScalarCriteria, ListCriteria, MapCriteria]


@dataclass(frozen=True)
class FieldCriteria:
    field: str
    criteria: Criteria


def split_field_key(raw_key: str) -> Tuple[str, str, Tuple[str, ...]]:
    """
    Splits a Sigma-style `field|modifier` key.

    Returns the field name, the modifier applied to un-prefixed strings and
    any modifiers that are not supported.
    """
    parts = [p.strip() for p in raw_key.split("|")]
    field_name = parts[0]
    default_modifier = DEFAULT_MODIFIER
    unsupported = []
    chosen = False
    for part in parts[1:]:
        if not part:
            continue
        lowered = part.lower()
        if lowered in VALID_MODIFIERS and not chosen:
            default_modifier = lowered
            chosen = True
        else:
            unsupported.append(part)
    return field_name, default_modifier, tuple(unsupported)


def decode_criteria(raw: Any, default_modifier: str = DEFAULT_MODIFIER) -> Criteria:
    """Decodes the YAML value of one selection entry into a criteria variant."""
    if isinstance(raw, dict):
        chosen: Optional[StringPattern] = None
        ignored = []
        for key, value in raw.items():
            modifier = str(key).strip().lower()
            if modifier not in VALID_MODIFIERS:
                continue
            text = coerce_scalar(value)
            if chosen is not None or text is None:
                ignored.append(modifier)
                continue
            chosen = StringPattern.build(modifier, text)
        return MapCriteria(pattern=chosen, ignored=tuple(ignored))

    if isinstance(raw, list):
        patterns = []
        for item in raw:
            text = coerce_scalar(item)
            if text is None:
                continue
            patterns.append(StringPattern.parse(text, default_modifier))
        return ListCriteria(patterns=tuple(patterns))

    text = coerce_scalar(raw)
    if text is None:
        return ListCriteria(patterns=())
    return ScalarCriteria(pattern=StringPattern.parse(text, default_modifier))


def match_criteria(criteria: Criteria, actual: str) -> bool:
    if isinstance(criteria, ScalarCriteria):
        return criteria.pattern.matches(actual)
    if isinstance(criteria, ListCriteria):
        return any(pattern.matches(actual) for pattern in criteria.patterns)
    if isinstance(criteria, MapCriteria):
        return criteria.pattern is not None and criteria.pattern.matches(actual)
    raise TypeError(f"Unknown criteria type: {type(criteria).__name__}")


def match_field(entry: FieldCriteria, record: LogRecord) -> bool:
    return match_criteria(entry.criteria, resolve_field(record, entry.field))
