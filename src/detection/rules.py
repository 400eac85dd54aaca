from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from detection.matcher import FieldCriteria
from normalizers.base import LogRecord


@dataclass(frozen=True)
class LogSourceFilter:
    """Restricts a rule to records of one classification; empty attributes match anything."""

    category: str = ""
    product: str = ""
    service: str = ""

    def matches(self, record: LogRecord) -> bool:
        if self.category and self.category != record.category:
            return False
        if self.product and self.product != record.product:
            return False
        if self.service and self.service != record.service:
            return False
        return True


@dataclass(frozen=True)
class SelectionBlock:
    """Named group of field criteria, all of which must match."""

    name: str
    entries: Tuple[FieldCriteria, ...]


@dataclass(frozen=True)
class DetectionRule:
    rule_id: str
    title: str
    selections: Tuple[SelectionBlock, ...]
    condition: str
    logsource: LogSourceFilter = LogSourceFilter()
    level: str = "unknown"
    status: str = ""
    description: str = ""
    author: str = ""
    date: str = ""
    modified: str = ""
    tags: Tuple[str, ...] = ()
    falsepositives: Tuple[str, ...] = ()
    fields: Tuple[str, ...] = ()
    file_path: str = ""

    @property
    def selection_names(self) -> Tuple[str, ...]:
        return tuple(block.name for block in self.selections)


@dataclass(frozen=True)
class RuleSet:
    """Rules loaded once at startup, plus what happened while loading them."""

    rules: Tuple[DetectionRule, ...] = ()
    files_scanned: int = 0
    files_skipped: int = 0
    errors: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[DetectionRule]:
        return iter(self.rules)

    def get(self, rule_id: str) -> Optional[DetectionRule]:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    @property
    def rule_ids(self) -> Tuple[str, ...]:
        return tuple(rule.rule_id for rule in self.rules)
