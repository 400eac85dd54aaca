from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from detection.conditions import rule_detects
from detection.rule_loader import load_rules, rule_paths_from_config
from detection.rules import DetectionRule, RuleSet
from normalizers.base import LogRecord

logger = logging.getLogger(__name__)


def _normalize_severity_filter(severity_filter: Optional[Sequence[str]]) -> Optional[Set[str]]:
    if not severity_filter:
        return None
    return {str(level).strip().lower() for level in severity_filter if str(level).strip()}


class DetectionEngine:
    """
    Evaluates normalized log records against a rule set loaded once.

    The rule set is never modified after construction, so one engine can be
    shared by any number of evaluations.
    """

    def __init__(self, config: Dict[str, Any], rule_set: Optional[RuleSet] = None):
        self.rules_paths: List[str] = rule_paths_from_config(config)
        self.severity_filter = _normalize_severity_filter(config.get("severity_filter"))
        self.rule_set: RuleSet = rule_set if rule_set is not None else load_rules(self.rules_paths)

    @classmethod
    def from_rules(cls, rule_set: RuleSet, severity_filter: Optional[Sequence[str]] = None) -> "DetectionEngine":
        return cls({"severity_filter": severity_filter}, rule_set=rule_set)

    @property
    def rules(self) -> Sequence[DetectionRule]:
        return self.rule_set.rules

    def _should_evaluate(self, rule: DetectionRule) -> bool:
        if not self.severity_filter:
            return True
        return rule.level in self.severity_filter

    def rule_matches(self, rule: DetectionRule, record: LogRecord) -> bool:
        if not rule.logsource.matches(record):
            return False
        return rule_detects(rule, record)

    def evaluate(self, record: LogRecord) -> List[str]:
        """Returns the ids of every rule that fires for the record, in rule-set order."""
        matched: List[str] = []
        for rule in self.rule_set.rules:
            if not self._should_evaluate(rule):
                continue
            try:
                if self.rule_matches(rule, record):
                    matched.append(rule.rule_id)
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.rule_id!r} ({rule.file_path}): {e}", exc_info=True)
        return matched

    def annotate(self, record: LogRecord) -> LogRecord:
        """Appends newly matched rule ids; ids already on the record are kept once."""
        for rule_id in self.evaluate(record):
            if rule_id not in record.matched_rules:
                record.matched_rules.append(rule_id)
        return record

    def annotate_all(self, records: Iterable[LogRecord]) -> List[LogRecord]:
        return [self.annotate(record) for record in records]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "rules_loaded": len(self.rule_set),
            "files_scanned": self.rule_set.files_scanned,
            "files_skipped": self.rule_set.files_skipped,
            "rules_paths": list(self.rules_paths),
        }
