from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import yaml

from detection.matcher import FieldCriteria, MapCriteria, coerce_scalar, decode_criteria, split_field_key
from detection.rules import DetectionRule, LogSourceFilter, RuleSet, SelectionBlock

logger = logging.getLogger(__name__)

RULE_FILE_EXTENSIONS = (".yml", ".yaml")


class RuleValidationError(ValueError):
    """A rule document is missing required fields or has an unusable shape."""


def _normalize_level(level: Any) -> str:
    value = str(level or "").strip().lower()
    return value or "unknown"


def _coerce_text(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    text = coerce_scalar(value)
    return text.strip() if text is not None else ""


def _coerce_text_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    items = value if isinstance(value, list) else [value]
    return tuple(text for text in (_coerce_text(item) for item in items) if text)


def iter_rule_files(root: str) -> Iterable[str]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if not filename.lower().endswith(RULE_FILE_EXTENSIONS):
                continue
            yield os.path.join(dirpath, filename)


def _required_text(doc: Dict[str, Any], key: str) -> str:
    value = _coerce_text(doc.get(key))
    if not value:
        raise RuleValidationError(f"missing required field {key!r}")
    return value


def _decode_logsource(raw: Any) -> LogSourceFilter:
    if raw is None:
        return LogSourceFilter()
    if not isinstance(raw, dict):
        raise RuleValidationError("'logsource' must be a mapping")
    return LogSourceFilter(
        category=_coerce_text(raw.get("category")),
        product=_coerce_text(raw.get("product")),
        service=_coerce_text(raw.get("service")),
    )


def _decode_selection(name: str, raw: Any, rule_id: str) -> SelectionBlock:
    if not isinstance(raw, dict) or not raw:
        raise RuleValidationError(f"selection {name!r} must be a non-empty mapping of field to criteria")

    entries: List[FieldCriteria] = []
    for raw_key, raw_value in raw.items():
        field_name, default_modifier, unsupported = split_field_key(str(raw_key))
        if not field_name:
            raise RuleValidationError(f"selection {name!r} has an empty field name")
        if unsupported:
            logger.warning(f"Rule {rule_id}: unsupported modifier(s) {list(unsupported)} on {raw_key!r} ignored")

        criteria = decode_criteria(raw_value, default_modifier)
        if isinstance(criteria, MapCriteria):
            if criteria.pattern is None:
                logger.warning(f"Rule {rule_id}: field {field_name!r} in {name!r} has no usable modifier and never matches")
            elif criteria.ignored:
                logger.warning(
                    f"Rule {rule_id}: field {field_name!r} in {name!r} lists several modifiers; "
                    f"only {criteria.pattern.modifier!r} is evaluated (ignored: {list(criteria.ignored)})"
                )
        entries.append(FieldCriteria(field=field_name, criteria=criteria))

    return SelectionBlock(name=name, entries=tuple(entries))


def build_rule(doc: Any, file_path: str = "") -> DetectionRule:
    """
    Validates one parsed rule document and decodes it into a DetectionRule.

    Raises RuleValidationError when the document is not usable.
    """
    if not isinstance(doc, dict):
        raise RuleValidationError("rule document is not a mapping")

    rule_id = _required_text(doc, "id")
    title = _required_text(doc, "title")

    detection = doc.get("detection")
    if detection is None:
        raise RuleValidationError("missing required field 'detection'")
    if not isinstance(detection, dict):
        raise RuleValidationError("'detection' must be a mapping")

    if "condition" not in detection or detection.get("condition") is None:
        raise RuleValidationError("detection section missing 'condition'")
    condition = detection.get("condition")
    if not isinstance(condition, str):
        raise RuleValidationError("detection must contain exactly one condition string")

    selections = tuple(
        _decode_selection(str(name), raw, rule_id)
        for name, raw in detection.items()
        if name != "condition"
    )
    if not selections:
        raise RuleValidationError("detection section has no selection block")

    return DetectionRule(
        rule_id=rule_id,
        title=title,
        selections=selections,
        condition=condition.strip(),
        logsource=_decode_logsource(doc.get("logsource")),
        level=_normalize_level(doc.get("level")),
        status=_coerce_text(doc.get("status")),
        description=_coerce_text(doc.get("description")),
        author=_coerce_text(doc.get("author")),
        date=_coerce_text(doc.get("date")),
        modified=_coerce_text(doc.get("modified")),
        tags=_coerce_text_list(doc.get("tags")),
        falsepositives=_coerce_text_list(doc.get("falsepositives")),
        fields=_coerce_text_list(doc.get("fields")),
        file_path=file_path,
    )


def load_rule_file(file_path: str) -> DetectionRule:
    with open(file_path, "r", encoding="utf-8", errors="ignore") as f:
        doc = yaml.safe_load(f)
    return build_rule(doc, file_path=file_path)


def load_rules(paths: Sequence[str]) -> RuleSet:
    """
    Loads every rule file found below the given directories.

    Broken or incomplete rule files are skipped with a warning and missing
    directories contribute no rules; loading itself never fails.
    """
    rules: List[DetectionRule] = []
    errors: List[str] = []
    seen_files: Set[str] = set()
    seen_ids: Set[str] = set()
    scanned = 0
    skipped = 0

    for root in paths:
        if not root:
            continue
        if not os.path.isdir(root):
            logger.warning(f"Rules path does not exist: {root}")
            continue

        for file_path in iter_rule_files(root):
            real_path = os.path.realpath(file_path)
            if real_path in seen_files:
                continue
            seen_files.add(real_path)
            scanned += 1

            try:
                rule = load_rule_file(file_path)
            except Exception as e:
                # YAML timestamps with impossible dates surface as plain ValueError.
                skipped += 1
                errors.append(f"{file_path}: {e}")
                logger.warning(f"Skipping rule file {file_path}: {e}")
                continue

            if rule.rule_id in seen_ids:
                skipped += 1
                errors.append(f"{file_path}: duplicate rule id {rule.rule_id!r}")
                logger.warning(f"Skipping rule file {file_path}: duplicate rule id {rule.rule_id!r}")
                continue

            seen_ids.add(rule.rule_id)
            rules.append(rule)

    logger.info(f"Detection rules loaded: {len(rules)} (scanned: {scanned}, skipped: {skipped})")
    if errors:
        logger.warning(f"Some rule files were skipped (showing first 5): {errors[:5]}")
    return RuleSet(rules=tuple(rules), files_scanned=scanned, files_skipped=skipped, errors=tuple(errors))


def rule_paths_from_config(config: Dict[str, Any]) -> List[str]:
    paths: List[str] = [str(p) for p in (config.get("rules_paths") or []) if p]
    rules_path: Optional[str] = config.get("rules_path")
    if rules_path and rules_path not in paths:
        paths.append(str(rules_path))
    return paths
