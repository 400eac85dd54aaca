"""
Condition evaluation for detection rules.

Supported grammar is intentionally small:

    selection           every declared selection block must match
    a and b [and c]     every named block must match
    a or b [or c]       at least one named block must match
    name                the named block must match

" and " is looked for before " or ", with no precedence between them, so a
mixed expression such as "a and b or c" is split on " and " only and its
"b or c" part resolves to an unknown block (false). Existing rule files rely
on this behaviour; parentheses and negation are not supported.
"""

from __future__ import annotations

from typing import Callable, Dict

from detection.matcher import match_field
from detection.rules import DetectionRule, SelectionBlock
from normalizers.base import LogRecord

DEFAULT_CONDITION = "selection"


def evaluate_block(block: SelectionBlock, record: LogRecord) -> bool:
    if not block.entries:
        return False
    return all(match_field(entry, record) for entry in block.entries)


def evaluate_condition(condition: str, get_block: Callable[[str], bool], all_blocks: Callable[[], bool]) -> bool:
    """
    Evaluates a condition string given a lookup of block results.

    `get_block` receives a lowercased block name and returns False for names
    that are not declared. `all_blocks` answers the `selection` keyword and
    must be false when no block is declared.
    """
    expression = (condition or "").strip().lower() or DEFAULT_CONDITION

    if expression == DEFAULT_CONDITION:
        return all_blocks()

    if " and " in expression:
        return all(get_block(part.strip()) for part in expression.split(" and "))

    if " or " in expression:
        return any(get_block(part.strip()) for part in expression.split(" or "))

    return get_block(expression)


def rule_detects(rule: DetectionRule, record: LogRecord) -> bool:
    """Evaluates a rule's detection body (not its log-source filter) against one record."""
    blocks: Dict[str, SelectionBlock] = {}
    for block in rule.selections:
        blocks.setdefault(block.name.lower(), block)

    cache: Dict[str, bool] = {}

    def get_block(name: str) -> bool:
        if name in cache:
            return cache[name]
        block = blocks.get(name)
        result = evaluate_block(block, record) if block is not None else False
        cache[name] = result
        return result

    # Every declared block counts, including ones whose names differ only in case.
    def all_blocks() -> bool:
        if not rule.selections:
            return False
        return all(evaluate_block(block, record) for block in rule.selections)

    return evaluate_condition(rule.condition, get_block, all_blocks)
