import math
import re
from collections.abc import Iterable
from dataclasses import dataclass

from inbox_categorizer.logger import get_logger
from inbox_categorizer.models import UNCATEGORISED, CategoryRule, RuleMatch, Transaction
from inbox_categorizer.rules.amount import (
    AmountCondition,
    amount_condition_matches,
    parse_amount_condition,
)

logger = get_logger(__name__)

DEFAULT_PRIORITY = 1000.0
DEFAULT_MAX_PATTERN_LENGTH = 512

FIELD_MERCHANT = "merchant_normalised"
FIELD_DESCRIPTION = "description_raw"

# Bare "self" and bank names are left out: they hit merchants such as
# "Selfridges" or any card purchase through that bank.
TRANSFER_KEYWORDS = ("internet xfr", "transfer", "internal", "to self", "own account")


@dataclass(frozen=True)
class CompiledRule:
    priority: float
    pattern: re.Pattern[str]
    field: str
    category: str
    category_type: str
    amount_condition: AmountCondition | None = None
    rule_id: str | None = None

    def matches(self, target: Transaction) -> bool:
        if self.field == FIELD_DESCRIPTION:
            value = target.description_raw
        else:
            value = target.merchant_name
        if not self.pattern.search(value or ""):
            return False
        if self.amount_condition is not None:
            return amount_condition_matches(self.amount_condition, target.amount)
        return True


def compile_pattern(pattern: str, max_length: int = DEFAULT_MAX_PATTERN_LENGTH) -> re.Pattern[str] | None:
    if len(pattern) > max_length:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


class Categoriser:
    """
    User rules compiled once per classification pass.

    Rules are evaluated in ascending priority; the first rule whose pattern
    and amount condition both match wins.
    """

    def __init__(self, rules: list[CompiledRule]):
        self.rules = sorted(rules, key=lambda rule: rule.priority)

    @classmethod
    def build(
        cls,
        rules: Iterable[CategoryRule],
        max_pattern_length: int = DEFAULT_MAX_PATTERN_LENGTH,
    ) -> "Categoriser":
        compiled: list[CompiledRule] = []
        for rule in rules:
            if rule.is_disabled:
                continue
            pattern = (rule.pattern or "").strip()
            if not pattern:
                continue
            regex = compile_pattern(pattern, max_pattern_length)
            if regex is None:
                logger.debug("[RULES] Skipping rule %s: unusable pattern %r", rule.id or "-", pattern[:80])
                continue
            compiled.append(CompiledRule(
                priority=rule.priority if math.isfinite(rule.priority) else DEFAULT_PRIORITY,
                pattern=regex,
                field=FIELD_DESCRIPTION if rule.field == FIELD_DESCRIPTION else FIELD_MERCHANT,
                category=rule.category or UNCATEGORISED,
                category_type=rule.category_type or "",
                amount_condition=parse_amount_condition(rule.amount_condition),
                rule_id=rule.id,
            ))
        return cls(compiled)

    def match(self, target: Transaction) -> RuleMatch | None:
        for rule in self.rules:
            if rule.matches(target):
                return RuleMatch(
                    category=rule.category,
                    category_type=rule.category_type,
                    rule_id=rule.rule_id,
                )
        return None

    def categorise(self, target: Transaction) -> RuleMatch:
        return self.match(target) or RuleMatch(category=UNCATEGORISED, category_type="")

    def detect_transfer(self, target: Transaction) -> bool:
        description = (target.description_raw or "").lower()
        merchant = (target.merchant_name or "").lower()
        return any(
            keyword in description or keyword in merchant
            for keyword in TRANSFER_KEYWORDS
        )
