"""
Amount conditions attached to category rules.

Conditions are typed free text ("at least 50", "> $20", "100 or 150") and
parse on a best-effort basis: anything unrecognised means "no condition".
"""
import math
import re
from dataclasses import dataclass
from typing import Literal

AmountOperator = Literal[">", ">=", "<", "<=", "="]


@dataclass(frozen=True)
class AmountComparison:
    operator: AmountOperator
    threshold: float


@dataclass(frozen=True)
class AmountExactSet:
    values: tuple[float, ...]


AmountCondition = AmountComparison | AmountExactSet

# Longer phrases first so "no more than" is not read as "no" + "more than".
_PHRASES = (
    ("greater than or equal to", ">="),
    ("less than or equal to", "<="),
    ("no more than", "<="),
    ("not more than", "<="),
    ("no less than", ">="),
    ("not less than", ">="),
    ("greater than", ">"),
    ("more than", ">"),
    ("less than", "<"),
    ("fewer than", "<"),
    ("at least", ">="),
    ("at most", "<="),
    ("above", ">"),
    ("over", ">"),
    ("below", "<"),
    ("under", "<"),
    ("equal to", "="),
    ("equals", "="),
    ("exactly", "="),
)
_PHRASE_PATTERNS = tuple(
    (re.compile(rf"\b{re.escape(phrase)}\b"), symbol) for phrase, symbol in _PHRASES
)

_CURRENCY_WORDS = re.compile(r"\b(?:dollars?|nzd|usd|aud|eur|gbp)\b")
_CURRENCY_SYMBOLS = re.compile(r"(?:nz\$|us\$|a\$|[€£])")
_OR_SEPARATOR = re.compile(r"\bor\b")
_NUMERIC_LITERAL = re.compile(r"\$?(-?\d+(?:\.\d+)?)")
_COMPARISON = re.compile(r"(>=|<=|==|>|<|=)\$?(-?\d+(?:\.\d+)?)")


def _parse_number(raw: str) -> float | None:
    match = _NUMERIC_LITERAL.fullmatch(re.sub(r"\s+", "", raw))
    if not match:
        return None
    value = float(match.group(1))
    return value if math.isfinite(value) else None


def parse_amount_condition(raw: str | None) -> AmountCondition | None:
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().lower()
    if not normalized:
        return None

    for pattern, symbol in _PHRASE_PATTERNS:
        normalized = pattern.sub(symbol, normalized)
    normalized = _CURRENCY_SYMBOLS.sub("$", normalized)
    normalized = _CURRENCY_WORDS.sub("", normalized)
    normalized = normalized.replace(",", "")
    normalized = re.sub(r"\s+", " ", normalized).strip()
    if not normalized:
        return None

    if _OR_SEPARATOR.search(normalized):
        parts = [part.strip() for part in _OR_SEPARATOR.split(normalized) if part.strip()]
        values = [_parse_number(part) for part in parts]
        if parts and all(value is not None for value in values):
            return AmountExactSet(values=tuple(values))

    literal = _parse_number(normalized)
    if literal is not None:
        return AmountExactSet(values=(literal,))

    # Surrounding words are ignored: "amount > 50 only" reads as "> 50".
    match = _COMPARISON.search(normalized.replace(" ", ""))
    if not match:
        return None
    operator = "=" if match.group(1) == "==" else match.group(1)
    threshold = float(match.group(2))
    if not math.isfinite(threshold):
        return None
    return AmountComparison(operator=operator, threshold=threshold)


def amount_condition_matches(condition: AmountCondition, amount: float) -> bool:
    value = abs(amount)
    if isinstance(condition, AmountExactSet):
        return any(abs(candidate) == value for candidate in condition.values)

    threshold = abs(condition.threshold)
    if condition.operator == ">":
        return value > threshold
    if condition.operator == ">=":
        return value >= threshold
    if condition.operator == "<":
        return value < threshold
    if condition.operator == "<=":
        return value <= threshold
    return value == threshold
