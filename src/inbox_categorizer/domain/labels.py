from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from inbox_categorizer.domain.dates import age_in_days
from inbox_categorizer.models import ClassificationSource, Transaction

_INELIGIBLE_CATEGORIES = frozenset({"", "uncategorised", "transfer"})
_DERIVED_SOURCES = frozenset({ClassificationSource.RULE, ClassificationSource.MODEL})

RECENCY_HALF_LIFE_DAYS = 180.0
MIN_RECENCY_WEIGHT = 0.1


def is_eligible_category(category: str | None) -> bool:
    return (category or "").strip().lower() not in _INELIGIBLE_CATEGORIES


def is_training_label(transaction: Transaction) -> bool:
    """A confirmed, non-transfer transaction with a real spending category."""
    return (
        transaction.category_confirmed
        and not transaction.is_transfer
        and is_eligible_category(transaction.category)
    )


def is_eligible_history(transaction: Transaction) -> bool:
    """A categorised row whose category did not come from a rule or the model."""
    return (
        transaction.classification_source not in _DERIVED_SOURCES
        and not transaction.is_transfer
        and is_eligible_category(transaction.category)
    )


def most_frequent_category(categories: Iterable[str]) -> str | None:
    # Counter preserves insertion order, so ties go to the first category seen.
    counts = Counter(categories)
    if not counts:
        return None
    best_category, best_count = None, 0
    for category, count in counts.items():
        if count > best_count:
            best_category, best_count = category, count
    return best_category


def category_types(labels: Iterable[Transaction]) -> dict[str, str]:
    """Category -> category type, taken from the most recent confirmation."""
    latest: dict[str, tuple[datetime | None, str]] = {}
    for tx in labels:
        seen = latest.get(tx.category)
        if seen is None or _is_newer(tx.confirmed_at, seen[0]):
            latest[tx.category] = (tx.confirmed_at, tx.category_type)
    return {category: category_type for category, (_, category_type) in latest.items()}


def _is_newer(candidate: datetime | None, current: datetime | None) -> bool:
    if candidate is None:
        return current is None
    return current is None or candidate >= current


def recency_weight(confirmed_at: datetime | None, now: datetime) -> float:
    if confirmed_at is None:
        return 1.0
    decay = 0.5 ** (age_in_days(confirmed_at, now) / RECENCY_HALF_LIFE_DAYS)
    return max(MIN_RECENCY_WEIGHT, decay)
