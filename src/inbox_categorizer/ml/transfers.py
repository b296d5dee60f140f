"""
Transfer detection over one user's transactions.

A transaction is a transfer when its text says so, or when it pairs with an
offsetting transaction of the same amount on another account within a
couple of days.
"""
import math
from collections.abc import Iterable
from dataclasses import dataclass

from inbox_categorizer.domain.dates import day_distance
from inbox_categorizer.domain.text import normalize_text, reference_tokens
from inbox_categorizer.logger import get_logger
from inbox_categorizer.models import Transaction

logger = get_logger(__name__)

TRANSFER_HINTS = (
    "transfer",
    "xfr",
    "trf",
    "internet banking",
    "between accounts",
    "own account",
    "payment to self",
    "internal",
    "sweep",
)
NON_TRANSFER_HINTS = ("eftpos", "card", "visa", "mastercard", "apple", "google pay", "atm fee")

MAX_PAIR_DAYS = 2.2
HINTED_THRESHOLD = 1.65
UNHINTED_THRESHOLD = 2.1


@dataclass(frozen=True)
class _Candidate:
    transaction: Transaction
    amount_cents: int
    text: str
    account: str
    transfer_hint: bool
    non_transfer_hint: bool
    refs: tuple[str, ...]

    @property
    def id(self) -> str:
        return self.transaction.id


def has_transfer_hint(text: str) -> bool:
    return any(hint in text for hint in TRANSFER_HINTS)


def has_non_transfer_hint(text: str) -> bool:
    return any(hint in text for hint in NON_TRANSFER_HINTS)


def _prepare(transaction: Transaction) -> _Candidate:
    text = normalize_text(f"{transaction.description_raw} {transaction.merchant_name}")
    return _Candidate(
        transaction=transaction,
        amount_cents=int(round(abs(transaction.amount) * 100)),
        text=text,
        # Digits kept: "Account 1" and "Account 2" are different accounts.
        account=normalize_text(transaction.account_name),
        transfer_hint=has_transfer_hint(text),
        non_transfer_hint=has_non_transfer_hint(text),
        refs=tuple(reference_tokens(text)),
    )


def _shares_reference(a: _Candidate, b: _Candidate) -> bool:
    return any(ref in b.refs for ref in a.refs)


def score_pair(a: _Candidate, b: _Candidate) -> float:
    days = day_distance(a.transaction.date, b.transaction.date)
    if days > MAX_PAIR_DAYS:
        return -math.inf
    if a.account == b.account:
        return -math.inf
    if a.amount_cents != b.amount_cents:
        return -math.inf
    if (a.transaction.amount < 0) == (b.transaction.amount < 0):
        return -math.inf

    if days <= 0.4:
        score = 1.1
    elif days <= 1.1:
        score = 0.75
    else:
        score = 0.4
    score += 0.9

    if a.transfer_hint or b.transfer_hint:
        score += 0.6
    if a.transfer_hint and b.transfer_hint:
        score += 0.55
    if _shares_reference(a, b):
        score += 0.55
    if a.text and a.text == b.text:
        score += 0.4
    if a.non_transfer_hint or b.non_transfer_hint:
        score -= 0.2 if (a.transfer_hint or b.transfer_hint) else 0.8

    return score


def detect_transfer_ids(transactions: Iterable[Transaction]) -> set[str]:
    candidates = [_prepare(tx) for tx in transactions]
    transfer_ids = {
        candidate.id
        for candidate in candidates
        if candidate.transfer_hint and not candidate.non_transfer_hint
    }
    hinted = len(transfer_ids)

    by_amount: dict[int, list[_Candidate]] = {}
    for candidate in candidates:
        if candidate.amount_cents <= 0:
            continue
        by_amount.setdefault(candidate.amount_cents, []).append(candidate)

    paired = 0
    for rows in by_amount.values():
        incoming = sorted((c for c in rows if c.transaction.amount > 0), key=lambda c: c.transaction.date)
        outgoing = sorted((c for c in rows if c.transaction.amount < 0), key=lambda c: c.transaction.date)
        matched_incoming: set[str] = set()

        for source in outgoing:
            best: _Candidate | None = None
            best_score = -math.inf
            for candidate in incoming:
                if candidate.id in matched_incoming:
                    continue
                score = score_pair(source, candidate)
                if score > best_score:
                    best, best_score = candidate, score

            if best is None:
                continue
            corroborated = source.transfer_hint or best.transfer_hint or _shares_reference(source, best)
            threshold = HINTED_THRESHOLD if corroborated else UNHINTED_THRESHOLD
            if best_score >= threshold:
                matched_incoming.add(best.id)
                transfer_ids.update((source.id, best.id))
                paired += 1

    logger.debug(
        "[TRANSFER] %s transactions scanned: %s hinted, %s pairs matched, %s transfers total",
        len(candidates),
        hinted,
        paired,
        len(transfer_ids),
    )
    return transfer_ids
