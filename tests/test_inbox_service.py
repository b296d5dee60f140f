from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from inbox_categorizer.manager import CategorizerService
from inbox_categorizer.models import UNCATEGORISED, CategoryRule, ClassificationSource, InboxState
from inbox_categorizer.services.inbox import InboxService, confirmation_streak
from inbox_categorizer.services.reclassification import ReclassificationService
from inbox_categorizer.storage.memory import (
    InMemoryModelRepository,
    InMemoryRuleRepository,
    InMemoryTransactionRepository,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
USER = "user-1"


@pytest.fixture
def transactions() -> InMemoryTransactionRepository:
    return InMemoryTransactionRepository()


@pytest.fixture
def rules() -> InMemoryRuleRepository:
    return InMemoryRuleRepository()


@pytest.fixture
def inbox(transactions, rules) -> InboxService:
    service = CategorizerService()
    reclassifier = ReclassificationService(
        service, transactions, rules, InMemoryModelRepository(), clock=lambda: NOW
    )
    return InboxService(service, reclassifier, transactions, rules, chunk_size=2, clock=lambda: NOW)


@pytest.mark.anyio
async def test_ingest_classifies_with_rules_and_transfer_hint(inbox, rules, transactions, make_tx) -> None:
    await rules.replace_rules(USER, [CategoryRule(id="r1", pattern="countdown", category="Groceries")])
    groceries = make_tx(merchant_name="Countdown Petone")
    transfer = make_tx(description_raw="INTERNET XFR to savings")
    unknown = make_tx(merchant_name="Cafe Bastille")

    stored = await inbox.ingest(USER, [groceries, transfer, unknown])

    assert stored == 3
    row = await transactions.get(USER, groceries.id)
    assert (row.category, row.inbox_state, row.classification_source) == (
        "Groceries", InboxState.AUTO_CLASSIFIED, ClassificationSource.RULE
    )
    row = await transactions.get(USER, transfer.id)
    assert row.is_transfer is True
    assert row.category == "Transfer"
    row = await transactions.get(USER, unknown.id)
    assert row.inbox_state == InboxState.UNCLASSIFIED
    assert row.category == UNCATEGORISED


@pytest.mark.anyio
async def test_ingest_keeps_confirmed_category(inbox, transactions, make_tx) -> None:
    confirmed = make_tx(
        merchant_name="Cafe Bastille",
        category="Dining",
        category_confirmed=True,
        confirmed_at=NOW - timedelta(days=2),
        inbox_state=InboxState.CLEARED,
        classification_source=ClassificationSource.USER,
    )
    await transactions.upsert_many(USER, [confirmed])

    refetched = make_tx(id=confirmed.id, merchant_name="Cafe Bastille", description_raw="updated by the bank")
    await inbox.ingest(USER, [refetched])

    row = await transactions.get(USER, confirmed.id)
    assert row.category == "Dining"
    assert row.category_confirmed is True
    assert row.inbox_state == InboxState.CLEARED
    assert row.description_raw == "updated by the bank"


@pytest.mark.anyio
async def test_ingest_rejects_other_users_rows(inbox, make_tx) -> None:
    with pytest.raises(ValueError):
        await inbox.ingest(USER, [make_tx(user_id="someone-else")])
    assert await inbox.ingest(USER, []) == 0


@pytest.mark.anyio
async def test_list_inbox_pages_newest_first(inbox, make_tx) -> None:
    rows = [make_tx(merchant_name=f"Shop {day}", date=NOW - timedelta(days=day)) for day in range(5)]
    await inbox.ingest(USER, rows)

    page = await inbox.list_inbox(USER, page=1, per_page=2)

    assert [tx.id for tx in page.transactions] == [rows[0].id, rows[1].id]
    assert (page.total, page.total_pages) == (5, 3)
    assert all(tx.suggested_category_id == UNCATEGORISED for tx in page.transactions)

    capped = await inbox.list_inbox(USER, page=0, per_page=500)
    assert (capped.page, capped.per_page) == (1, 100)


@pytest.mark.anyio
async def test_confirm_clears_and_retrains(inbox, transactions, make_tx) -> None:
    rows = [make_tx(merchant_name="Cafe Bastille", date=NOW - timedelta(days=day)) for day in range(3)]
    await inbox.ingest(USER, rows)

    outcome = await inbox.confirm(USER, rows[0].id, " Dining ", "expense")

    assert outcome is not None
    assert outcome.transaction.category == "Dining"
    assert outcome.transaction.inbox_state == InboxState.CLEARED
    assert outcome.transaction.classification_source == ClassificationSource.USER
    assert outcome.transaction.confirmed_at == NOW
    assert outcome.transaction.suggested_category_id is None
    assert outcome.model_retrained is True
    assert outcome.reclassified == 2
    assert outcome.warning is None

    # A single-category model is certain, so the rest are auto-applied.
    other = await transactions.get(USER, rows[1].id)
    assert other.category == "Dining"
    assert other.inbox_state == InboxState.AUTO_CLASSIFIED
    assert other.category_type == "expense"


@pytest.mark.anyio
async def test_confirm_unknown_or_empty(inbox, make_tx) -> None:
    assert await inbox.confirm(USER, "missing", "Dining") is None
    with pytest.raises(ValueError):
        await inbox.confirm(USER, "missing", "   ")


@pytest.mark.anyio
async def test_confirm_survives_retrain_failure(inbox, transactions, make_tx) -> None:
    tx = make_tx(merchant_name="Cafe Bastille")
    await inbox.ingest(USER, [tx])
    inbox.reclassifier.retrain_and_reclassify_if_needed = AsyncMock(side_effect=RuntimeError("boom"))

    outcome = await inbox.confirm(USER, tx.id, "Dining")

    assert outcome.warning == "model_retrain_failed"
    assert outcome.model_retrained is False
    stored = await transactions.get(USER, tx.id)
    assert stored.category_confirmed is True


@pytest.mark.anyio
async def test_stats(inbox, transactions, make_tx) -> None:
    def confirmed(hours_ago: int):
        return make_tx(
            date=NOW - timedelta(days=10),
            category="Dining",
            category_confirmed=True,
            confirmed_at=NOW - timedelta(hours=hours_ago),
            inbox_state=InboxState.CLEARED,
        )

    await transactions.upsert_many(USER, [
        confirmed(2),
        confirmed(24),
        confirmed(72),
        make_tx(date=NOW - timedelta(days=1), inbox_state=InboxState.AUTO_CLASSIFIED),
        make_tx(date=NOW - timedelta(days=2), inbox_state=InboxState.UNCLASSIFIED),
        make_tx(date=NOW - timedelta(days=3), inbox_state=InboxState.NEEDS_REVIEW),
        make_tx(date=NOW - timedelta(days=20), inbox_state=InboxState.AUTO_CLASSIFIED),
    ])

    stats = await inbox.stats(USER)

    assert stats.to_clear_count == 2
    assert stats.streak == 2
    assert stats.auto_classified_percent == 33


def test_confirmation_streak_needs_today() -> None:
    assert confirmation_streak([NOW - timedelta(days=1)], NOW) == 0
    assert confirmation_streak([NOW, NOW - timedelta(days=1), NOW - timedelta(days=1, hours=3)], NOW) == 2
