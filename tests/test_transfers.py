import math
from datetime import datetime, timedelta, timezone

from inbox_categorizer.ml.transfers import _prepare, detect_transfer_ids, score_pair

DAY = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_hinted_pair_between_accounts(make_tx) -> None:
    out = make_tx(id="a", amount=-50.0, date=DAY, account_name="Checking", description_raw="Transfer to savings")
    inc = make_tx(id="b", amount=50.0, date=DAY, account_name="Savings", description_raw="Transfer to savings")

    assert detect_transfer_ids([out, inc]) == {"a", "b"}


def test_unhinted_pair_needs_corroboration(make_tx) -> None:
    out = make_tx(id="a", amount=-75.0, date=DAY, account_name="Checking", description_raw="Acme rebate")
    inc = make_tx(id="b", amount=75.0, date=DAY, account_name="Savings", description_raw="Rent share")
    assert detect_transfer_ids([out, inc]) == set()

    # Identical text lifts the score over the stricter bar.
    same_text = make_tx(id="c", amount=75.0, date=DAY, account_name="Savings", description_raw="Acme rebate")
    assert detect_transfer_ids([out, same_text]) == {"a", "c"}


def test_shared_reference_token_pairs(make_tx) -> None:
    out = make_tx(id="a", amount=-120.0, date=DAY, account_name="Checking", description_raw="Payee REF8812")
    inc = make_tx(
        id="b",
        amount=120.0,
        date=DAY + timedelta(days=1),
        account_name="Joint",
        description_raw="From J Smith REF8812",
    )
    assert detect_transfer_ids([out, inc]) == {"a", "b"}


def test_same_account_pair_is_rejected(make_tx) -> None:
    out = make_tx(id="a", amount=-50.0, date=DAY, account_name="Checking", description_raw="Acme rebate")
    inc = make_tx(id="b", amount=50.0, date=DAY, account_name="Checking", description_raw="Acme rebate")

    assert score_pair(_prepare(out), _prepare(inc)) == -math.inf
    assert detect_transfer_ids([out, inc]) == set()


def test_three_day_gap_is_rejected(make_tx) -> None:
    out = make_tx(id="a", amount=-50.0, date=DAY, account_name="Checking", description_raw="Acme rebate")
    inc = make_tx(
        id="b", amount=50.0, date=DAY + timedelta(days=3), account_name="Savings", description_raw="Acme rebate"
    )

    assert detect_transfer_ids([out, inc]) == set()


def test_same_sign_and_different_amount_are_rejected(make_tx) -> None:
    a = _prepare(make_tx(amount=-50.0, date=DAY, account_name="Checking", description_raw="Acme rebate"))
    b = _prepare(make_tx(amount=-50.0, date=DAY, account_name="Savings", description_raw="Acme rebate"))
    c = _prepare(make_tx(amount=50.01, date=DAY, account_name="Savings", description_raw="Acme rebate"))

    assert score_pair(a, b) == -math.inf
    assert score_pair(a, c) == -math.inf


def test_card_purchase_with_hint_word_is_not_hint_only(make_tx) -> None:
    tx = make_tx(id="a", amount=-9.0, description_raw="Visa card purchase Transfer Cafe")
    assert detect_transfer_ids([tx]) == set()


def test_incoming_side_matches_at_most_once(make_tx) -> None:
    first = make_tx(id="o1", amount=-200.0, date=DAY, account_name="Checking", description_raw="Acme rebate")
    second = make_tx(
        id="o2", amount=-200.0, date=DAY + timedelta(hours=6), account_name="Credit", description_raw="Acme rebate"
    )
    incoming = make_tx(id="i1", amount=200.0, date=DAY, account_name="Savings", description_raw="Acme rebate")

    assert detect_transfer_ids([second, incoming, first]) == {"o1", "i1"}


def test_numbered_accounts_are_distinct(make_tx) -> None:
    out = make_tx(id="a", amount=-80.0, date=DAY, account_name="Account 1", description_raw="Acme rebate")
    inc = make_tx(id="b", amount=80.0, date=DAY, account_name="Account 2", description_raw="Acme rebate")

    assert score_pair(_prepare(out), _prepare(inc)) > -math.inf
    assert detect_transfer_ids([out, inc]) == {"a", "b"}
