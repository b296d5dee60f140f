from inbox_categorizer.models import UNCATEGORISED, CategoryRule
from inbox_categorizer.rules.categoriser import Categoriser, compile_pattern


def test_lowest_priority_matching_rule_wins(make_tx) -> None:
    categoriser = Categoriser.build([
        CategoryRule(id="late", priority=50, pattern="count", category="Shopping"),
        CategoryRule(id="early", priority=10, pattern="countdown", category="Groceries", category_type="expense"),
        CategoryRule(id="miss", priority=1, pattern="pak n save", category="Other"),
    ])

    match = categoriser.match(make_tx(merchant_name="Countdown Petone"))

    assert match is not None
    assert match.rule_id == "early"
    assert match.category == "Groceries"
    assert match.category_type == "expense"


def test_amount_condition_must_also_match(make_tx) -> None:
    categoriser = Categoriser.build([
        CategoryRule(id="big", priority=1, pattern="bunnings", category="Renovation", amount_condition="over 200"),
        CategoryRule(id="any", priority=2, pattern="bunnings", category="Garden"),
    ])

    assert categoriser.match(make_tx(merchant_name="Bunnings", amount=-350)).rule_id == "big"
    assert categoriser.match(make_tx(merchant_name="Bunnings", amount=-35)).rule_id == "any"


def test_unparseable_amount_condition_is_ignored(make_tx) -> None:
    categoriser = Categoriser.build([
        CategoryRule(pattern="bunnings", category="Garden", amount_condition="quite a lot"),
    ])
    assert categoriser.match(make_tx(merchant_name="Bunnings", amount=-1)).category == "Garden"


def test_description_field_rules(make_tx) -> None:
    categoriser = Categoriser.build([
        CategoryRule(pattern=r"salary\s+acme", field="description_raw", category="Income"),
    ])

    assert categoriser.match(make_tx(description_raw="SALARY ACME LTD", amount=2500)).category == "Income"
    # Merchant name is not consulted for description rules.
    assert categoriser.match(make_tx(merchant_name="salary acme")) is None


def test_disabled_invalid_and_oversized_rules_never_match(make_tx) -> None:
    categoriser = Categoriser.build(
        [
            CategoryRule(pattern="countdown", category="Disabled", is_disabled=True),
            CategoryRule(pattern="count(down", category="Broken"),
            CategoryRule(pattern="   ", category="Empty"),
            CategoryRule(pattern="countdown|" + "x" * 40, category="Huge"),
        ],
        max_pattern_length=32,
    )

    assert categoriser.rules == []
    assert categoriser.match(make_tx(merchant_name="Countdown")) is None


def test_categorise_defaults(make_tx) -> None:
    categoriser = Categoriser.build([
        CategoryRule(pattern="countdown", category="", priority=float("nan")),
    ])

    assert categoriser.rules[0].priority == 1000
    assert categoriser.categorise(make_tx(merchant_name="Countdown")).category == UNCATEGORISED
    miss = categoriser.categorise(make_tx(merchant_name="Somewhere else"))
    assert (miss.category, miss.category_type) == (UNCATEGORISED, "")


def test_compile_pattern_is_case_insensitive() -> None:
    regex = compile_pattern("countdown")
    assert regex is not None
    assert regex.search("COUNTDOWN")
    assert compile_pattern("[unclosed") is None


def test_detect_transfer_keywords(make_tx) -> None:
    categoriser = Categoriser([])
    assert categoriser.detect_transfer(make_tx(description_raw="INTERNET XFR to savings"))
    assert categoriser.detect_transfer(make_tx(merchant_name="Own Account Sweep"))
    assert not categoriser.detect_transfer(make_tx(description_raw="Countdown Petone"))


def test_detect_transfer_ignores_lookalike_merchants(make_tx) -> None:
    categoriser = Categoriser([])
    assert not categoriser.detect_transfer(make_tx(merchant_name="Selfridges London"))
    assert not categoriser.detect_transfer(make_tx(description_raw="BNZ card purchase Countdown"))
    assert categoriser.detect_transfer(make_tx(description_raw="Payment to self"))
