from datetime import datetime, timezone

import pytest

from inbox_categorizer.models import Transaction


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_tx():
    counter = {"n": 0}

    def _make(**overrides) -> Transaction:
        counter["n"] += 1
        values = {
            "id": f"tx-{counter['n']}",
            "user_id": "user-1",
            "date": datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc),
            "amount": -12.5,
            "description_raw": "",
            "merchant_name": "",
            "account_name": "Everyday",
        }
        values.update(overrides)
        return Transaction(**values)

    return _make
