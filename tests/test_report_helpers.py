import asyncio
from datetime import datetime, timezone

import pytest

from lessonpay.core.errors import ValidationError
from lessonpay.engine.reports import (
    bounded_gather,
    failing_payment_method_id,
    latest_intent_per_customer,
    summarize_charges,
    window_bounds,
)


def test_window_bounds():
    now = datetime(2024, 2, 25, 12, 0, tzinfo=timezone.utc)

    gte, lte = window_bounds(36, now=now)

    assert lte == int(now.timestamp())
    assert lte - gte == 36 * 3600


@pytest.mark.parametrize("hours", [0, -1, True, 1.5, "36"])
def test_window_bounds_rejects_bad_values(hours):
    with pytest.raises(ValidationError):
        window_bounds(hours)


def test_summarize_charges_expanded_balance_transaction():
    charges = [
        {"id": "ch_1", "amount": 1000, "status": "succeeded", "balance_transaction": {"id": "txn_1"}},
        {"id": "ch_2", "amount": 500, "status": "pending", "balance_transaction": "txn_2"},
    ]

    totals = summarize_charges(charges, {"txn_1": 59, "txn_2": 45})

    assert (totals.payment_total, totals.fee_total, totals.net_total) == (1000, 59, 941)


def test_latest_intent_per_customer_keeps_first_seen():
    intents = [
        {"id": "pi_3", "customer": "cus_a"},
        {"id": "pi_2", "customer": {"id": "cus_b"}},
        {"id": "pi_1", "customer": "cus_a"},
        {"id": "pi_0", "customer": None},
    ]

    assert [pi["id"] for pi in latest_intent_per_customer(intents)] == ["pi_3", "pi_2"]


def test_failing_payment_method_prefers_error_details():
    intent = {
        "payment_method": None,
        "last_payment_error": {"payment_method": {"id": "pm_declined", "card": {"last4": "0002"}}},
    }

    assert failing_payment_method_id(intent) == "pm_declined"
    assert failing_payment_method_id({"payment_method": "pm_1", "last_payment_error": None}) == "pm_1"


def test_bounded_gather_caps_concurrency():
    running = 0
    peak = 0

    async def work(item):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0)
        running -= 1
        return item * 2

    results = asyncio.run(bounded_gather(2, range(6), work))

    assert results == [0, 2, 4, 6, 8, 10]
    assert peak <= 2
