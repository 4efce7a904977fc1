from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from lessonpay.core.errors import ValidationError
from lessonpay.schemas.api_models import (
    FailedPaymentCustomer,
    FailedPaymentIntent,
    FailedPaymentMethod,
    FailedPaymentRecord,
    RevenueTotals,
)

T = TypeVar("T")
R = TypeVar("R")

GENERIC_DECLINE = "generic_decline"


def window_bounds(window_hours: int, now: Optional[datetime] = None) -> Tuple[int, int]:
    """[now - window_hours, now] as epoch seconds."""
    if not isinstance(window_hours, int) or isinstance(window_hours, bool) or window_hours < 1:
        raise ValidationError("window_hours must be a positive integer")
    now = now or datetime.now(tz=timezone.utc)
    start = now - timedelta(hours=window_hours)
    return int(start.timestamp()), int(now.timestamp())


async def bounded_gather(limit: int, items: Iterable[T], fn: Callable[[T], Awaitable[R]]) -> List[R]:
    sem = asyncio.Semaphore(max(1, limit))

    async def _one(item: T) -> R:
        async with sem:
            return await fn(item)

    return list(await asyncio.gather(*(_one(i) for i in items)))


def ref_id(ref: Any) -> Optional[str]:
    # expandable fields come back either as an id or as the expanded object
    if isinstance(ref, dict):
        return ref.get("id")
    return ref or None


def balance_transaction_id(charge: Dict[str, Any]) -> Optional[str]:
    return ref_id(charge.get("balance_transaction"))


def summarize_charges(charges: Iterable[Dict[str, Any]], fees: Dict[str, int]) -> RevenueTotals:
    """
    Sum succeeded charges. A charge without a settlement record counts with
    a zero fee; failed/pending charges are excluded entirely.
    """
    totals = RevenueTotals()
    for charge in charges:
        if charge.get("status") != "succeeded":
            continue
        amount = int(charge.get("amount") or 0)
        fee = fees.get(balance_transaction_id(charge) or "", 0)
        totals.payment_total += amount
        totals.fee_total += fee
        totals.net_total += amount - fee
    return totals


def latest_intent_per_customer(intents: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep each customer's newest intent; input is newest first."""
    seen = set()
    latest: List[Dict[str, Any]] = []
    for pi in intents:
        customer_id = ref_id(pi.get("customer"))
        if not customer_id or customer_id in seen:
            continue
        seen.add(customer_id)
        latest.append(pi)
    return latest


def failing_payment_method_id(intent: Dict[str, Any]) -> Optional[str]:
    err = intent.get("last_payment_error") or {}
    return ref_id(err.get("payment_method")) or ref_id(intent.get("payment_method"))


def failure_code(intent: Dict[str, Any]) -> str:
    err = intent.get("last_payment_error") or {}
    return err.get("code") or GENERIC_DECLINE


def build_failed_record(
    intent: Dict[str, Any], customer: Dict[str, Any], card_method: Optional[Dict[str, Any]]
) -> FailedPaymentRecord:
    card = (card_method or {}).get("card") or {}
    return FailedPaymentRecord(
        customer=FailedPaymentCustomer(id=customer["id"], name=customer.get("name"), email=customer.get("email")),
        payment_intent=FailedPaymentIntent(
            id=intent["id"],
            created=intent.get("created"),
            description=intent.get("description"),
            status="failed",
            error=failure_code(intent),
        ),
        payment_method=FailedPaymentMethod(brand=card.get("brand"), last4=card.get("last4")) if card_method else None,
    )
