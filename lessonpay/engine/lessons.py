from __future__ import annotations
import uuid
from typing import Optional, Dict, Any, List

import structlog

from lessonpay.core.errors import DeclinedError, NotFoundError, PaymentFlowError, ValidationError
from lessonpay.core.settings import settings
from lessonpay.engine.customers import default_payment_method_id
from lessonpay.engine.reports import (
    balance_transaction_id,
    bounded_gather,
    build_failed_record,
    failing_payment_method_id,
    latest_intent_per_customer,
    ref_id,
    summarize_charges,
    window_bounds,
)
from lessonpay.payments.types import PaymentProvider
from lessonpay.schemas.api_models import FailedPaymentRecord, RevenueTotals

log = structlog.get_logger(__name__)

LESSON_METADATA = {"type": "lessons-payment"}
REFUND_REASON = "requested_by_customer"


def _require_positive_amount(amount: Any, field: str = "amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise ValidationError(f"{field} must be a positive integer number of minor currency units")
    return amount


def _stage_key(idempotency_key: Optional[str], stage: str) -> str:
    return f"{idempotency_key or uuid.uuid4().hex}:{stage}"


class LessonPaymentController:
    """
    Lesson payment lifecycle: authorize -> capture -> (optional) refund,
    plus cancellation of an authorization and the 36h reports.

    Each money-moving stage sends its own idempotency key derived from the
    caller's Idempotency-Key, so a retried request replays instead of
    charging twice.
    """

    def __init__(self, payments: PaymentProvider):
        self.payments = payments

    # ---------------- lifecycle ----------------

    async def authorize(
        self,
        *,
        customer_id: str,
        amount: int,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        1) Create a manual-capture intent for the customer
        2) Resolve the customer's on-file payment method
        3) Confirm; success leaves the intent in requires_capture

        Failures after (1) carry the created intent's id.
        """
        _require_positive_amount(amount)
        base_key = idempotency_key or uuid.uuid4().hex

        intent = await self.payments.create_payment_intent(
            customer_id=customer_id,
            amount=amount,
            currency=settings.CURRENCY,
            description=description,
            metadata=dict(LESSON_METADATA),
            idempotency_key=_stage_key(base_key, "create"),
        )

        try:
            payment_method_id = await self._on_file_payment_method(customer_id)
            if not payment_method_id:
                raise DeclinedError(f"no payment methods found for {customer_id}", code="no_payment_method")
            confirmed = await self.payments.confirm_payment_intent(
                intent["id"],
                payment_method_id=payment_method_id,
                idempotency_key=_stage_key(base_key, "confirm"),
            )
        except PaymentFlowError as e:
            e.payment_intent_id = e.payment_intent_id or intent["id"]
            log.warning(
                "lesson_payment_authorization_failed",
                customer_id=customer_id,
                payment_intent_id=e.payment_intent_id,
                code=e.code,
            )
            raise

        log.info(
            "lesson_payment_authorized",
            customer_id=customer_id,
            payment_intent_id=confirmed["id"],
            amount=amount,
            status=confirmed.get("status"),
        )
        return confirmed

    async def capture(
        self, payment_intent_id: str, *, amount: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        # exceeding the authorized amount is left to the processor to reject
        if amount is not None:
            _require_positive_amount(amount)
        captured = await self.payments.capture_payment_intent(
            payment_intent_id,
            amount_to_capture=amount,
            idempotency_key=_stage_key(idempotency_key, "capture"),
        )
        log.info(
            "lesson_payment_captured",
            payment_intent_id=payment_intent_id,
            amount_received=captured.get("amount_received"),
        )
        return captured

    async def refund(
        self, payment_intent_id: str, *, amount: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        if amount is not None:
            _require_positive_amount(amount)
        refund = await self.payments.create_refund(
            payment_intent_id,
            amount=amount,
            reason=REFUND_REASON,
            idempotency_key=_stage_key(idempotency_key, "refund"),
        )
        log.info("lesson_payment_refunded", payment_intent_id=payment_intent_id, refund_id=refund["id"], amount=refund.get("amount"))
        return refund

    async def cancel(self, payment_intent_id: str, *, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        canceled = await self.payments.cancel_payment_intent(
            payment_intent_id, idempotency_key=_stage_key(idempotency_key, "cancel")
        )
        log.info("lesson_payment_canceled", payment_intent_id=payment_intent_id)
        return canceled

    async def _on_file_payment_method(self, customer_id: str) -> Optional[str]:
        customer = await self.payments.retrieve_customer(customer_id)
        default = default_payment_method_id(customer)
        if default:
            return default
        cards = await self.payments.list_payment_methods(customer_id, limit=1)
        return cards[0]["id"] if cards else None

    # ---------------- reports ----------------

    async def revenue_window(self, window_hours: Optional[int] = None) -> RevenueTotals:
        gte, lte = window_bounds(settings.REPORT_WINDOW_HOURS if window_hours is None else window_hours)
        charges = await self.payments.list_charges(
            created_gte=gte,
            created_lte=lte,
            page_size=settings.REPORT_PAGE_SIZE,
            max_records=settings.REPORT_MAX_RECORDS,
        )
        succeeded = [ch for ch in charges if ch.get("status") == "succeeded"]
        txn_ids = [tid for tid in (balance_transaction_id(ch) for ch in succeeded) if tid]

        txns = await bounded_gather(
            settings.REPORT_FETCH_CONCURRENCY, txn_ids, self.payments.retrieve_balance_transaction
        )
        fees = {t["id"]: int(t.get("fee") or 0) for t in txns}
        totals = summarize_charges(succeeded, fees)
        log.info(
            "revenue_window_calculated",
            charges=len(charges),
            succeeded=len(succeeded),
            payment_total=totals.payment_total,
            fee_total=totals.fee_total,
        )
        return totals

    async def customers_with_failed_payments(self, window_hours: Optional[int] = None) -> List[FailedPaymentRecord]:
        gte, _ = window_bounds(settings.REPORT_WINDOW_HOURS if window_hours is None else window_hours)
        statuses = set(settings.failed_payment_statuses)

        intents = await self.payments.list_payment_intents(created_gte=gte, limit=settings.REPORT_PAGE_SIZE)
        failed = [pi for pi in latest_intent_per_customer(intents) if pi.get("status") in statuses]

        async def _inspect(intent: Dict[str, Any]) -> Optional[FailedPaymentRecord]:
            customer_id = ref_id(intent["customer"])
            try:
                customer = await self.payments.retrieve_customer(customer_id)
            except NotFoundError:
                log.info("failed_payment_customer_gone", customer_id=customer_id, payment_intent_id=intent["id"])
                return None
            cards = await self.payments.list_payment_methods(customer_id, limit=1)
            card = cards[0] if cards else None

            failing_id = failing_payment_method_id(intent)
            if card and failing_id and card["id"] != failing_id:
                # card already replaced since the failure
                return None
            return build_failed_record(intent, customer, card)

        records = await bounded_gather(settings.REPORT_FETCH_CONCURRENCY, failed, _inspect)
        found = [r for r in records if r is not None]
        log.info("failed_payments_scanned", intents=len(intents), failed=len(failed), reported=len(found))
        return found
