# lessonpay/api/lessons.py
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Header

from lessonpay.core.deps import get_lesson_controller
from lessonpay.engine.lessons import LessonPaymentController
from lessonpay.schemas.api_models import (
    CancelLessonRequest,
    CompleteLessonPaymentRequest,
    PaymentIntentEnvelope,
    RefundLessonRequest,
    RefundResponse,
    ScheduleLessonRequest,
)

router = APIRouter(tags=["Lessons"])


@router.post("/schedule-lesson", response_model=PaymentIntentEnvelope)
async def schedule_lesson(
    body: ScheduleLessonRequest,
    controller: LessonPaymentController = Depends(get_lesson_controller),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """
    Authorize (but do not capture) a lesson payment.

      curl -X POST http://localhost:4242/schedule-lesson \
        -H 'Content-Type: application/json' \
        -d '{"customer_id": "cus_XXX", "amount": 4500, "description": "Lesson on Feb 25th"}'

    Errors carry payment_intent_id when an intent was created but not authorized.
    """
    intent = await controller.authorize(
        customer_id=body.customer_id,
        amount=body.amount,
        description=body.description,
        idempotency_key=idempotency_key,
    )
    return PaymentIntentEnvelope(payment=intent)


@router.post("/complete-lesson-payment", response_model=PaymentIntentEnvelope)
async def complete_lesson_payment(
    body: CompleteLessonPaymentRequest,
    controller: LessonPaymentController = Depends(get_lesson_controller),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    intent = await controller.capture(body.payment_intent_id, amount=body.amount, idempotency_key=idempotency_key)
    return PaymentIntentEnvelope(payment=intent)


@router.post("/refund-lesson", response_model=RefundResponse)
async def refund_lesson(
    body: RefundLessonRequest,
    controller: LessonPaymentController = Depends(get_lesson_controller),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    refund = await controller.refund(body.payment_intent_id, amount=body.amount, idempotency_key=idempotency_key)
    return RefundResponse(refund=refund["id"], amount=refund.get("amount"), status=refund.get("status"))


@router.post("/cancel-lesson", response_model=PaymentIntentEnvelope)
async def cancel_lesson(
    body: CancelLessonRequest,
    controller: LessonPaymentController = Depends(get_lesson_controller),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    # releases an uncaptured authorization so the account can be deleted
    intent = await controller.cancel(body.payment_intent_id, idempotency_key=idempotency_key)
    return PaymentIntentEnvelope(payment=intent)
