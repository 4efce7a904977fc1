from __future__ import annotations
import asyncio
from typing import Optional, Dict, Any, List

import structlog

from lessonpay.core.errors import ConflictError, NotFoundError, PaymentFlowError, ValidationError
from lessonpay.payments.types import PaymentProvider
from lessonpay.schemas.api_models import (
    AccountUpdateResponse,
    AttachPaymentMethodResponse,
    CardSummary,
    CustomerSummary,
    DeleteAccountResponse,
    PaymentMethodSummaryResponse,
)

log = structlog.get_logger(__name__)

# Stripe caps list pages at 100; the delete guard looks at one page
UNCAPTURED_SCAN_LIMIT = 100


def default_payment_method_id(customer: Dict[str, Any]) -> Optional[str]:
    pm = (customer.get("invoice_settings") or {}).get("default_payment_method")
    if isinstance(pm, dict):
        return pm.get("id")
    return pm


class CustomerManager:
    """
    Customer and stored-payment-method operations.

    Invariant kept by attach_payment_method: a customer holds at most one
    attached payment method, and it is the invoice default.
    """

    def __init__(self, payments: PaymentProvider):
        self.payments = payments

    # ---------------- customers ----------------

    async def create_customer(
        self, *, name: Optional[str], email: str, metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        existing = await self.payments.list_customers_by_email(email)
        if existing:
            raise ConflictError(f"A customer with email '{email}' already exists")
        customer = await self.payments.create_customer(name=name, email=email, metadata=metadata or {})
        log.info("customer_created", customer_id=customer["id"])
        return customer["id"]

    async def begin_payment_method_setup(self, customer_id: Optional[str] = None) -> str:
        setup_intent = await self.payments.create_setup_intent(customer_id=customer_id)
        return setup_intent["client_secret"]

    async def update_profile(
        self, customer_id: str, *, name: Optional[str] = None, email: Optional[str] = None
    ) -> AccountUpdateResponse:
        if name is None and email is None:
            raise ValidationError("name or email is required")

        if email is not None:
            matches = await self.payments.list_customers_by_email(email)
            if any(c["id"] != customer_id for c in matches):
                raise ConflictError("Customer email already exists!")

        await self.payments.update_customer(customer_id, name=name, email=email)
        # re-read: the processor may normalize what we sent
        customer = await self.payments.retrieve_customer(customer_id)
        log.info("customer_profile_updated", customer_id=customer_id)
        return AccountUpdateResponse(updatedName=customer.get("name"), updatedEmail=customer.get("email"))

    async def get_payment_method_summary(self, customer_id: str) -> PaymentMethodSummaryResponse:
        cards = await self.payments.list_payment_methods(customer_id, limit=1)
        if not cards:
            raise NotFoundError("No payment methods found for this customer.", code="no_payment_method")
        customer = await self.payments.retrieve_customer(customer_id)
        card = cards[0].get("card") or {}
        return PaymentMethodSummaryResponse(
            customer=CustomerSummary(id=customer["id"], email=customer.get("email"), name=customer.get("name")),
            card=CardSummary(
                brand=card.get("brand"),
                last4=card.get("last4"),
                exp_month=card.get("exp_month"),
                exp_year=card.get("exp_year"),
            ),
        )

    async def delete_customer(self, customer_id: str) -> DeleteAccountResponse:
        intents = await self.payments.list_payment_intents(customer_id=customer_id, limit=UNCAPTURED_SCAN_LIMIT)
        uncaptured = [pi["id"] for pi in intents if pi.get("status") == "requires_capture"]
        if uncaptured:
            # capture or cancel first; that is a separate call
            log.info("customer_delete_refused", customer_id=customer_id, uncaptured=len(uncaptured))
            return DeleteAccountResponse(uncaptured_payments=uncaptured)

        await self.payments.delete_customer(customer_id)
        log.info("customer_deleted", customer_id=customer_id)
        return DeleteAccountResponse(deleted=True)

    # ---------------- payment methods ----------------

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> AttachPaymentMethodResponse:
        """
        1) Resolve the customer (NotFound otherwise)
        2) Detach every stored method except the current default, concurrently, best-effort
        3) Attach the new method
        4) Make it the invoice default
        5) Detach the previous default, best-effort

        A detached method can never be attached again, so the previous
        default stays attached until the new one is in place. If step 3
        fails it is restored as the invoice default before the original
        error is raised.
        """
        customer = await self.payments.retrieve_customer(customer_id)
        existing = await self.payments.list_payment_methods(customer_id)

        previous_default = default_payment_method_id(customer) or (existing[0]["id"] if existing else None)
        if previous_default == payment_method_id:
            previous_default = None
        stale = [pm["id"] for pm in existing if pm["id"] not in (payment_method_id, previous_default)]
        detached = await self._detach_all(customer_id, stale)

        try:
            attached = await self.payments.attach_payment_method(payment_method_id, customer_id=customer_id)
        except PaymentFlowError:
            if previous_default:
                await self._restore_default(customer_id, previous_default)
            raise

        await self.payments.update_customer(customer_id, default_payment_method=attached["id"])
        if previous_default:
            detached += await self._detach_all(customer_id, [previous_default])

        card = attached.get("card") or {}
        log.info(
            "payment_method_attached",
            customer_id=customer_id,
            payment_method_id=attached["id"],
            detached=len(detached),
        )
        return AttachPaymentMethodResponse(
            paymentMethodId=attached["id"],
            lastFour=card.get("last4"),
            brand=card.get("brand"),
            expMonth=card.get("exp_month"),
            expYear=card.get("exp_year"),
        )

    async def _detach_all(self, customer_id: str, payment_method_ids: List[str]) -> List[str]:
        results = await asyncio.gather(
            *(self.payments.detach_payment_method(pid) for pid in payment_method_ids),
            return_exceptions=True,
        )
        detached: List[str] = []
        for pid, res in zip(payment_method_ids, results):
            if isinstance(res, PaymentFlowError):
                log.warning(
                    "payment_method_detach_failed",
                    customer_id=customer_id,
                    payment_method_id=pid,
                    code=res.code,
                )
            elif isinstance(res, BaseException):
                raise res
            else:
                detached.append(pid)
        return detached

    async def _restore_default(self, customer_id: str, payment_method_id: str) -> None:
        try:
            await self.payments.update_customer(customer_id, default_payment_method=payment_method_id)
            log.info("payment_method_restored", customer_id=customer_id, payment_method_id=payment_method_id)
        except PaymentFlowError as e:
            # the caller re-raises the attach failure; this one is only logged
            log.error(
                "payment_method_restore_failed",
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                code=e.code,
            )
