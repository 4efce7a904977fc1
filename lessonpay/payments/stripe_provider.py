from __future__ import annotations
import asyncio
from itertools import islice
from typing import Optional, List, Dict, Any, Callable

import stripe
import structlog

from lessonpay.core.errors import (
    PaymentFlowError,
    DeclinedError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from lessonpay.core.retry import retry_reads

log = structlog.get_logger(__name__)


def _to_dict(obj: Any) -> Dict[str, Any]:
    """
    Normalize Stripe SDK objects and plain dicts to a plain dict.
    """
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, dict):
        return obj
    return dict(obj)


def _intent_id_from_error(err: Any) -> Optional[str]:
    pi = getattr(err, "payment_intent", None) if err is not None else None
    if pi is None:
        return None
    if isinstance(pi, str):
        return pi
    if isinstance(pi, dict):
        return pi.get("id")
    return getattr(pi, "id", None)


def translate_stripe_error(e: stripe.StripeError) -> PaymentFlowError:
    err = getattr(e, "error", None)
    message = getattr(err, "message", None) or getattr(e, "user_message", None) or str(e)
    code = getattr(e, "code", None) or getattr(err, "code", None)
    pi_id = _intent_id_from_error(err)

    if isinstance(e, stripe.CardError):
        return DeclinedError(message, code=code or "card_declined", payment_intent_id=pi_id)
    if isinstance(e, stripe.IdempotencyError):
        # key reused with different parameters
        return ValidationError(message, code="idempotency_error", payment_intent_id=pi_id)
    if isinstance(e, stripe.InvalidRequestError):
        if code == "resource_missing":
            return NotFoundError(message, code=code, payment_intent_id=pi_id)
        return ValidationError(message, code=code or "invalid_request", payment_intent_id=pi_id)
    # APIConnectionError, RateLimitError, AuthenticationError, APIError, ...
    return UpstreamError(message, code=code or "upstream_error", payment_intent_id=pi_id)


class StripePaymentProvider:
    def __init__(self, api_key: str, max_network_retries: int = 2):
        self.api_key = api_key
        stripe.api_key = api_key
        # SDK-level retries reuse the idempotency key of the original request
        stripe.max_network_retries = max_network_retries

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        # the SDK is synchronous; keep the event loop free
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as e:
            translated = translate_stripe_error(e)
            log.warning(
                "stripe_call_failed",
                op=getattr(fn, "__qualname__", str(fn)),
                error_type=type(e).__name__,
                code=translated.code,
            )
            raise translated from e

    # --- customers ---
    async def create_customer(
        self, *, name: Optional[str], email: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        c = await self._call(stripe.Customer.create, email=email, name=name, metadata=metadata or {})
        return _to_dict(c)

    @retry_reads()
    async def list_customers_by_email(self, email: str) -> List[Dict[str, Any]]:
        res = await self._call(stripe.Customer.list, email=email, limit=100)
        return [_to_dict(c) for c in res.data]

    @retry_reads()
    async def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        c = _to_dict(await self._call(stripe.Customer.retrieve, customer_id))
        if c.get("deleted"):
            raise NotFoundError(f"No such customer: '{customer_id}'")
        return c

    async def update_customer(
        self,
        customer_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        default_payment_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if name is not None:
            params["name"] = name
        if email is not None:
            params["email"] = email
        if default_payment_method is not None:
            params["invoice_settings"] = {"default_payment_method": default_payment_method}
        c = await self._call(stripe.Customer.modify, customer_id, **params)
        return _to_dict(c)

    async def delete_customer(self, customer_id: str) -> Dict[str, Any]:
        return _to_dict(await self._call(stripe.Customer.delete, customer_id))

    # --- setup intents ---
    async def create_setup_intent(self, *, customer_id: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if customer_id:
            params["customer"] = customer_id
        return _to_dict(await self._call(stripe.SetupIntent.create, **params))

    # --- payment methods ---
    @retry_reads()
    async def list_payment_methods(
        self, customer_id: str, *, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"customer": customer_id, "type": "card"}
        if limit:
            params["limit"] = limit
        res = await self._call(stripe.PaymentMethod.list, **params)
        return [_to_dict(pm) for pm in res.data]

    async def attach_payment_method(self, payment_method_id: str, *, customer_id: str) -> Dict[str, Any]:
        pm = await self._call(stripe.PaymentMethod.attach, payment_method_id, customer=customer_id)
        return _to_dict(pm)

    async def detach_payment_method(self, payment_method_id: str) -> Dict[str, Any]:
        return _to_dict(await self._call(stripe.PaymentMethod.detach, payment_method_id))

    # --- payment intents ---
    async def create_payment_intent(
        self,
        *,
        customer_id: str,
        amount: int,
        currency: str,
        description: Optional[str],
        metadata: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        pi = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            customer=customer_id,
            description=description,
            metadata=metadata or {},
            payment_method_types=["card"],
            capture_method="manual",
            idempotency_key=idempotency_key,
        )
        return _to_dict(pi)

    async def confirm_payment_intent(
        self, payment_intent_id: str, *, payment_method_id: str, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        pi = await self._call(
            stripe.PaymentIntent.confirm,
            payment_intent_id,
            payment_method=payment_method_id,
            idempotency_key=idempotency_key,
        )
        return _to_dict(pi)

    async def capture_payment_intent(
        self, payment_intent_id: str, *, amount_to_capture: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if amount_to_capture is not None:
            params["amount_to_capture"] = amount_to_capture
        pi = await self._call(
            stripe.PaymentIntent.capture, payment_intent_id, idempotency_key=idempotency_key, **params
        )
        return _to_dict(pi)

    async def cancel_payment_intent(
        self, payment_intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        pi = await self._call(
            stripe.PaymentIntent.cancel,
            payment_intent_id,
            cancellation_reason="requested_by_customer",
            idempotency_key=idempotency_key,
        )
        return _to_dict(pi)

    @retry_reads()
    async def list_payment_intents(
        self,
        *,
        customer_id: Optional[str] = None,
        created_gte: Optional[int] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if customer_id:
            params["customer"] = customer_id
        if created_gte is not None:
            params["created"] = {"gte": created_gte}
        res = await self._call(stripe.PaymentIntent.list, **params)
        return [_to_dict(pi) for pi in res.data]

    # --- refunds ---
    async def create_refund(
        self,
        payment_intent_id: str,
        *,
        amount: Optional[int] = None,
        reason: str = "requested_by_customer",
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"payment_intent": payment_intent_id, "reason": reason}
        if amount is not None:
            params["amount"] = amount
        refund = await self._call(stripe.Refund.create, idempotency_key=idempotency_key, **params)
        return _to_dict(refund)

    # --- reporting ---
    @retry_reads()
    async def list_charges(
        self, *, created_gte: int, created_lte: int, page_size: int = 100, max_records: int = 1000
    ) -> List[Dict[str, Any]]:
        def _collect() -> List[Any]:
            res = stripe.Charge.list(created={"gte": created_gte, "lte": created_lte}, limit=page_size)
            return list(islice(res.auto_paging_iter(), max_records))

        charges = await self._call(_collect)
        return [_to_dict(ch) for ch in charges]

    @retry_reads()
    async def retrieve_balance_transaction(self, balance_transaction_id: str) -> Dict[str, Any]:
        return _to_dict(await self._call(stripe.BalanceTransaction.retrieve, balance_transaction_id))
