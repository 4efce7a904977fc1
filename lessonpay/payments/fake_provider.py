# lessonpay/payments/fake_provider.py
from __future__ import annotations
import copy
import secrets
from typing import Optional, List, Dict, Any, Set, Tuple
from datetime import datetime, timezone

from lessonpay.core.errors import DeclinedError, NotFoundError, UpstreamError, ValidationError

# token -> (brand, last4, decline_code); mirrors Stripe's test payment methods
_TEST_CARDS: Dict[str, Tuple[str, str, Optional[str]]] = {
    "pm_card_visa": ("visa", "4242", None),
    "pm_card_mastercard": ("mastercard", "4444", None),
    "pm_card_amex": ("amex", "8431", None),
    "pm_card_chargeDeclined": ("visa", "0002", "generic_decline"),
    "pm_card_chargeDeclinedInsufficientFunds": ("visa", "9995", "insufficient_funds"),
    "pm_card_chargeDeclinedExpiredCard": ("visa", "0069", "expired_card"),
}

_FEE_PERCENT = 0.029
_FEE_FIXED = 30


class FakeStripeProvider:
    """
    In-memory, protocol-compliant fake for tests/local runs.
    Mirrors the signatures in lessonpay.payments.types.PaymentProvider and
    raises the same error taxonomy as the Stripe provider.

    - Customers / payment methods: attach, detach and default-method bookkeeping.
      A detached method can never be attached again, as on Stripe.
      Stripe test tokens (pm_card_visa, pm_card_chargeDeclined, ...) are accepted
      wherever a payment method id is.
    - Payment intents: manual capture only; decline cards leave the intent in
      requires_payment_method with a last_payment_error.
    - Charges / balance transactions: created on capture (fee 2.9% + 30) and on
      decline (failed, no balance transaction).
    - Idempotency keys on writes replay the first result.

    Test hooks: seed_payment_method(), seed_charge(), seed_payment_intent(),
    plus fail_attach / fail_detach sets of payment method ids that should error.
    """

    def __init__(self):
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.payment_methods: Dict[str, Dict[str, Any]] = {}
        self.setup_intents: Dict[str, Dict[str, Any]] = {}
        self.payment_intents: Dict[str, Dict[str, Any]] = {}
        self.refunds: Dict[str, Dict[str, Any]] = {}
        self.charges: Dict[str, Dict[str, Any]] = {}
        self.balance_transactions: Dict[str, Dict[str, Any]] = {}
        # idempotency_key -> (operation, request params, first response)
        self._idempotent: Dict[str, Tuple[str, Dict[str, Any], Dict[str, Any]]] = {}
        # object id -> creation sequence; breaks ties between equal timestamps
        self._seq: Dict[str, int] = {}
        self._counter: int = 0
        # pm id -> decline code, kept off the public object
        self._decline_codes: Dict[str, str] = {}
        # detached payment methods; Stripe never lets these be attached again
        self._spent: Set[str] = set()

        self.fail_attach: Set[str] = set()
        self.fail_detach: Set[str] = set()

    # ----------------------- helpers -----------------------

    @staticmethod
    def _now_ts() -> int:
        return int(datetime.now(tz=timezone.utc).timestamp())

    def _new_id(self, prefix: str) -> str:
        self._counter += 1
        oid = f"{prefix}_fake_{self._counter}"
        self._seq[oid] = self._counter
        return oid

    def _newest_first(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(rows, key=lambda r: (r.get("created") or 0, self._seq.get(r["id"], 0)), reverse=True)

    def _replay(self, op: str, key: Optional[str], params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not key or key not in self._idempotent:
            return None
        first_op, first_params, result = self._idempotent[key]
        if first_op != op or first_params != params:
            raise ValidationError(
                "Keys for idempotent requests can only be used with the same parameters they were first used with.",
                code="idempotency_error",
            )
        return copy.deepcopy(result)

    def _remember(
        self, op: str, key: Optional[str], params: Dict[str, Any], result: Dict[str, Any]
    ) -> Dict[str, Any]:
        if key:
            self._idempotent[key] = (op, copy.deepcopy(params), copy.deepcopy(result))
        return copy.deepcopy(result)

    def _customer(self, customer_id: str) -> Dict[str, Any]:
        c = self.customers.get(customer_id)
        if not c:
            raise NotFoundError(f"No such customer: '{customer_id}'")
        return c

    def _intent(self, payment_intent_id: str) -> Dict[str, Any]:
        pi = self.payment_intents.get(payment_intent_id)
        if not pi:
            raise NotFoundError(f"No such payment_intent: '{payment_intent_id}'")
        return pi

    def _new_payment_method(
        self,
        *,
        brand: str,
        last4: str,
        exp_month: int = 12,
        exp_year: Optional[int] = None,
        decline_code: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        pid = self._new_id("pm")
        pm = {
            "id": pid,
            "object": "payment_method",
            "type": "card",
            "customer": customer_id,
            "created": self._now_ts(),
            "card": {
                "brand": brand,
                "last4": last4,
                "exp_month": exp_month,
                "exp_year": exp_year or datetime.now(tz=timezone.utc).year + 3,
            },
        }
        self.payment_methods[pid] = pm
        if decline_code:
            self._decline_codes[pid] = decline_code
        return pm

    def _resolve_payment_method(self, payment_method_id: str) -> Dict[str, Any]:
        pm = self.payment_methods.get(payment_method_id)
        if pm:
            return pm
        card = _TEST_CARDS.get(payment_method_id)
        if card:
            brand, last4, decline_code = card
            return self._new_payment_method(brand=brand, last4=last4, decline_code=decline_code)
        raise NotFoundError(f"No such PaymentMethod: '{payment_method_id}'")

    def _new_charge(
        self,
        *,
        amount: int,
        status: str,
        currency: str = "usd",
        payment_intent_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        fee: Optional[int] = None,
        created: Optional[int] = None,
    ) -> Dict[str, Any]:
        cid = self._new_id("ch")
        txn_id = None
        if fee is not None:
            txn_id = self._new_id("txn")
            self.balance_transactions[txn_id] = {
                "id": txn_id,
                "object": "balance_transaction",
                "amount": amount,
                "fee": fee,
                "net": amount - fee,
                "currency": currency,
                "source": cid,
            }
        charge = {
            "id": cid,
            "object": "charge",
            "amount": amount,
            "amount_refunded": 0,
            "currency": currency,
            "status": status,
            "paid": status == "succeeded",
            "refunded": False,
            "customer": customer_id,
            "payment_intent": payment_intent_id,
            "balance_transaction": txn_id,
            "created": created if created is not None else self._now_ts(),
        }
        self.charges[cid] = charge
        return charge

    # --------------------- test hooks ----------------------

    def seed_payment_method(
        self,
        *,
        brand: str = "visa",
        last4: str = "4242",
        exp_month: int = 12,
        exp_year: Optional[int] = None,
        decline_code: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> str:
        if customer_id:
            self._customer(customer_id)
        pm = self._new_payment_method(
            brand=brand,
            last4=last4,
            exp_month=exp_month,
            exp_year=exp_year,
            decline_code=decline_code,
            customer_id=customer_id,
        )
        return pm["id"]

    def seed_charge(
        self, *, amount: int, status: str = "succeeded", fee: Optional[int] = None, created: Optional[int] = None
    ) -> Dict[str, Any]:
        return copy.deepcopy(self._new_charge(amount=amount, status=status, fee=fee, created=created))

    def seed_payment_intent(
        self,
        *,
        customer_id: Optional[str],
        amount: int,
        status: str,
        payment_method: Optional[str] = None,
        last_payment_error: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        created: Optional[int] = None,
    ) -> Dict[str, Any]:
        pid = self._new_id("pi")
        self.payment_intents[pid] = {
            "id": pid,
            "object": "payment_intent",
            "amount": amount,
            "amount_capturable": amount if status == "requires_capture" else 0,
            "amount_received": amount if status == "succeeded" else 0,
            "currency": "usd",
            "customer": customer_id,
            "description": description,
            "metadata": {},
            "capture_method": "manual",
            "payment_method_types": ["card"],
            "status": status,
            "payment_method": payment_method,
            "last_payment_error": last_payment_error,
            "latest_charge": None,
            "cancellation_reason": None,
            "created": created if created is not None else self._now_ts(),
        }
        return copy.deepcopy(self.payment_intents[pid])

    # --------------------- customers -----------------------

    async def create_customer(
        self, *, name: Optional[str], email: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        cid = self._new_id("cus")
        self.customers[cid] = {
            "id": cid,
            "object": "customer",
            "name": name,
            "email": email,
            "metadata": dict(metadata or {}),
            "invoice_settings": {"default_payment_method": None},
            "created": self._now_ts(),
        }
        return copy.deepcopy(self.customers[cid])

    async def list_customers_by_email(self, email: str) -> List[Dict[str, Any]]:
        rows = [c for c in self.customers.values() if c.get("email") == email]
        return copy.deepcopy(self._newest_first(rows))

    async def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._customer(customer_id))

    async def update_customer(
        self,
        customer_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        default_payment_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        c = self._customer(customer_id)
        if default_payment_method is not None:
            pm = self.payment_methods.get(default_payment_method)
            if not pm or pm.get("customer") != customer_id:
                raise ValidationError(
                    f"The customer does not have a payment method with the ID {default_payment_method}.",
                    code="resource_missing",
                )
            c["invoice_settings"]["default_payment_method"] = default_payment_method
        if name is not None:
            c["name"] = name
        if email is not None:
            c["email"] = email
        return copy.deepcopy(c)

    async def delete_customer(self, customer_id: str) -> Dict[str, Any]:
        self._customer(customer_id)
        for pm in self.payment_methods.values():
            if pm.get("customer") == customer_id:
                pm["customer"] = None
                self._spent.add(pm["id"])
        del self.customers[customer_id]
        return {"id": customer_id, "object": "customer", "deleted": True}

    # --------------------- setup intents -------------------

    async def create_setup_intent(self, *, customer_id: Optional[str] = None) -> Dict[str, Any]:
        if customer_id:
            self._customer(customer_id)
        sid = self._new_id("seti")
        self.setup_intents[sid] = {
            "id": sid,
            "object": "setup_intent",
            "client_secret": f"{sid}_secret_{secrets.token_hex(8)}",
            "customer": customer_id,
            "status": "requires_payment_method",
            "created": self._now_ts(),
        }
        return copy.deepcopy(self.setup_intents[sid])

    # --------------------- payment methods -----------------

    async def list_payment_methods(
        self, customer_id: str, *, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        self._customer(customer_id)
        rows = self._newest_first(
            [pm for pm in self.payment_methods.values() if pm.get("customer") == customer_id and pm["type"] == "card"]
        )
        if limit:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def attach_payment_method(self, payment_method_id: str, *, customer_id: str) -> Dict[str, Any]:
        self._customer(customer_id)
        if payment_method_id in self.fail_attach:
            raise DeclinedError("Your card was declined.", code="card_declined")
        pm = self._resolve_payment_method(payment_method_id)
        if pm["id"] in self._spent:
            raise ValidationError(
                "This PaymentMethod was previously used without being attached to a Customer or was detached "
                "from a Customer, and may not be used again.",
                code="payment_method_unexpected_state",
            )
        owner = pm.get("customer")
        if owner and owner != customer_id:
            raise ValidationError(
                "The payment method you provided has already been attached to a customer.",
                code="payment_method_unexpected_state",
            )
        pm["customer"] = customer_id
        return copy.deepcopy(pm)

    async def detach_payment_method(self, payment_method_id: str) -> Dict[str, Any]:
        pm = self.payment_methods.get(payment_method_id)
        if not pm:
            raise NotFoundError(f"No such PaymentMethod: '{payment_method_id}'")
        if payment_method_id in self.fail_detach:
            raise UpstreamError("An error occurred while processing your request.", code="api_error")
        owner = pm.get("customer")
        if not owner:
            raise ValidationError(
                "The payment method you provided is not attached to a customer so detachment is impossible.",
                code="payment_method_unexpected_state",
            )
        cust = self.customers.get(owner)
        if cust and cust["invoice_settings"].get("default_payment_method") == payment_method_id:
            cust["invoice_settings"]["default_payment_method"] = None
        pm["customer"] = None
        self._spent.add(payment_method_id)
        return copy.deepcopy(pm)

    # --------------------- payment intents -----------------

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
        params = {
            "customer": customer_id,
            "amount": amount,
            "currency": currency,
            "description": description,
            "metadata": dict(metadata or {}),
        }
        replay = self._replay("create_payment_intent", idempotency_key, params)
        if replay:
            return replay
        if not isinstance(amount, int) or amount < 1:
            raise ValidationError("Invalid positive integer", code="parameter_invalid_integer")
        self._customer(customer_id)
        pid = self._new_id("pi")
        self.payment_intents[pid] = {
            "id": pid,
            "object": "payment_intent",
            "amount": amount,
            "amount_capturable": 0,
            "amount_received": 0,
            "currency": currency,
            "customer": customer_id,
            "description": description,
            "metadata": dict(metadata or {}),
            "capture_method": "manual",
            "payment_method_types": ["card"],
            "status": "requires_payment_method",
            "payment_method": None,
            "last_payment_error": None,
            "latest_charge": None,
            "cancellation_reason": None,
            "client_secret": f"{pid}_secret_{secrets.token_hex(8)}",
            "created": self._now_ts(),
        }
        return self._remember("create_payment_intent", idempotency_key, params, self.payment_intents[pid])

    async def confirm_payment_intent(
        self, payment_intent_id: str, *, payment_method_id: str, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        params = {"payment_intent": payment_intent_id, "payment_method": payment_method_id}
        replay = self._replay("confirm_payment_intent", idempotency_key, params)
        if replay:
            return replay
        pi = self._intent(payment_intent_id)
        if pi["status"] not in ("requires_payment_method", "requires_confirmation"):
            raise ValidationError(
                f"This PaymentIntent's status is {pi['status']}, which does not allow confirmation.",
                code="payment_intent_unexpected_state",
                payment_intent_id=pi["id"],
            )
        pm = self._resolve_payment_method(payment_method_id)
        if pm.get("customer") and pi.get("customer") and pm["customer"] != pi["customer"]:
            raise ValidationError(
                "The provided PaymentMethod belongs to a different customer.",
                code="payment_method_unexpected_state",
                payment_intent_id=pi["id"],
            )

        decline_code = self._decline_codes.get(pm["id"])
        if decline_code:
            charge = self._new_charge(
                amount=pi["amount"],
                status="failed",
                currency=pi["currency"],
                payment_intent_id=pi["id"],
                customer_id=pi.get("customer"),
            )
            message = "Your card was declined."
            pi.update(
                status="requires_payment_method",
                payment_method=None,
                latest_charge=charge["id"],
                last_payment_error={
                    "type": "card_error",
                    "code": "card_declined",
                    "decline_code": decline_code,
                    "message": message,
                    "payment_method": {"id": pm["id"], "card": dict(pm["card"])},
                },
            )
            raise DeclinedError(message, code="card_declined", payment_intent_id=pi["id"])

        pi.update(
            status="requires_capture",
            payment_method=pm["id"],
            amount_capturable=pi["amount"],
            last_payment_error=None,
        )
        return self._remember("confirm_payment_intent", idempotency_key, params, pi)

    async def capture_payment_intent(
        self, payment_intent_id: str, *, amount_to_capture: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        params = {"payment_intent": payment_intent_id, "amount_to_capture": amount_to_capture}
        replay = self._replay("capture_payment_intent", idempotency_key, params)
        if replay:
            return replay
        pi = self._intent(payment_intent_id)
        if pi["status"] != "requires_capture":
            raise ValidationError(
                f"This PaymentIntent could not be captured because it has a status of {pi['status']}.",
                code="payment_intent_unexpected_state",
                payment_intent_id=pi["id"],
            )
        amount = pi["amount_capturable"] if amount_to_capture is None else amount_to_capture
        if not isinstance(amount, int) or amount < 1:
            raise ValidationError("Invalid positive integer", code="parameter_invalid_integer", payment_intent_id=pi["id"])
        if amount > pi["amount_capturable"]:
            raise ValidationError(
                "The amount to capture must be less than or equal to the amount capturable.",
                code="amount_too_large",
                payment_intent_id=pi["id"],
            )
        charge = self._new_charge(
            amount=amount,
            status="succeeded",
            currency=pi["currency"],
            payment_intent_id=pi["id"],
            customer_id=pi.get("customer"),
            fee=int(round(amount * _FEE_PERCENT)) + _FEE_FIXED,
        )
        pi.update(status="succeeded", amount_received=amount, amount_capturable=0, latest_charge=charge["id"])
        return self._remember("capture_payment_intent", idempotency_key, params, pi)

    async def cancel_payment_intent(
        self, payment_intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        params = {"payment_intent": payment_intent_id}
        replay = self._replay("cancel_payment_intent", idempotency_key, params)
        if replay:
            return replay
        pi = self._intent(payment_intent_id)
        if pi["status"] in ("succeeded", "canceled"):
            raise ValidationError(
                f"You cannot cancel this PaymentIntent because it has a status of {pi['status']}.",
                code="payment_intent_unexpected_state",
                payment_intent_id=pi["id"],
            )
        pi.update(status="canceled", amount_capturable=0, cancellation_reason="requested_by_customer")
        return self._remember("cancel_payment_intent", idempotency_key, params, pi)

    async def list_payment_intents(
        self,
        *,
        customer_id: Optional[str] = None,
        created_gte: Optional[int] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        rows = [
            pi for pi in self.payment_intents.values()
            if (customer_id is None or pi.get("customer") == customer_id)
            and (created_gte is None or pi["created"] >= created_gte)
        ]
        return copy.deepcopy(self._newest_first(rows)[:limit])

    # --------------------- refunds -------------------------

    async def create_refund(
        self,
        payment_intent_id: str,
        *,
        amount: Optional[int] = None,
        reason: str = "requested_by_customer",
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"payment_intent": payment_intent_id, "amount": amount, "reason": reason}
        replay = self._replay("create_refund", idempotency_key, params)
        if replay:
            return replay
        pi = self._intent(payment_intent_id)
        charge = self.charges.get(pi.get("latest_charge") or "")
        if pi["status"] != "succeeded" or not charge:
            raise ValidationError(
                "This PaymentIntent does not have a successful charge to refund.",
                code="charge_not_captured",
                payment_intent_id=pi["id"],
            )
        remaining = charge["amount"] - charge["amount_refunded"]
        if remaining <= 0:
            raise ValidationError(
                f"Charge {charge['id']} has already been refunded.",
                code="charge_already_refunded",
                payment_intent_id=pi["id"],
            )
        refund_amount = remaining if amount is None else amount
        if not isinstance(refund_amount, int) or refund_amount < 1:
            raise ValidationError("Invalid positive integer", code="parameter_invalid_integer", payment_intent_id=pi["id"])
        if refund_amount > remaining:
            raise ValidationError(
                f"Refund amount ({refund_amount}) is greater than unrefunded amount on charge ({remaining})",
                code="amount_too_large",
                payment_intent_id=pi["id"],
            )
        charge["amount_refunded"] += refund_amount
        charge["refunded"] = charge["amount_refunded"] >= charge["amount"]
        rid = self._new_id("re")
        self.refunds[rid] = {
            "id": rid,
            "object": "refund",
            "amount": refund_amount,
            "currency": pi["currency"],
            "payment_intent": pi["id"],
            "charge": charge["id"],
            "reason": reason,
            "status": "succeeded",
            "created": self._now_ts(),
        }
        return self._remember("create_refund", idempotency_key, params, self.refunds[rid])

    # --------------------- reporting -----------------------

    async def list_charges(
        self, *, created_gte: int, created_lte: int, page_size: int = 100, max_records: int = 1000
    ) -> List[Dict[str, Any]]:
        rows = [ch for ch in self.charges.values() if created_gte <= ch["created"] <= created_lte]
        return copy.deepcopy(self._newest_first(rows)[:max_records])

    async def retrieve_balance_transaction(self, balance_transaction_id: str) -> Dict[str, Any]:
        txn = self.balance_transactions.get(balance_transaction_id)
        if not txn:
            raise NotFoundError(f"No such balance transaction: '{balance_transaction_id}'")
        return copy.deepcopy(txn)
