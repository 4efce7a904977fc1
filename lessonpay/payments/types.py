# lessonpay/payments/types.py
from __future__ import annotations
from typing import Protocol, Optional, List, Dict, Any

# Every method raises the lessonpay.core.errors taxonomy, never SDK exceptions.
# Objects are plain dicts shaped like the processor's resources.


class PaymentProvider(Protocol):
    # --- customers ---
    async def create_customer(
        self, *, name: Optional[str], email: str, metadata: Dict[str, Any]
    ) -> Dict[str, Any]: ...
    async def list_customers_by_email(self, email: str) -> List[Dict[str, Any]]: ...
    async def retrieve_customer(self, customer_id: str) -> Dict[str, Any]: ...
    async def update_customer(
        self,
        customer_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        default_payment_method: Optional[str] = None,
    ) -> Dict[str, Any]: ...
    async def delete_customer(self, customer_id: str) -> Dict[str, Any]: ...

    # --- setup intents ---
    async def create_setup_intent(self, *, customer_id: Optional[str] = None) -> Dict[str, Any]: ...

    # --- payment methods ---
    async def list_payment_methods(
        self, customer_id: str, *, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]: ...
    async def attach_payment_method(self, payment_method_id: str, *, customer_id: str) -> Dict[str, Any]: ...
    async def detach_payment_method(self, payment_method_id: str) -> Dict[str, Any]: ...

    # --- payment intents (manual capture) ---
    async def create_payment_intent(
        self,
        *,
        customer_id: str,
        amount: int,
        currency: str,
        description: Optional[str],
        metadata: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]: ...
    async def confirm_payment_intent(
        self, payment_intent_id: str, *, payment_method_id: str, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]: ...
    async def capture_payment_intent(
        self, payment_intent_id: str, *, amount_to_capture: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]: ...
    async def cancel_payment_intent(
        self, payment_intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]: ...
    async def list_payment_intents(
        self,
        *,
        customer_id: Optional[str] = None,
        created_gte: Optional[int] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]: ...

    # --- refunds ---
    async def create_refund(
        self,
        payment_intent_id: str,
        *,
        amount: Optional[int] = None,
        reason: str = "requested_by_customer",
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    # --- reporting ---
    async def list_charges(
        self, *, created_gte: int, created_lte: int, page_size: int = 100, max_records: int = 1000
    ) -> List[Dict[str, Any]]: ...
    async def retrieve_balance_transaction(self, balance_transaction_id: str) -> Dict[str, Any]: ...
