# lessonpay/api/customers.py
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query

from lessonpay.core.deps import get_customer_manager
from lessonpay.engine.customers import CustomerManager
from lessonpay.schemas.api_models import (
    AccountUpdateRequest,
    AccountUpdateResponse,
    AttachPaymentMethodRequest,
    AttachPaymentMethodResponse,
    CreateClientRequest,
    CreateClientResponse,
    DeleteAccountResponse,
    PaymentMethodSummaryResponse,
    SetupIntentResponse,
)

router = APIRouter(tags=["Customers"])


@router.post("/create-client", response_model=CreateClientResponse)
async def create_client(
    body: CreateClientRequest,
    manager: CustomerManager = Depends(get_customer_manager),
):
    """409 when the email is already registered."""
    metadata = dict(body.metadata or {})
    if body.firstLesson:
        metadata["first_lesson"] = body.firstLesson
    customer_id = await manager.create_customer(name=body.name, email=body.email, metadata=metadata)
    return CreateClientResponse(customerId=customer_id)


@router.get("/create-setup-intent", response_model=SetupIntentResponse)
async def create_setup_intent(
    customerId: Optional[str] = Query(None, min_length=1),
    manager: CustomerManager = Depends(get_customer_manager),
):
    client_secret = await manager.begin_payment_method_setup(customerId)
    return SetupIntentResponse(clientSecret=client_secret)


@router.post("/lessons", response_model=AttachPaymentMethodResponse)
async def attach_payment_method(
    body: AttachPaymentMethodRequest,
    manager: CustomerManager = Depends(get_customer_manager),
):
    """
    Replaces whatever card the customer had with the confirmed one:
      curl -X POST http://localhost:4242/lessons \
        -H 'Content-Type: application/json' \
        -d '{"id": "cus_XXX", "paymentMethodId": "pm_XXX"}'
    """
    return await manager.attach_payment_method(body.customer_id, body.payment_method_id)


@router.post("/account-update/{customer_id}", response_model=AccountUpdateResponse)
async def account_update(
    customer_id: str,
    body: AccountUpdateRequest,
    manager: CustomerManager = Depends(get_customer_manager),
):
    return await manager.update_profile(customer_id, name=body.name, email=body.email)


@router.get("/payment-method/{customer_id}", response_model=PaymentMethodSummaryResponse)
async def payment_method_summary(
    customer_id: str,
    manager: CustomerManager = Depends(get_customer_manager),
):
    return await manager.get_payment_method_summary(customer_id)


@router.post(
    "/delete-account/{customer_id}",
    response_model=DeleteAccountResponse,
    response_model_exclude_none=True,
)
async def delete_account(
    customer_id: str,
    manager: CustomerManager = Depends(get_customer_manager),
):
    """
    Returns {"deleted": true}, or {"uncaptured_payments": [...]} when the
    customer still has authorized-but-uncaptured lessons.
    """
    return await manager.delete_customer(customer_id)
