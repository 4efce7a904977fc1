from __future__ import annotations

from typing import Optional, Dict, Any, List
from pydantic import AliasChoices, BaseModel, Field


# -------------------------
# Config
# -------------------------
class ConfigResponse(BaseModel):
    key: str


class HealthResponse(BaseModel):
    status: str
    paymentsBackend: str


# -------------------------
# Customers
# -------------------------
class CreateClientRequest(BaseModel):
    name: Optional[str] = None
    email: str = Field(..., min_length=3)
    firstLesson: Optional[str] = None               # stored as metadata.first_lesson
    metadata: Optional[Dict[str, Any]] = None


class CreateClientResponse(BaseModel):
    customerId: str


class SetupIntentResponse(BaseModel):
    clientSecret: str


class AttachPaymentMethodRequest(BaseModel):
    # the lessons page posts {id, paymentMethodId}
    customer_id: str = Field(..., min_length=1, validation_alias=AliasChoices("customer_id", "customerId", "id"))
    payment_method_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("payment_method_id", "paymentMethodId")
    )


class AttachPaymentMethodResponse(BaseModel):
    paymentMethodId: str
    lastFour: Optional[str] = None
    brand: Optional[str] = None
    expMonth: Optional[int] = None
    expYear: Optional[int] = None


class AccountUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = Field(None, min_length=3)


class AccountUpdateResponse(BaseModel):
    updatedName: Optional[str] = None
    updatedEmail: Optional[str] = None


class CustomerSummary(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class CardSummary(BaseModel):
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None


class PaymentMethodSummaryResponse(BaseModel):
    customer: CustomerSummary
    card: CardSummary


class DeleteAccountResponse(BaseModel):
    # exactly one of the two is set
    deleted: Optional[bool] = None
    uncaptured_payments: Optional[List[str]] = None


# -------------------------
# Lesson payments
# -------------------------
class ScheduleLessonRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, strict=True)     # minor units (cents); no bools
    description: Optional[str] = None


class CompleteLessonPaymentRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    amount: Optional[int] = Field(None, gt=0, strict=True)  # None => capture everything authorized


class RefundLessonRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    amount: Optional[int] = Field(None, gt=0, strict=True)  # None => full refund


class CancelLessonRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)


class PaymentIntentEnvelope(BaseModel):
    payment: Dict[str, Any]


class RefundResponse(BaseModel):
    refund: str
    amount: Optional[int] = None
    status: Optional[str] = None


# -------------------------
# Reports
# -------------------------
class RevenueTotals(BaseModel):
    payment_total: int = 0      # gross
    fee_total: int = 0
    net_total: int = 0


class FailedPaymentCustomer(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class FailedPaymentIntent(BaseModel):
    id: str
    created: Optional[int] = None
    description: Optional[str] = None
    status: str = "failed"
    error: str = "generic_decline"


class FailedPaymentMethod(BaseModel):
    brand: Optional[str] = None
    last4: Optional[str] = None


class FailedPaymentRecord(BaseModel):
    customer: FailedPaymentCustomer
    payment_intent: FailedPaymentIntent
    payment_method: Optional[FailedPaymentMethod] = None
