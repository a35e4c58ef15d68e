"""
schemas.py — Payment request/response contracts (camelCase on the wire).
"""
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import Field

from bizmodel.schemas import CamelModel


class CreatePaymentRequest(CamelModel):
    # userId is accepted for compatibility; the owner is always derived from the attempt
    user_id: Optional[Union[int, str]] = None
    quiz_attempt_id: Optional[Union[int, str]] = None
    email: Optional[str] = None
    quiz_data: Optional[dict[str, Any]] = None


class CreatePaymentResponse(CamelModel):
    success: bool = True
    client_secret: Optional[str]
    payment_id: int
    amount: str
    quiz_attempt_id: int


class CreatePayPalPaymentResponse(CamelModel):
    success: bool = True
    order_id: str = Field(serialization_alias="orderID")
    approval_url: Optional[str] = None
    payment_id: int
    amount: str
    quiz_attempt_id: int


class CapturePayPalRequest(CamelModel):
    order_id: str = Field(validation_alias="orderID")


class PaymentOut(CamelModel):
    id: int
    user_id: int
    quiz_attempt_id: int
    amount: str
    amount_cents: int
    currency: str
    type: str
    status: str
    stripe_payment_intent_id: Optional[str] = None
    paypal_order_id: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class PaymentStatusResponse(PaymentOut):
    provider_status: Optional[str] = None
    provider_error: Optional[str] = None


class RefundRequest(CamelModel):
    payment_id: int
    amount: float = Field(gt=0)
    reason: str = Field(min_length=1)
    admin_note: Optional[str] = None


class RefundOut(CamelModel):
    id: int
    payment_id: int
    amount: str
    currency: str
    reason: str
    status: str
    provider_refund_id: Optional[str] = None
    admin_note: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


class AdminPaymentRequest(CamelModel):
    payment_id: int


class AdminUserRequest(CamelModel):
    user_id: int
