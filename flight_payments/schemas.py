"""Payment data model.

Amounts are integer minor units (cents) everywhere, the way Stripe takes them.
The tender is a closed union discriminated on ``type``.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

IntentStatus = Literal["pending", "processing", "completed", "failed"]
TransactionStatus = Literal["completed", "failed"]
TransactionType = Literal["charge", "refund"]
Provider = Literal["stripe", "points"]
CardBrand = Literal["visa", "mastercard", "amex", "discover", "diners", "jcb", "unionpay"]


class CreditCardInfo(BaseModel):
    last4: str = Field(pattern=r"^[0-9]{4}$")
    brand: CardBrand
    expiry_month: int = Field(ge=1, le=12)
    expiry_year: int = Field(ge=1970)
    holder_name: str = Field(min_length=1, max_length=100)


class PointsInfo(BaseModel):
    program: str = Field(min_length=1, max_length=50)
    points: int = Field(ge=1)
    # cash value of the points, in minor units
    cash_component: Optional[int] = Field(default=None, ge=0)


class CreditCardMethod(BaseModel):
    type: Literal["credit_card"]
    credit_card: CreditCardInfo


class PointsMethod(BaseModel):
    type: Literal["points"]
    points_used: PointsInfo


class MixedMethod(BaseModel):
    type: Literal["mixed"]
    credit_card: CreditCardInfo
    points_used: PointsInfo


PaymentMethod = Annotated[
    Union[CreditCardMethod, PointsMethod, MixedMethod],
    Field(discriminator="type"),
]


class CreatePaymentIntentRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    amount: int = Field(ge=0)
    currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    payment_method: PaymentMethod
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()


class PaymentMethodDetails(BaseModel):
    stripe_payment_method_id: Optional[str] = None
    points_account_id: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)
    payment_method_details: Optional[PaymentMethodDetails] = None


class RefundPaymentRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)
    amount: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


class PaymentIntent(BaseModel):
    id: str
    booking_id: str
    user_id: str
    amount: int
    currency: str
    payment_method: PaymentMethod
    status: IntentStatus
    provider_intent_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    refunded_amount: int = 0
    created_at: datetime
    updated_at: datetime


class PointsTransaction(BaseModel):
    program: str
    points_used: int
    points_value: int


class PaymentTransaction(BaseModel):
    id: str
    payment_intent_id: str
    booking_id: str
    user_id: str
    amount: int
    currency: str
    type: TransactionType
    status: TransactionStatus
    provider: Provider
    provider_transaction_id: Optional[str] = None
    points_transaction: Optional[PointsTransaction] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class PaymentBreakdown(BaseModel):
    cash_amount: Optional[int] = None
    points_used: Optional[int] = None
    points_value: Optional[int] = None
    taxes: int = 0
    fees: int = 0


class ReceiptPaymentMethod(BaseModel):
    id: str
    type: Literal["credit_card", "points", "mixed"]
    provider: Provider
    last4: Optional[str] = None
    brand: Optional[str] = None
    program: Optional[str] = None


class PaymentReceipt(BaseModel):
    id: str
    payment_intent_id: str
    booking_id: str
    user_id: str
    receipt_number: str
    total_amount: int
    currency: str
    payment_breakdown: PaymentBreakdown
    payment_method: ReceiptPaymentMethod
    issued_at: datetime
    receipt_url: Optional[str] = None


class PaymentResult(BaseModel):
    success: bool
    payment_intent: Optional[PaymentIntent] = None
    transaction: Optional[PaymentTransaction] = None
    transactions: List[PaymentTransaction] = Field(default_factory=list)
    receipt: Optional[PaymentReceipt] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
