"""Payment records, STK push payloads, and realtime payment events."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sanaalink.schemas.booking_schema import PaymentStatus

ACCEPTED_RESPONSE_CODE = "0"


class Payment(BaseModel):
    """Payment record keyed by the booking (or order) it pays for."""
    id: Optional[str] = None
    booking_id: str
    amount: float
    status: PaymentStatus = PaymentStatus.PENDING
    provider_id: str
    customer_id: str
    payment_method: str = "mpesa"
    transaction_ref: str
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StkPushRequest(BaseModel):
    """Body sent to the STK push proxy function; amount is whole shillings."""
    phone: str
    amount: int
    reference: str


class StkPushResponse(BaseModel):
    """Gateway answer as relayed by the proxy function."""

    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: str = Field(default="", alias="MerchantRequestID")
    checkout_request_id: str = Field(default="", alias="CheckoutRequestID")
    response_code: str = Field(alias="ResponseCode")
    response_description: str = Field(default="", alias="ResponseDescription")
    customer_message: str = Field(default="", alias="CustomerMessage")

    @property
    def accepted(self) -> bool:
        return self.response_code == ACCEPTED_RESPONSE_CODE


class PaymentEvent(BaseModel):
    """A payment row change delivered over the realtime channel."""
    payment_id: str
    transaction_ref: str
    status: PaymentStatus
    transaction_id: Optional[str] = None
