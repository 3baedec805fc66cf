"""
Pydantic schemas for the pre-paid booking flow.
Wire names follow the web client (camelCase).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ConfirmPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: Optional[str] = Field(default=None, alias="paymentIntentId")


class PaymentIntentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    client_secret: str = Field(alias="clientSecret")
    payment_intent_id: str = Field(alias="paymentIntentId")
    amount: int
