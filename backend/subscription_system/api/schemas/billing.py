"""Pydantic schemas for the billing API.

Request bodies accept the camelCase field names existing clients send.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ProductResponse(BaseModel):
    default_price_id: str | None
    name: str
    description: str | None = None


class CustomerResponse(BaseModel):
    customer_id: str


class UrlResponse(BaseModel):
    url: str


class SubscriptionStatusResponse(BaseModel):
    subscription_id: str
    subscription_status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None


class PaymentRequest(BaseModel):
    """Subscribe a customer to a price."""

    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(..., alias="priceId", min_length=1)
    customer_id: str = Field(..., alias="customerId", min_length=1)


class ProductPaymentRequest(BaseModel):
    """One-off purchase of ``quantity`` units at ``price`` dollars each."""

    model_config = ConfigDict(populate_by_name=True)

    customer_id: str = Field(..., alias="customerId", min_length=1)
    price: Decimal = Field(..., gt=0, decimal_places=2)
    quantity: int = Field(..., ge=1)


class WebhookAck(BaseModel):
    status: str = "ok"
    outcome: str
