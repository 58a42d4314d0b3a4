"""
Maksekeskus Models - Request and notification shapes for the payment gateway.

Reference: https://developer.maksekeskus.ee/reference.php
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TransactionDetails(BaseModel):
    """Amount and reference of a gateway transaction."""

    amount: str = Field(..., description="Major units with two decimals, e.g. '8.49'")
    currency: str = Field(..., min_length=3, max_length=3)
    reference: str


class CustomerDetails(BaseModel):
    """Customer context sent with a transaction."""

    ip: str
    country: str
    locale: str


class TransactionUrls(BaseModel):
    """Where the gateway sends the buyer and its notifications."""

    return_url: str
    cancel_url: str
    notification_url: str


class TransactionRequest(BaseModel):
    """POST /v1/transactions body."""

    transaction: TransactionDetails
    customer: CustomerDetails
    transaction_url: TransactionUrls


class TransactionResponse(BaseModel):
    """Fields of the POST /v1/transactions answer the service uses."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    status: str | None = None
    payment_methods: Any = None


class PaymentNotification(BaseModel):
    """Signed payment status notification sent to the webhook."""

    model_config = ConfigDict(extra="allow")

    transaction: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    reference: str | None = None
    amount: str | None = None
    currency: str | None = None
