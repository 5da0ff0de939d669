"""Request/response models for payment endpoints."""

from pydantic import BaseModel, Field

from ordering.models.enums import PaymentProvider
from ordering.models.payment import Payment


class CreatePaymentRequest(BaseModel):
    """Start (or restart) checkout for an existing order."""

    success_url: str | None = Field(
        default=None, description="Redirect after successful payment"
    )
    cancel_url: str | None = Field(default=None, description="Redirect if checkout is abandoned")
    provider: PaymentProvider | None = None


class PaymentListResponse(BaseModel):
    payments: list[Payment]
