"""API request and response models."""

from .common import ValidationErrorDetail, ValidationErrorResponse, format_validation_errors
from .orders import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderListResponse,
    UpdateOrderStatusRequest,
)
from .payments import CreatePaymentRequest, PaymentListResponse
from .webhooks import WebhookAck

__all__ = [
    "CancelOrderRequest",
    "CreateOrderRequest",
    "CreatePaymentRequest",
    "OrderListResponse",
    "PaymentListResponse",
    "UpdateOrderStatusRequest",
    "ValidationErrorDetail",
    "ValidationErrorResponse",
    "WebhookAck",
    "format_validation_errors",
]
