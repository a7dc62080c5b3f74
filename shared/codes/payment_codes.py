"""
Payment/order specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx), retryable or "try another method"
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    GATEWAY_NOT_CONFIGURED = 60005
    AMOUNT_TOO_SMALL = 60006
    CURRENCY_NOT_SUPPORTED = 60007
    METHOD_UNAVAILABLE = 60008

    # Integrity errors (61xxx)
    AMOUNT_MISMATCH = 61000

    # Order/proof lifecycle (62xxx)
    ORDER_NOT_FOUND = 62000
    PROOF_NOT_FOUND = 62001
    INVALID_STATE_TRANSITION = 62002
    METHOD_LOCKED = 62003
    ALREADY_DECIDED = 62004
    PROOF_NOT_ACCEPTED = 62005
    CONCURRENT_MODIFICATION = 62006
    ORDER_ACCESS_DENIED = 62007
    UNKNOWN_PAYMENT_METHOD = 62008
    PRODUCT_UNAVAILABLE = 62009
    INVALID_PROOF_ARTIFACT = 62010
    ORDER_NUMBER_CONFLICT = 62011


# Provider→internal status mapping (checkout session / order status reported by the provider)
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        # Checkout Session payment_status
        "paid": "succeeded",
        "no_payment_required": "succeeded",
        "unpaid": "pending",
        # Checkout Session status
        "open": "pending",
        "complete": "succeeded",
        "expired": "expired",
    },
    "paypal": {
        # Order / capture status
        "CREATED": "pending",
        "SAVED": "pending",
        "APPROVED": "pending",
        "PAYER_ACTION_REQUIRED": "pending",
        "PENDING": "pending",
        "COMPLETED": "succeeded",
        "DECLINED": "failed",
        "FAILED": "failed",
        "VOIDED": "expired",
    },
}
