from typing import Optional

from .. import config
from .base import (
    InvalidSignature, PaymentGateway, PaymentIntent, PaymentVerification
)
from ._mock import MockPay
from ._stripe import StripeGateway

BACKEND = config.PAYMENT_BACKEND  # 'mock' | 'stripe'


# Factory keeps server.py simple and constructor-agnostic:
def new_gateway(*, backend: Optional[str] = None) -> PaymentGateway:
    backend = (backend or BACKEND).lower()
    if backend == "stripe":
        if not config.STRIPE_SECRET_KEY:
            raise RuntimeError(
                "PaymentGateway(stripe) requires STRIPE_SECRET_KEY"
            )
        return StripeGateway(
            config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET
        )
    return MockPay(config.MOCK_SECRET)


__all__ = [
    "BACKEND",
    "InvalidSignature",
    "MockPay",
    "PaymentGateway",
    "PaymentIntent",
    "PaymentVerification",
    "StripeGateway",
    "new_gateway",
]
