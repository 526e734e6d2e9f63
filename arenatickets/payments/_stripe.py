import asyncio
import json
from typing import Dict, Tuple

import stripe

from .base import (
    InvalidSignature, PaymentGateway, PaymentIntent, PaymentVerification
)

SIGNATURE_HEADER = "stripe-signature"
SIGNATURE_TOLERANCE_SECONDS = 300

_KINDS = {
    "succeeded": "succeeded",
    "payment_failed": "failed",
    "canceled": "canceled",
}


class StripeGateway(PaymentGateway):
    """PaymentIntents through the stripe SDK.

    The SDK is blocking, so API calls run in a worker thread. The secret key
    goes with each request; the module-level stripe.api_key is left alone.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        stripe_client=stripe,
    ) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self._stripe = stripe_client

    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent:
        intent = await asyncio.to_thread(
            self._stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=dict(metadata),
            api_key=self.secret_key,
        )
        return {
            "id": intent["id"],
            "client_secret": intent["client_secret"],
            "amount": int(intent["amount"]),
            "currency": intent["currency"],
        }

    async def verify(self, reference: str) -> PaymentVerification:
        try:
            intent = await asyncio.to_thread(
                self._stripe.PaymentIntent.retrieve,
                reference,
                api_key=self.secret_key,
            )
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return PaymentVerification(succeeded=False, status="not_found")
            raise
        status = intent["status"]
        return PaymentVerification(
            succeeded=status == "succeeded",
            status=status,
            amount_received=intent["amount_received"],
            metadata=dict(intent["metadata"] or {}),
        )

    def verify_webhook(self, payload: bytes, headers: Dict[str, str]) -> dict:
        if not self.webhook_secret:
            raise InvalidSignature("Webhook secret not configured")
        header = headers.get(SIGNATURE_HEADER)
        if not header:
            raise InvalidSignature("Missing signature")
        try:
            self._stripe.Webhook.construct_event(
                payload, header, self.webhook_secret,
                tolerance=SIGNATURE_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(e.user_message or "Invalid signature")
        except ValueError:
            raise InvalidSignature("Invalid JSON")
        # plain dicts downstream, same as MockPay events
        return json.loads(payload)

    def event_kind(self, event: dict) -> str:
        etype = event.get("type", "")
        if not etype.startswith("payment_intent."):
            return ""
        return _KINDS.get(etype.split(".", 1)[1], "")

    def event_payment(self, event: dict) -> Tuple[str, Dict[str, str]]:
        obj = (event.get("data") or {}).get("object") or {}
        return obj.get("id", ""), obj.get("metadata") or {}
