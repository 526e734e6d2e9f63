import base64
import hashlib
import hmac
import json
import secrets
import time
import uuid
from typing import Dict, Optional, Tuple

from .base import (
    InvalidSignature, PaymentGateway, PaymentIntent, PaymentVerification
)

SIGNATURE_HEADER = "x-mockpay-signature"


def sign_payload(secret: str, payload: bytes) -> str:
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentGateway):
    """Local stand-in for a card processor.

    Intents live in process memory and are settled from the /mockpay UI,
    which then posts a signed webhook back to the server.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret
        self._intents: Dict[str, Dict] = {}

    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent:
        intent_id = f"mock_{uuid.uuid4().hex}"
        self._intents[intent_id] = {
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata),
            "status": "requires_payment_method",
        }
        return {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret_{secrets.token_hex(8)}",
            "amount": amount,
            "currency": currency,
        }

    def get_intent(self, intent_id: str) -> Optional[Dict]:
        return self._intents.get(intent_id)

    def settle(self, intent_id: str, kind: str) -> dict:
        """Moves an intent to succeeded|failed|canceled and returns the
        webhook event describing it."""
        intent = self._intents.get(intent_id)
        if intent is None:
            raise KeyError(intent_id)
        intent["status"] = kind
        return {
            "type": f"payment_intent.{kind}",
            "payment_intent_id": intent_id,
            "amount": intent["amount"],
            "currency": intent["currency"],
            "metadata": intent["metadata"],
            "created_at": int(time.time()),
            "idempotency_key": f"evt_{uuid.uuid4().hex}",
        }

    def sign_event(self, event: dict) -> Tuple[bytes, Dict[str, str]]:
        payload = json.dumps(event).encode()
        return payload, {
            SIGNATURE_HEADER: sign_payload(self.secret, payload),
            "content-type": "application/json",
        }

    async def verify(self, reference: str) -> PaymentVerification:
        intent = self._intents.get(reference)
        if intent is None:
            return PaymentVerification(succeeded=False, status="not_found")
        succeeded = intent["status"] == "succeeded"
        return PaymentVerification(
            succeeded=succeeded,
            status=intent["status"],
            amount_received=intent["amount"] if succeeded else 0,
            metadata=intent["metadata"],
        )

    def verify_webhook(self, payload: bytes, headers: Dict[str, str]) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        expected = sign_payload(self.secret, payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise InvalidSignature("Invalid signature")
        try:
            return json.loads(payload.decode())
        except json.JSONDecodeError:
            raise InvalidSignature("Invalid JSON")

    def event_kind(self, event: dict) -> str:
        return event.get("type", "").split(".")[-1]

    def event_payment(self, event: dict) -> Tuple[str, Dict[str, str]]:
        return (
            event.get("payment_intent_id", ""),
            event.get("metadata") or {},
        )
