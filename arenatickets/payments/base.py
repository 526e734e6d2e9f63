from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, TypedDict


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class PaymentIntent(TypedDict):
    id: str
    client_secret: str
    amount: int
    currency: str


@dataclass
class PaymentVerification:
    succeeded: bool
    status: str
    amount_received: Optional[int] = None
    metadata: Optional[Dict[str, str]] = None


class PaymentGateway(ABC):
    @abstractmethod
    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent: ...

    @abstractmethod
    async def verify(self, reference: str) -> PaymentVerification: ...

    # raises InvalidSignature
    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: Dict[str, str]) -> dict:
        ...

    # "succeeded" | "failed" | "canceled" | anything else is ignored
    @abstractmethod
    def event_kind(self, event: dict) -> str:
        ...

    # (payment reference, metadata)
    @abstractmethod
    def event_payment(self, event: dict) -> Tuple[str, Dict[str, str]]:
        ...


class InvalidSignature(Exception):
    pass
