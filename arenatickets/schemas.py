"""Request payloads. Every external input is parsed here before any side
effect; failures surface as arenatickets.errors.ValidationError (or FastAPI's
RequestValidationError, mapped to the same 400 response)."""
from __future__ import annotations
from typing import Any, Dict, Optional, Sequence, Type, TypeVar

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import field_validator, model_validator

from .config import DEFAULT_TICKET_KIND, TICKET_KINDS
from .errors import ValidationError
from .helpers import is_valid_email
from .model.orm import COMPETITOR_STATUSES

M = TypeVar("M", bound=BaseModel)


def _check_email(value: str) -> str:
    value = (value or "").strip()
    if not is_valid_email(value):
        raise ValueError("Valid email address required")
    return value


class EmailPayload(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        return _check_email(v)


class SignupRequest(EmailPayload):
    pass


class RetrievalRequest(EmailPayload):
    pass


class PurchaseIntentRequest(EmailPayload):
    model_config = ConfigDict(populate_by_name=True)

    kind: str = Field(
        DEFAULT_TICKET_KIND,
        validation_alias=AliasChoices("ticketType", "kind"),
    )

    @field_validator("kind")
    @classmethod
    def known_kind(cls, v: str) -> str:
        if v not in TICKET_KINDS:
            raise ValueError("Invalid ticket type")
        return v

    @property
    def price_minor_units(self) -> int:
        return TICKET_KINDS[self.kind]


class PurchaseConfirmation(EmailPayload):
    model_config = ConfigDict(populate_by_name=True)

    payment_reference: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices(
            "paymentIntentId", "stripe_payment_intent_id",
            "paymentReference", "payment_reference",
        ),
    )
    kind: str = Field(
        DEFAULT_TICKET_KIND,
        validation_alias=AliasChoices("ticketType", "kind"),
    )
    price_minor_units: Optional[int] = Field(
        None,
        validation_alias=AliasChoices(
            "price", "priceMinorUnits", "price_minor_units"
        ),
    )

    @field_validator("kind")
    @classmethod
    def known_kind(cls, v: str) -> str:
        if v not in TICKET_KINDS:
            raise ValueError("Invalid ticket type")
        return v

    @model_validator(mode="after")
    def catalog_price(self) -> "PurchaseConfirmation":
        # price is fixed by the catalog; a client-sent price may only echo it
        expected = TICKET_KINDS[self.kind]
        if self.price_minor_units is None:
            self.price_minor_units = expected
        elif self.price_minor_units != expected:
            raise ValueError("Price does not match ticket type")
        return self


class PasscodeRequest(BaseModel):
    passcode: str = ""


class CompetitorProfile(EmailPayload):
    full_name: str = Field(..., min_length=1)
    github_username: Optional[str] = None
    twitter_username: Optional[str] = None
    profile_photo_url: Optional[str] = None
    bio: Optional[str] = None
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in COMPETITOR_STATUSES:
            raise ValueError("Invalid status value")
        return v

    def profile(self) -> Dict[str, Any]:
        out = self.model_dump()
        # empty strings are stored as NULL
        for k, v in out.items():
            if v == "":
                out[k] = None
        return out


def first_error_message(errors: Sequence[Dict[str, Any]]) -> str:
    """User-facing text for the first of pydantic's error dicts."""
    if not errors:
        return "Invalid request"
    err = errors[0]
    msg = err.get("msg", "Invalid request")
    # "Value error, Valid email address required" -> the user-facing part
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    if err.get("type") == "missing":
        loc = ".".join(str(p) for p in err.get("loc", ()))
        return f"Missing required field: {loc}"
    return msg


def parse(model: Type[M], data: Dict[str, Any]) -> M:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(first_error_message(e.errors()))
