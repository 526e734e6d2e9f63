"""Request validation."""

import pytest

from arenatickets.errors import ErrorCode, ValidationError
from arenatickets.schemas import (
    CompetitorProfile, PurchaseConfirmation, PurchaseIntentRequest, parse
)


class TestPurchaseConfirmation:
    """Tests for PurchaseConfirmation."""

    def test_client_field_names(self):
        req = parse(PurchaseConfirmation, {
            "email": " fan@example.com ",
            "paymentIntentId": "pi_1",
            "ticketType": "vip",
            "price": 5000,
        })
        assert req.email == "fan@example.com"
        assert req.payment_reference == "pi_1"
        assert req.kind == "vip"
        assert req.price_minor_units == 5000

    def test_price_defaults_to_catalog(self):
        req = parse(PurchaseConfirmation,
                    {"email": "fan@example.com", "paymentIntentId": "pi_1"})
        assert req.kind == "general_admission"
        assert req.price_minor_units == 2000

    def test_price_mismatch(self):
        with pytest.raises(ValidationError) as exc:
            parse(PurchaseConfirmation, {
                "email": "fan@example.com", "paymentIntentId": "pi_1",
                "price": 1,
            })
        assert exc.value.code is ErrorCode.VALIDATION
        assert exc.value.message == "Price does not match ticket type"

    def test_bad_email(self):
        with pytest.raises(ValidationError) as exc:
            parse(PurchaseConfirmation,
                  {"email": "fan@", "paymentIntentId": "pi_1"})
        assert exc.value.message == "Valid email address required"

    def test_missing_reference(self):
        with pytest.raises(ValidationError) as exc:
            parse(PurchaseConfirmation, {"email": "fan@example.com"})
        assert exc.value.message.startswith("Missing required field")

    def test_empty_reference(self):
        with pytest.raises(ValidationError):
            parse(PurchaseConfirmation,
                  {"email": "fan@example.com", "paymentIntentId": ""})


class TestPurchaseIntentRequest:
    """Tests for PurchaseIntentRequest."""

    def test_catalog_price(self):
        req = parse(PurchaseIntentRequest,
                    {"email": "fan@example.com", "ticketType": "vip"})
        assert req.price_minor_units == 5000

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            parse(PurchaseIntentRequest,
                  {"email": "fan@example.com", "kind": "backstage"})


class TestCompetitorProfile:
    """Tests for CompetitorProfile."""

    def test_blank_optionals_become_none(self):
        profile = parse(CompetitorProfile, {
            "email": "dev@example.com", "full_name": "Dev",
            "bio": "", "twitter_username": "",
        }).profile()
        assert profile["bio"] is None
        assert profile["twitter_username"] is None

    def test_status_values(self):
        with pytest.raises(ValidationError):
            parse(CompetitorProfile, {"email": "dev@example.com",
                                      "full_name": "Dev", "status": "king"})
