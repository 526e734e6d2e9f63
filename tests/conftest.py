"""Pytest configuration and shared fixtures."""

import asyncio
from typing import List

import pytest

from arenatickets.config import EVENT
from arenatickets.infra.sql import create_schema, make_async_engine
from arenatickets.mail import MailDispatcher, OutboundMessage
from arenatickets.model import Base, TicketLedger
from arenatickets.payments import MockPay, PaymentVerification
from arenatickets.tickets.codes import CodeGenerator
from arenatickets.tickets.notify import NotificationComposer
from arenatickets.tickets.orchestrator import PurchaseOrchestrator


class RecordingSender:
    """Mail sender that keeps every message; optionally always fails."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[OutboundMessage] = []

    async def deliver(self, message: OutboundMessage, from_address: str) -> str:
        if self.fail:
            raise RuntimeError("SMTP connection refused")
        self.sent.append(message)
        return f"<{len(self.sent)}@test>"


class FixedCodes(CodeGenerator):
    """Always hands out the same code."""

    def __init__(self, code: str) -> None:
        super().__init__()
        self.code = code
        self.calls = 0

    def generate(self) -> str:
        self.calls += 1
        return self.code


class StubGateway(MockPay):
    """MockPay whose verify result can be forced."""

    def __init__(self, verification=None, delay: float = 0.0,
                 error: Exception = None) -> None:
        super().__init__("test-secret")
        self.verification = verification
        self.delay = delay
        self.error = error

    async def verify(self, reference: str) -> PaymentVerification:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.verification is not None:
            return self.verification
        return await super().verify(reference)


def fake_document(ticket, event) -> bytes:
    return b"%PDF-1.4 " + ticket.code.encode()


@pytest.fixture
async def engine(tmp_path):
    engine, SessionAsync = make_async_engine(
        f"sqlite:///{tmp_path / 'arena.db'}"
    )
    await create_schema(engine, Base)
    yield engine, SessionAsync
    await engine.dispose()


@pytest.fixture
async def db(engine):
    _, SessionAsync = engine
    async with SessionAsync() as session:
        yield session


@pytest.fixture
def ledger(db) -> TicketLedger:
    return TicketLedger(db)


@pytest.fixture
def gateway() -> MockPay:
    return MockPay("test-secret")


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def composer() -> NotificationComposer:
    return NotificationComposer(EVENT, render_document=fake_document)


@pytest.fixture
def make_orchestrator(ledger, gateway, sender, composer):
    def _make(**overrides) -> PurchaseOrchestrator:
        kw = dict(
            ledger=ledger,
            gateway=gateway,
            dispatcher=MailDispatcher(sender, "tickets@test.local",
                                      timeout=2.0),
            composer=composer,
            codes=CodeGenerator(prefix="AMP"),
            event=EVENT,
        )
        kw.update(overrides)
        return PurchaseOrchestrator(**kw)
    return _make


@pytest.fixture
def paid_intent(gateway):
    """Creates and settles a MockPay intent; returns its id."""
    async def _paid(amount: int = 2000, email: str = "fan@example.com"):
        intent = await gateway.create_intent(
            amount, "usd",
            {"email": email, "ticket_type": "general_admission"},
        )
        gateway.settle(intent["id"], "succeeded")
        return intent["id"]
    return _paid
