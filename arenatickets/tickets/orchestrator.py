"""Ticket issuance.

A confirmation walks AwaitingPayment -> PaymentConfirmed -> CodeAssigned ->
Persisted -> DocumentsRendered -> Notified -> Complete. Anything that goes
wrong before Persisted ends in Failed and nothing is written; anything after
it is logged and reported in the result, the ticket stays issued.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .. import config
from ..config import EventInfo
from ..errors import (
    CodeExhaustion,
    DuplicateCodeError,
    DuplicatePaymentReference,
    ErrorCode,
    PaymentNotConfirmed,
)
from ..infra.timings import timeit
from ..mail.dispatcher import MailDispatcher
from ..model.ledger import TicketLedger
from ..model.orm import Ticket, TICKET_CONFIRMED
from ..payments.base import PaymentGateway, PaymentIntent
from ..schemas import PurchaseConfirmation, PurchaseIntentRequest
from .codes import CodeGenerator
from .invites import build_invite_file
from .notify import NotificationComposer

log = logging.getLogger(__name__)


class PurchaseState(Enum):
    AWAITING_PAYMENT = "AwaitingPayment"
    PAYMENT_CONFIRMED = "PaymentConfirmed"
    CODE_ASSIGNED = "CodeAssigned"
    PERSISTED = "Persisted"
    DOCUMENTS_RENDERED = "DocumentsRendered"
    NOTIFIED = "Notified"
    COMPLETE = "Complete"
    FAILED = "Failed"


@dataclass
class PurchaseResult:
    """Outcome of one confirmation.

    On failure `reason` carries the error code and `error` the message;
    on success `error` only ever describes a mail problem.
    """

    success: bool
    ticket_code: Optional[str] = None
    email_sent: bool = False
    idempotent: bool = False
    error: Optional[str] = None
    reason: Optional[ErrorCode] = None
    state: PurchaseState = PurchaseState.COMPLETE

    def to_dict(self) -> dict:
        if not self.success:
            return {
                "success": False,
                "error": self.reason.value,
                "message": self.error,
            }
        out = {
            "success": self.success,
            "ticketCode": self.ticket_code,
            "emailSent": self.email_sent,
            "idempotent": self.idempotent,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class RetrievalResult:
    found: bool
    ticket_count: int = 0
    email_sent: bool = False
    error: Optional[str] = None


class _Trace:
    """Current state of one confirmation, for the logs."""

    __slots__ = ("reference", "state")

    def __init__(self, reference: str) -> None:
        self.reference = reference
        self.state = PurchaseState.AWAITING_PAYMENT

    def to(self, state: PurchaseState, detail: str = "") -> None:
        log.debug("purchase %s: %s -> %s %s", self.reference,
                  self.state.value, state.value, detail)
        self.state = state


class PurchaseOrchestrator:
    def __init__(
        self,
        ledger: TicketLedger,
        gateway: PaymentGateway,
        dispatcher: MailDispatcher,
        composer: NotificationComposer,
        codes: CodeGenerator,
        event: EventInfo = config.EVENT,
        retry_limit: int = config.CODE_RETRY_LIMIT,
        verify_timeout: float = config.PAYMENT_VERIFY_TIMEOUT,
    ) -> None:
        self.ledger = ledger
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.composer = composer
        self.codes = codes
        self.event = event
        self.retry_limit = retry_limit
        self.verify_timeout = verify_timeout

    # ----------------------------
    # Payment intent
    # ----------------------------
    async def start_purchase(self, req: PurchaseIntentRequest) -> PaymentIntent:
        metadata = {
            "email": req.email,
            "ticket_type": req.kind,
            "event": self.event.name,
        }
        async with timeit("gateway.create_intent"):
            intent = await self.gateway.create_intent(
                req.price_minor_units, config.CURRENCY, metadata
            )
        log.info("payment intent %s created for %s (%s)",
                 intent["id"], req.email, req.kind)
        return intent

    # ----------------------------
    # Confirmation
    # ----------------------------
    async def _verify_payment(
        self, req: PurchaseConfirmation, trace: _Trace
    ) -> None:
        ref = req.payment_reference
        try:
            async with timeit("gateway.verify"):
                verification = await asyncio.wait_for(
                    self.gateway.verify(ref), timeout=self.verify_timeout
                )
        except asyncio.TimeoutError:
            trace.to(PurchaseState.FAILED, "verification timed out")
            raise PaymentNotConfirmed(ref, "Payment verification timed out")
        except Exception:
            log.warning("payment verification for %s raised", ref,
                        exc_info=True)
            trace.to(PurchaseState.FAILED, "verification error")
            raise PaymentNotConfirmed(ref, "Payment verification failed")

        if not verification.succeeded:
            trace.to(PurchaseState.FAILED, f"status={verification.status}")
            raise PaymentNotConfirmed(ref)
        received = verification.amount_received
        if received is not None and received < req.price_minor_units:
            trace.to(PurchaseState.FAILED, f"amount={received}")
            raise PaymentNotConfirmed(
                ref, "Payment amount does not match ticket price"
            )
        trace.to(PurchaseState.PAYMENT_CONFIRMED)

    def _replayed(self, ticket: Ticket, trace: _Trace) -> PurchaseResult:
        log.info("payment %s already issued ticket %s", trace.reference,
                 ticket.code)
        trace.to(PurchaseState.COMPLETE, "replay")
        return PurchaseResult(
            success=True,
            ticket_code=ticket.code,
            email_sent=False,
            idempotent=True,
            state=trace.state,
        )

    async def _issue(
        self, req: PurchaseConfirmation, trace: _Trace
    ) -> tuple[Optional[Ticket], Optional[Ticket]]:
        """Returns (new ticket, None) or (None, ticket already issued for
        this payment)."""
        for attempt in range(1, self.retry_limit + 1):
            code = self.codes.generate()
            trace.to(PurchaseState.CODE_ASSIGNED, code)
            ticket = Ticket(
                code=code,
                email=req.email,
                kind=req.kind,
                price_minor_units=req.price_minor_units,
                currency=config.CURRENCY,
                payment_reference=req.payment_reference,
                status=TICKET_CONFIRMED,
            )
            try:
                await self.ledger.insert(ticket)
            except DuplicateCodeError:
                log.warning("ticket code collision on %s (attempt %d/%d)",
                            code, attempt, self.retry_limit)
                continue
            except DuplicatePaymentReference:
                # a concurrent confirmation for the same payment won
                existing = await self.ledger.find_by_payment_reference(
                    req.payment_reference
                )
                return None, existing
            trace.to(PurchaseState.PERSISTED)
            return ticket, None

        trace.to(PurchaseState.FAILED, "code exhaustion")
        raise CodeExhaustion(self.retry_limit)

    async def _render(self, ticket: Ticket):
        document = None
        invite = None
        try:
            async with timeit("render.document"):
                document = await asyncio.to_thread(
                    self.composer.render_document, ticket, self.event
                )
        except Exception:
            log.error("ticket %s issued without PDF", ticket.code,
                      exc_info=True)
        try:
            invite = build_invite_file(ticket, self.event)
        except Exception:
            log.error("ticket %s issued without calendar invite",
                      ticket.code, exc_info=True)
        return document, invite

    async def confirm_purchase(
        self, req: PurchaseConfirmation
    ) -> PurchaseResult:
        """Issue the ticket for a completed payment, at most once per
        payment reference.

        An unconfirmed payment or code exhaustion gives a failed result
        (state Failed) and nothing is persisted. A replay returns the ticket
        already issued and sends no email.
        """
        trace = _Trace(req.payment_reference)
        try:
            await self._verify_payment(req, trace)
            existing = await self.ledger.find_by_payment_reference(
                req.payment_reference
            )
            if existing is not None:
                return self._replayed(existing, trace)
            ticket, existing = await self._issue(req, trace)
        except (PaymentNotConfirmed, CodeExhaustion) as e:
            log.warning("purchase %s failed: %s", req.payment_reference, e)
            return PurchaseResult(
                success=False,
                error=e.message,
                reason=e.code,
                state=trace.state,
            )

        if ticket is None:
            return self._replayed(existing, trace)
        log.info("ticket %s issued to %s (%s)", ticket.code, ticket.email,
                 ticket.kind)

        document, invite = await self._render(ticket)
        trace.to(PurchaseState.DOCUMENTS_RENDERED)

        error = None
        try:
            message = await asyncio.to_thread(
                self.composer.compose_ticket_message, ticket, document, invite
            )
            delivery = await self.dispatcher.send(message)
            email_sent, error = delivery.delivered, delivery.error
        except Exception as e:
            log.error("composing confirmation for %s failed", ticket.code,
                      exc_info=True)
            email_sent, error = False, str(e) or e.__class__.__name__
        trace.to(PurchaseState.NOTIFIED, f"email_sent={email_sent}")

        trace.to(PurchaseState.COMPLETE)
        return PurchaseResult(
            success=True,
            ticket_code=ticket.code,
            email_sent=email_sent,
            error=error,
            state=trace.state,
        )

    # ----------------------------
    # Retrieval
    # ----------------------------
    async def retrieve_tickets(self, email: str) -> RetrievalResult:
        tickets = await self.ledger.find_by_email(
            email, status=TICKET_CONFIRMED
        )
        if not tickets:
            return RetrievalResult(found=False)

        try:
            message = await asyncio.to_thread(
                self.composer.compose_retrieval_message,
                tickets,
                datetime.now(timezone.utc),
            )
        except Exception as e:
            log.error("composing retrieval for %s failed", email,
                      exc_info=True)
            return RetrievalResult(
                found=True,
                ticket_count=len(tickets),
                error=str(e) or e.__class__.__name__,
            )
        delivery = await self.dispatcher.send(message)
        log.info("retrieval for %s: %d ticket(s), delivered=%s", email,
                 len(tickets), delivery.delivered)
        return RetrievalResult(
            found=True,
            ticket_count=len(tickets),
            email_sent=delivery.delivered,
            error=delivery.error,
        )
