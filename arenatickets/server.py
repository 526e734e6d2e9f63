from __future__ import annotations
import contextlib
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request
from fastapi import UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .auth import (
    ROLE_ADMIN, ROLE_COMPETITOR_ADMIN, check_passcode, issue_token,
    require_admin, require_competitor_admin,
)
from .errors import ErrorCode, TicketingError
from .helpers import to_iso
from .infra import timings
from .infra.sql import create_schema, make_async_engine
from .mail import MailDispatcher, new_dispatcher, BACKEND as MAIL_BACKEND
from .model import (
    Base, CompetitorStore, DuplicateCompetitorEmail, SignupStore, TicketLedger
)
from .model.orm import TICKET_CONFIRMED, TICKET_STATUSES
from .payments import (
    InvalidSignature, MockPay, PaymentGateway, new_gateway,
    BACKEND as PAYMENT_BACKEND,
)
from .schemas import (
    CompetitorProfile, PasscodeRequest, PurchaseConfirmation,
    PurchaseIntentRequest, RetrievalRequest, SignupRequest,
    first_error_message, parse,
)
from .tickets.codes import CodeGenerator
from .tickets.invites import build_provider_links
from .tickets.notify import NotificationComposer
from .tickets.orchestrator import PurchaseOrchestrator, PurchaseResult

log = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
STATUS_FOR = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.AUTHENTICATION: 401,
    ErrorCode.PAYMENT_NOT_CONFIRMED: 402,
    ErrorCode.CODE_EXHAUSTION: 500,
    ErrorCode.NOT_CONFIGURED: 500,
}

engine, SessionAsync = make_async_engine(config.DATABASE_URL)

codes = CodeGenerator(prefix=config.CODE_PREFIX)
composer = NotificationComposer(config.EVENT)

app = FastAPI(
    title="Amp Arena",
    default_response_class=ORJSONResponse,
)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


def payment_gateway() -> PaymentGateway:
    # one gateway per process; MockPay keeps its intents in memory
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        gateway = new_gateway()
        app.state.gateway = gateway
    return gateway


def mail_dispatcher() -> MailDispatcher:
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = new_dispatcher()
        app.state.dispatcher = dispatcher
    return dispatcher


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(payment_gateway),
    dispatcher: MailDispatcher = Depends(mail_dispatcher),
) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(
        TicketLedger(db), gateway, dispatcher, composer, codes, config.EVENT
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    config.configure_logging()
    P = 'Stripe' if PAYMENT_BACKEND == 'stripe' else 'MockPay'
    M = 'SMTP' if MAIL_BACKEND == 'smtp' else 'Console'
    print('\n' * 3)
    print('=' * 50)
    print(f'{config.EVENT.name} is starting up...')
    print(f'   - Payment Backend: {P}')
    print(f'   - Mail    Backend: {M}')
    print(f'   - Database:        {engine.url.render_as_string()}')
    print('=' * 50)
    print('\n' * 3)


@app.on_event("startup")
async def _db_init():
    await create_schema(engine, Base)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(
            max_connections=100, max_keepalive_connections=20
        ),
    )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Error responses: {"error": ...}
# ----------------------------
@app.exception_handler(TicketingError)
async def _ticketing_error(request: Request, exc: TicketingError):
    status = STATUS_FOR.get(exc.code, 500)
    if status >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return ORJSONResponse({"error": exc.message}, status_code=status)


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request,
                                    exc: RequestValidationError):
    return ORJSONResponse(
        {"error": first_error_message(exc.errors())}, status_code=400
    )


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(
        {"error": exc.detail}, status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/api/event")
async def event_info():
    ev = config.EVENT
    return {
        "name": ev.name,
        "tagline": ev.tagline,
        "date": ev.date_label,
        "time": ev.time_label,
        "venue": ev.venue,
        "address": ev.venue_address,
        "startsAt": ev.starts_at.isoformat(),
        "endsAt": ev.ends_at.isoformat(),
        "tickets": config.TICKET_KINDS,
        "currency": config.CURRENCY,
        "calendar": build_provider_links(None, ev),
    }


# ----------------------------
# Signups
# ----------------------------
@app.post("/api/signup")
async def signup(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    dispatcher: MailDispatcher = Depends(mail_dispatcher),
):
    req = parse(SignupRequest, payload)
    store = SignupStore(db)
    entry = await store.add(req.email)
    if entry is None:
        raise HTTPException(409, detail="Email already registered")
    log.info("new signup %s (id %s)", entry.email, entry.id)

    if config.NOTIFY_EMAIL and dispatcher.configured:
        notice = composer.compose_signup_notice(
            config.NOTIFY_EMAIL, entry.email, entry.id,
            datetime.now(timezone.utc),
        )
        await dispatcher.send(notice)

    return {"message": "Successfully signed up!", "id": entry.id}


@app.get("/api/count")
async def signup_count(db: AsyncSession = Depends(get_db)):
    return {"count": await SignupStore(db).count()}


@app.get("/api/signups")
async def list_signups(
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_admin),
):
    rows = await SignupStore(db).all()
    return [
        {
            "id": s.id,
            "email": s.email,
            "created_at": to_iso(s.created_at),
            "notified": bool(s.notified),
        }
        for s in rows
    ]


# ----------------------------
# Dashboard sessions
# ----------------------------
def _login(role: str, payload: dict) -> dict:
    req = parse(PasscodeRequest, payload)
    check_passcode(role, req.passcode)
    log.info("%s session issued", role)
    return {
        "success": True,
        "token": issue_token(role),
        "expiresIn": config.SESSION_TTL_SECONDS,
    }


@app.post("/api/admin-auth")
async def admin_auth(payload: dict):
    return _login(ROLE_ADMIN, payload)


@app.post("/api/competitor-admin-auth")
async def competitor_admin_auth(payload: dict):
    return _login(ROLE_COMPETITOR_ADMIN, payload)


# ----------------------------
# Tickets
# ----------------------------
def _purchase_failed(body: dict, result: PurchaseResult) -> ORJSONResponse:
    # {"success": false, "error": "<code>", "message": ...}
    return ORJSONResponse(body, status_code=STATUS_FOR.get(result.reason, 500))


@app.post("/api/tickets/purchase")
async def purchase_ticket(
    payload: dict,
    orch: PurchaseOrchestrator = Depends(get_orchestrator),
):
    req = parse(PurchaseIntentRequest, payload)
    intent = await orch.start_purchase(req)
    return {
        "success": True,
        "clientSecret": intent["client_secret"],
        "paymentIntentId": intent["id"],
        "amount": intent["amount"],
        "currency": intent["currency"],
    }


@app.post("/api/tickets/confirm")
async def confirm_ticket(
    payload: dict,
    orch: PurchaseOrchestrator = Depends(get_orchestrator),
):
    req = parse(PurchaseConfirmation, payload)
    result = await orch.confirm_purchase(req)
    out = result.to_dict()
    if not result.success:
        return _purchase_failed(out, result)
    out["message"] = (
        "Ticket already issued for this payment" if result.idempotent
        else "Ticket purchased successfully!"
    )
    return out


@app.post("/api/tickets/retrieve")
async def retrieve_tickets(
    payload: dict,
    orch: PurchaseOrchestrator = Depends(get_orchestrator),
):
    req = parse(RetrievalRequest, payload)
    result = await orch.retrieve_tickets(req.email)
    if not result.found:
        raise HTTPException(
            404, detail="No confirmed tickets found for this email address"
        )
    if not result.email_sent:
        return ORJSONResponse(
            {"error": "Failed to send tickets email",
             "details": result.error},
            status_code=502,
        )
    return {
        "success": True,
        "ticketCount": result.ticket_count,
        "message": "Tickets sent to your email successfully!",
    }


@app.get("/api/tickets/count")
async def ticket_count(db: AsyncSession = Depends(get_db)):
    return {"count": await TicketLedger(db).count(TICKET_CONFIRMED)}


@app.get("/api/tickets/by-email/{email}")
async def tickets_by_email(email: str, db: AsyncSession = Depends(get_db)):
    req = parse(RetrievalRequest, {"email": email})
    rows = await TicketLedger(db).find_by_email(req.email)
    return {"tickets": [t.as_dict() for t in rows]}


@app.get("/api/tickets")
async def list_tickets(
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_admin),
):
    if status and status not in TICKET_STATUSES:
        raise HTTPException(400, detail="Invalid status value")
    ledger = TicketLedger(db)
    rows = await ledger.list(status=status, limit=limit, offset=offset)
    return {
        "tickets": [t.as_dict() for t in rows],
        "total": await ledger.count(status),
        "limit": limit,
        "offset": offset,
    }


@app.post("/api/tickets/{code}/cancel")
async def cancel_ticket(
    code: str,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_admin),
):
    ledger = TicketLedger(db)
    if await ledger.find_by_code(code) is None:
        raise HTTPException(404, detail="Ticket not found")
    if not await ledger.mark_cancelled(code):
        raise HTTPException(409, detail="Ticket already cancelled")
    log.info("ticket %s cancelled", code)
    return {"success": True, "ticketCode": code, "status": "cancelled"}


@app.get("/api/stripe/config")
async def stripe_config():
    return {
        "publishableKey": config.STRIPE_PUBLISHABLE_KEY,
        "backend": PAYMENT_BACKEND,
    }


# ----------------------------
# Webhook endpoint (shared for Mock/Stripe)
# ----------------------------
@app.post("/api/stripe/webhook")
async def payments_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(payment_gateway),
    orch: PurchaseOrchestrator = Depends(get_orchestrator),
):
    payload = await request.body()
    headers = dict(request.headers)

    try:
        event = gateway.verify_webhook(payload, headers)
    except InvalidSignature as e:
        log.warning("webhook rejected: %s", e)
        raise HTTPException(400, detail=f"Webhook Error: {e}")

    kind = gateway.event_kind(event)  # succeeded | failed | canceled
    reference, metadata = gateway.event_payment(event)
    if kind != "succeeded":
        log.info("payment %s %s", reference, kind)
        return {"received": True, "kind": kind}
    if not reference or not metadata.get("email"):
        log.warning("succeeded event %s without email metadata", reference)
        return {"received": True, "kind": kind, "ticketCode": None}

    req = parse(PurchaseConfirmation, {
        "email": metadata["email"],
        "payment_reference": reference,
        "kind": metadata.get("ticket_type") or config.DEFAULT_TICKET_KIND,
    })
    result = await orch.confirm_purchase(req)
    out = {"received": True, "kind": kind, **result.to_dict()}
    if not result.success:
        # non-2xx so the gateway redelivers
        return _purchase_failed(out, result)
    return out


# ----------------------------
# MockPay (developer flow, mock backend only)
# ----------------------------
def _mockpay(gateway: PaymentGateway) -> MockPay:
    if not isinstance(gateway, MockPay):
        raise HTTPException(404, detail="MockPay not enabled")
    return gateway


@app.get("/mockpay/{intent_id}")
async def mockpay_screen(
    intent_id: str,
    gateway: PaymentGateway = Depends(payment_gateway),
):
    intent = _mockpay(gateway).get_intent(intent_id)
    if intent is None:
        raise HTTPException(404, detail="payment intent not found")
    return {
        "paymentIntentId": intent_id,
        "amount": intent["amount"],
        "currency": intent["currency"],
        "status": intent["status"],
        "webhook_url": config.MOCK_WEBHOOK_URL,
    }


@app.post("/mockpay/{intent_id}/emit")
async def mockpay_emit(
    intent_id: str,
    t: str = Form(...),
    gateway: PaymentGateway = Depends(payment_gateway),
):
    if t not in {"succeeded", "failed", "canceled"}:
        raise HTTPException(400, detail="invalid kind")
    mock = _mockpay(gateway)
    try:
        event = mock.settle(intent_id, t)
    except KeyError:
        raise HTTPException(404, detail="payment intent not found")
    payload, headers = mock.sign_event(event)

    client_http: httpx.AsyncClient = app.state.http
    delivered = False
    try:
        resp = await client_http.post(
            config.MOCK_WEBHOOK_URL, content=payload, headers=headers
        )
        delivered = resp.status_code < 300
    except httpx.HTTPError as e:
        # the intent stays settled; the client can still call /confirm
        log.warning("mock webhook delivery failed: %s", e)
    return {"ok": True, "kind": t, "webhookDelivered": delivered}


# ----------------------------
# Competitors
# ----------------------------
@app.post("/api/competitors")
async def register_competitor(
    payload: dict, db: AsyncSession = Depends(get_db)
):
    profile = parse(CompetitorProfile, payload).profile()
    profile.pop("status", None)
    try:
        competitor = await CompetitorStore(db).create(profile)
    except DuplicateCompetitorEmail:
        raise HTTPException(
            409, detail="Email already registered as competitor"
        )
    log.info("new competitor %s (id %s)", competitor.email, competitor.id)
    return {
        "message": "Competitor registered successfully!",
        "id": competitor.id,
    }


@app.get("/api/competitors")
async def list_competitors(
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_competitor_admin),
):
    rows = await CompetitorStore(db).list(status, limit, offset)
    return [c.as_dict() for c in rows]


@app.get("/api/competitors/{competitor_id}")
async def get_competitor(
    competitor_id: int, db: AsyncSession = Depends(get_db)
):
    competitor = await CompetitorStore(db).get(competitor_id)
    if competitor is None:
        raise HTTPException(404, detail="Competitor not found")
    return competitor.as_dict()


@app.put("/api/competitors/{competitor_id}")
async def update_competitor(
    competitor_id: int,
    payload: dict,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_competitor_admin),
):
    profile = parse(CompetitorProfile, payload).profile()
    try:
        competitor = await CompetitorStore(db).update(competitor_id, profile)
    except DuplicateCompetitorEmail:
        raise HTTPException(
            409, detail="Email already in use by another competitor"
        )
    if competitor is None:
        raise HTTPException(404, detail="Competitor not found")
    return {"message": "Competitor updated successfully"}


@app.delete("/api/competitors/{competitor_id}")
async def delete_competitor(
    competitor_id: int,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_competitor_admin),
):
    files = await CompetitorStore(db).delete(competitor_id)
    if files is None:
        raise HTTPException(404, detail="Competitor not found")
    for path in files:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)
    log.info("competitor %s deleted with %d file(s)", competitor_id,
             len(files))
    return {"message": "Competitor deleted successfully"}


async def _save_upload(f: UploadFile, path: Path) -> None:
    # streamed; gives up as soon as the file passes the size cap
    size = 0
    with path.open("wb") as out:
        while True:
            chunk = await f.read(config.UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > config.UPLOAD_MAX_BYTES:
                raise HTTPException(413, detail=f"{f.filename} is too large")
            out.write(chunk)


@app.post("/api/competitors/{competitor_id}/upload")
async def upload_competitor_files(
    competitor_id: int,
    files: List[UploadFile] = File(...),
    db: AsyncSession = Depends(get_db),
):
    if not files:
        raise HTTPException(400, detail="No files uploaded")
    if len(files) > config.UPLOAD_MAX_FILES:
        raise HTTPException(
            400, detail=f"At most {config.UPLOAD_MAX_FILES} files per upload"
        )
    store = CompetitorStore(db)
    if await store.get(competitor_id) is None:
        raise HTTPException(404, detail="Competitor not found")

    exts = [Path(f.filename or "").suffix.lower() for f in files]
    if any(ext not in config.UPLOAD_EXTENSIONS for ext in exts):
        raise HTTPException(
            400,
            detail="Invalid file type. Only PDF, ZIP, DOC, DOCX, "
                   "and image files are allowed.",
        )

    upload_dir = Path(config.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    paths: List[Path] = []
    try:
        for f, ext in zip(files, exts):
            path = upload_dir / f"{competitor_id}-{uuid.uuid4().hex}{ext}"
            paths.append(path)
            await _save_upload(f, path)
    except HTTPException:
        # all or nothing
        for path in paths:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
        raise

    saved = [p.as_posix() for p in paths]
    await store.append_files(competitor_id, saved)
    log.info("%d file(s) uploaded for competitor %s", len(saved),
             competitor_id)
    return {"message": "Files uploaded successfully", "files": saved}


# ---- Admin JSON feed: step timings ----
@app.get("/api/admin/timings")
async def api_admin_timings(_: dict = Depends(require_admin)):
    return {"timings": timings.snapshot()}
