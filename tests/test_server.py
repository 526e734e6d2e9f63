"""HTTP surface, driven through httpx.ASGITransport."""

import httpx
import pytest

from arenatickets import config, server
from arenatickets.config import EVENT
from arenatickets.mail import MailDispatcher
from arenatickets.payments._mock import SIGNATURE_HEADER
from arenatickets.tickets.notify import NotificationComposer

from conftest import FixedCodes, fake_document


@pytest.fixture
async def client(engine, gateway, sender, monkeypatch, tmp_path):
    _, SessionAsync = engine

    async def _db():
        async with SessionAsync() as session:
            yield session

    app = server.app
    app.dependency_overrides[server.get_db] = _db
    app.dependency_overrides[server.payment_gateway] = lambda: gateway
    app.dependency_overrides[server.mail_dispatcher] = (
        lambda: MailDispatcher(sender, "tickets@test.local")
    )
    monkeypatch.setattr(
        server, "composer",
        NotificationComposer(EVENT, render_document=fake_document),
    )
    monkeypatch.setattr(config, "ADMIN_PASSCODE", "admin-pass")
    monkeypatch.setattr(config, "COMPETITOR_ADMIN_PASSCODE", "comp-pass")
    monkeypatch.setattr(config, "NOTIFY_EMAIL", "ops@example.com")
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport,
                                 base_url="http://test") as c:
        # /mockpay/{id}/emit posts its webhook through this client
        app.state.http = c
        yield c
    app.state.http = None
    app.dependency_overrides.clear()


async def login(client, path="/api/admin-auth", passcode="admin-pass"):
    resp = await client.post(path, json={"passcode": passcode})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


async def buy(client, email="fan@example.com", kind="general_admission"):
    resp = await client.post("/api/tickets/purchase",
                             json={"email": email, "ticketType": kind})
    assert resp.status_code == 200
    return resp.json()["paymentIntentId"]


class TestBasics:
    """Tests for health and event metadata."""

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.json() == {"ok": True}

    async def test_event(self, client):
        body = (await client.get("/api/event")).json()
        assert body["name"] == "Amp Arena"
        assert body["tickets"]["general_admission"] == 2000
        assert set(body["calendar"]) == {"google", "outlook", "yahoo"}


class TestSignups:
    """Tests for the signup endpoints."""

    async def test_signup_notifies_and_counts(self, client, sender):
        resp = await client.post("/api/signup",
                                 json={"email": "fan@example.com"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Successfully signed up!"
        assert sender.sent[0].to == "ops@example.com"

        assert (await client.get("/api/count")).json() == {"count": 1}

        headers = await login(client)
        rows = (await client.get("/api/signups", headers=headers)).json()
        assert rows[0]["email"] == "fan@example.com"
        # the ops notice does not count as notifying the fan
        assert rows[0]["notified"] is False

    async def test_duplicate_signup(self, client):
        await client.post("/api/signup", json={"email": "fan@example.com"})
        resp = await client.post("/api/signup",
                                 json={"email": "fan@example.com"})
        assert resp.status_code == 409
        assert resp.json() == {"error": "Email already registered"}

    async def test_invalid_email(self, client):
        resp = await client.post("/api/signup", json={"email": "nope"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Valid email address required"}

    async def test_malformed_body(self, client):
        resp = await client.post(
            "/api/signup", content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert "error" in resp.json()


class TestDashboardAuth:
    """Tests for passcode login and bearer tokens."""

    async def test_token_grants_access(self, client):
        headers = await login(client)
        resp = await client.get("/api/signups", headers=headers)
        assert resp.status_code == 200

    async def test_missing_token(self, client):
        resp = await client.get("/api/signups")
        assert resp.status_code == 401

    async def test_wrong_passcode(self, client):
        resp = await client.post("/api/admin-auth",
                                 json={"passcode": "guess"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid passcode"}

    async def test_passcode_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(config, "ADMIN_PASSCODE", "")
        resp = await client.post("/api/admin-auth",
                                 json={"passcode": "anything"})
        assert resp.status_code == 500

    async def test_token_is_role_scoped(self, client):
        headers = await login(client, "/api/competitor-admin-auth",
                              "comp-pass")
        resp = await client.get("/api/signups", headers=headers)
        assert resp.status_code == 401

    async def test_response_does_not_echo_passcode(self, client):
        resp = await client.post("/api/admin-auth",
                                 json={"passcode": "admin-pass"})
        assert "admin-pass" not in resp.text
        assert resp.json()["expiresIn"] == config.SESSION_TTL_SECONDS


class TestTicketFlow:
    """Tests for purchase, confirmation and retrieval."""

    async def test_purchase_returns_intent(self, client):
        resp = await client.post("/api/tickets/purchase",
                                 json={"email": "fan@example.com"})
        body = resp.json()
        assert body["success"] is True
        assert body["amount"] == 2000
        assert body["currency"] == "usd"
        assert body["clientSecret"].startswith(body["paymentIntentId"])

    async def test_unknown_ticket_type(self, client):
        resp = await client.post(
            "/api/tickets/purchase",
            json={"email": "fan@example.com", "ticketType": "backstage"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid ticket type"}

    async def test_confirm_unpaid_is_402(self, client):
        intent_id = await buy(client)
        resp = await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": intent_id,
        })
        assert resp.status_code == 402
        assert resp.json() == {
            "success": False,
            "error": "payment-not-confirmed",
            "message": "Payment not completed",
        }

    async def test_code_exhaustion_is_500(self, client, gateway,
                                          monkeypatch):
        """Ten collisions give success false and the code-exhaustion code."""
        codes = FixedCodes("AMP-1-AAAAAAAA")
        monkeypatch.setattr(server, "codes", codes)
        first = await buy(client)
        gateway.settle(first, "succeeded")
        resp = await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": first,
        })
        assert resp.json()["ticketCode"] == "AMP-1-AAAAAAAA"

        second = await buy(client, email="other@example.com")
        gateway.settle(second, "succeeded")
        resp = await client.post("/api/tickets/confirm", json={
            "email": "other@example.com", "paymentIntentId": second,
        })
        assert resp.status_code == 500
        assert resp.json() == {
            "success": False,
            "error": "code-exhaustion",
            "message": "No unique ticket code after 10 attempts",
        }
        assert codes.calls == 11
        tickets = (await client.get(
            "/api/tickets/by-email/other@example.com"
        )).json()["tickets"]
        assert tickets == []

    async def test_webhook_for_unverified_payment(self, client, gateway):
        """A signed success event the gateway cannot confirm is a 402."""
        intent_id = await buy(client)
        event = {
            "type": "payment_intent.succeeded",
            "payment_intent_id": intent_id,
            "metadata": {"email": "fan@example.com",
                         "ticket_type": "general_admission"},
        }
        payload, headers = gateway.sign_event(event)
        resp = await client.post("/api/stripe/webhook", content=payload,
                                 headers=headers)
        assert resp.status_code == 402
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "payment-not-confirmed"

    async def test_confirm_requires_reference(self, client):
        resp = await client.post("/api/tickets/confirm",
                                 json={"email": "fan@example.com"})
        assert resp.status_code == 400

    async def test_price_mismatch(self, client, gateway):
        intent_id = await buy(client)
        gateway.settle(intent_id, "succeeded")
        resp = await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": intent_id,
            "price": 1,
        })
        assert resp.status_code == 400
        assert resp.json() == {"error": "Price does not match ticket type"}

    async def test_confirm_then_replay(self, client, gateway, sender):
        intent_id = await buy(client)
        gateway.settle(intent_id, "succeeded")
        payload = {"email": "fan@example.com", "paymentIntentId": intent_id,
                   "ticketType": "general_admission", "price": 2000}

        first = (await client.post("/api/tickets/confirm",
                                   json=payload)).json()
        second = (await client.post("/api/tickets/confirm",
                                    json=payload)).json()

        assert first["success"] and first["emailSent"]
        assert first["message"] == "Ticket purchased successfully!"
        assert second["ticketCode"] == first["ticketCode"]
        assert second["idempotent"] is True
        assert second["emailSent"] is False
        assert len(sender.sent) == 1
        assert (await client.get("/api/tickets/count")).json() == \
            {"count": 1}

    async def test_mockpay_webhook_issues_ticket(self, client, sender):
        """Settling through MockPay posts a signed webhook that confirms."""
        intent_id = await buy(client, kind="vip")
        screen = (await client.get(f"/mockpay/{intent_id}")).json()
        assert screen["amount"] == 5000

        resp = await client.post(f"/mockpay/{intent_id}/emit",
                                 data={"t": "succeeded"})
        assert resp.json()["webhookDelivered"] is True
        assert len(sender.sent) == 1

        tickets = (await client.get(
            "/api/tickets/by-email/fan@example.com"
        )).json()["tickets"]
        assert len(tickets) == 1
        assert tickets[0]["ticket_type"] == "vip"
        assert tickets[0]["payment_reference"] == intent_id

        # the client-side confirmation after the webhook is a replay
        resp = await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": intent_id,
            "ticketType": "vip",
        })
        assert resp.json()["idempotent"] is True
        assert resp.json()["ticketCode"] == tickets[0]["ticket_code"]

    async def test_failed_payment_webhook_issues_nothing(self, client):
        intent_id = await buy(client)
        await client.post(f"/mockpay/{intent_id}/emit", data={"t": "failed"})
        tickets = (await client.get(
            "/api/tickets/by-email/fan@example.com"
        )).json()["tickets"]
        assert tickets == []

    async def test_webhook_bad_signature(self, client):
        resp = await client.post(
            "/api/stripe/webhook", content=b'{"type": "x"}',
            headers={SIGNATURE_HEADER: "forged"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Webhook Error: Invalid signature"}

    async def test_retrieve(self, client, gateway, sender):
        resp = await client.post("/api/tickets/retrieve",
                                 json={"email": "fan@example.com"})
        assert resp.status_code == 404

        intent_id = await buy(client)
        gateway.settle(intent_id, "succeeded")
        await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": intent_id,
        })
        resp = await client.post("/api/tickets/retrieve",
                                 json={"email": "fan@example.com"})
        assert resp.status_code == 200
        assert resp.json()["ticketCount"] == 1
        assert sender.sent[-1].subject == "Your Amp Arena Tickets Retrieved"

    async def test_retrieve_mail_failure_is_502(self, client, gateway,
                                                sender):
        intent_id = await buy(client)
        gateway.settle(intent_id, "succeeded")
        await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": intent_id,
        })
        sender.fail = True
        resp = await client.post("/api/tickets/retrieve",
                                 json={"email": "fan@example.com"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "Failed to send tickets email"


class TestTicketAdmin:
    """Tests for the admin ticket endpoints."""

    async def _issue(self, client, gateway):
        intent_id = await buy(client)
        gateway.settle(intent_id, "succeeded")
        resp = await client.post("/api/tickets/confirm", json={
            "email": "fan@example.com", "paymentIntentId": intent_id,
        })
        return resp.json()["ticketCode"]

    async def test_list_and_cancel(self, client, gateway):
        code = await self._issue(client, gateway)
        headers = await login(client)

        listing = (await client.get("/api/tickets", headers=headers)).json()
        assert listing["total"] == 1
        assert listing["tickets"][0]["ticket_code"] == code

        resp = await client.post(f"/api/tickets/{code}/cancel",
                                 headers=headers)
        assert resp.json()["status"] == "cancelled"
        again = await client.post(f"/api/tickets/{code}/cancel",
                                  headers=headers)
        assert again.status_code == 409
        missing = await client.post("/api/tickets/AMP-0-00000000/cancel",
                                    headers=headers)
        assert missing.status_code == 404
        assert (await client.get("/api/tickets/count")).json() == \
            {"count": 0}

    async def test_list_requires_admin(self, client):
        resp = await client.get("/api/tickets")
        assert resp.status_code == 401

    async def test_timings(self, client, gateway):
        await self._issue(client, gateway)
        headers = await login(client)
        body = (await client.get("/api/admin/timings",
                                 headers=headers)).json()
        kinds = {row["kind"] for row in body["timings"]}
        assert "ledger.insert" in kinds


class TestCompetitors:
    """Tests for the competitor endpoints."""

    PROFILE = {"email": "dev@example.com", "full_name": "Dev One",
               "github_username": "devone", "bio": ""}

    async def _register(self, client):
        resp = await client.post("/api/competitors", json=self.PROFILE)
        assert resp.status_code == 200
        return resp.json()["id"]

    async def test_register_and_read(self, client):
        cid = await self._register(client)
        body = (await client.get(f"/api/competitors/{cid}")).json()
        assert body["full_name"] == "Dev One"
        assert body["bio"] is None
        assert body["status"] == "pending"

        dup = await client.post("/api/competitors", json=self.PROFILE)
        assert dup.status_code == 409

    async def test_full_name_required(self, client):
        resp = await client.post("/api/competitors",
                                 json={"email": "dev@example.com"})
        assert resp.status_code == 400

    async def test_admin_update_and_delete(self, client):
        cid = await self._register(client)
        headers = await login(client, "/api/competitor-admin-auth",
                              "comp-pass")

        listing = await client.get("/api/competitors", headers=headers)
        assert [c["id"] for c in listing.json()] == [cid]

        resp = await client.put(
            f"/api/competitors/{cid}", headers=headers,
            json=dict(self.PROFILE, status="finalist"),
        )
        assert resp.status_code == 200
        bad = await client.put(
            f"/api/competitors/{cid}", headers=headers,
            json=dict(self.PROFILE, status="champion"),
        )
        assert bad.status_code == 400

        resp = await client.delete(f"/api/competitors/{cid}",
                                   headers=headers)
        assert resp.status_code == 200
        assert (await client.get(f"/api/competitors/{cid}")).status_code == \
            404

    async def test_list_requires_competitor_admin(self, client):
        assert (await client.get("/api/competitors")).status_code == 401

    async def test_upload(self, client, tmp_path):
        cid = await self._register(client)
        resp = await client.post(
            f"/api/competitors/{cid}/upload",
            files=[
                ("files", ("deck.pdf", b"%PDF-1.4", "application/pdf")),
                ("files", ("code.zip", b"PK\x03\x04", "application/zip")),
            ],
        )
        assert resp.status_code == 200
        paths = resp.json()["files"]
        assert len(paths) == 2
        assert all(p.startswith(str(tmp_path / "uploads")) for p in paths)

        body = (await client.get(f"/api/competitors/{cid}")).json()
        assert body["submission_files"] == paths

    async def test_upload_rejects_file_type(self, client):
        cid = await self._register(client)
        resp = await client.post(
            f"/api/competitors/{cid}/upload",
            files=[("files", ("run.exe", b"MZ", "application/octet-stream"))],
        )
        assert resp.status_code == 400

    async def test_upload_unknown_competitor(self, client):
        resp = await client.post(
            "/api/competitors/999/upload",
            files=[("files", ("deck.pdf", b"%PDF", "application/pdf"))],
        )
        assert resp.status_code == 404

    async def test_upload_too_large(self, client, monkeypatch, tmp_path):
        """An oversized file is refused and nothing from the batch is kept."""
        monkeypatch.setattr(config, "UPLOAD_MAX_BYTES", 1000)
        monkeypatch.setattr(config, "UPLOAD_CHUNK_BYTES", 256)
        cid = await self._register(client)
        resp = await client.post(
            f"/api/competitors/{cid}/upload",
            files=[
                ("files", ("deck.pdf", b"x" * 1000, "application/pdf")),
                ("files", ("code.zip", b"x" * 5000, "application/zip")),
            ],
        )
        assert resp.status_code == 413
        assert resp.json() == {"error": "code.zip is too large"}
        assert list((tmp_path / "uploads").iterdir()) == []

        body = (await client.get(f"/api/competitors/{cid}")).json()
        assert body["submission_files"] == []
