"""Mail dispatch."""

import asyncio
import base64

from arenatickets.mail import (
    Attachment, ConsoleMailSender, MailDispatcher, OutboundMessage, new_sender
)
from arenatickets.mail._smtp import build_mime

from conftest import RecordingSender


def make_message(**kw) -> OutboundMessage:
    fields = dict(
        to="fan@example.com",
        subject="Your ticket",
        html_body="<p>hi</p>",
        attachments=[Attachment("t.pdf", b"%PDF-1.4", "application/pdf")],
    )
    fields.update(kw)
    return OutboundMessage(**fields)


class SlowSender:
    async def deliver(self, message, from_address):
        await asyncio.sleep(5)
        return "never"


class TestMailDispatcher:
    """Tests for MailDispatcher.send."""

    async def test_delivered(self):
        sender = RecordingSender()
        result = await MailDispatcher(sender, "from@test").send(make_message())
        assert result.delivered
        assert result.message_id == "<1@test>"
        assert result.error is None
        assert sender.sent[0].subject == "Your ticket"

    async def test_sender_error_is_reported_not_raised(self):
        dispatcher = MailDispatcher(RecordingSender(fail=True), "from@test")
        result = await dispatcher.send(make_message())
        assert not result.delivered
        assert "SMTP connection refused" in result.error

    async def test_timeout(self):
        dispatcher = MailDispatcher(SlowSender(), "from@test", timeout=0.05)
        result = await dispatcher.send(make_message())
        assert not result.delivered
        assert "timed out" in result.error

    async def test_not_configured(self):
        dispatcher = MailDispatcher(None, "from@test")
        assert not dispatcher.configured
        result = await dispatcher.send(make_message())
        assert not result.delivered
        assert result.error == "Email service not configured"

    async def test_console_sender(self):
        result = await MailDispatcher(
            ConsoleMailSender(), "from@test"
        ).send(make_message())
        assert result.delivered
        assert result.message_id.startswith("<console-")


class TestSenderFactory:
    """Tests for new_sender."""

    def test_console_backend(self):
        assert isinstance(new_sender(backend="console"), ConsoleMailSender)

    def test_smtp_without_credentials(self, monkeypatch):
        from arenatickets import config
        monkeypatch.setattr(config, "EMAIL_HOST", "")
        assert new_sender(backend="smtp") is None


class TestBuildMime:
    """Tests for the SMTP MIME builder."""

    def test_attachments_and_headers(self):
        mime = build_mime(make_message(), "tickets@amparena.com")
        assert mime["From"] == "tickets@amparena.com"
        assert mime["To"] == "fan@example.com"
        assert mime["Message-ID"].endswith("@amparena.com>")
        parts = mime.get_payload()
        assert parts[0].get_content_type() == "text/html"
        att = parts[1]
        assert att.get_filename() == "t.pdf"
        assert att.get_content_type() == "application/pdf"
        assert base64.b64decode(att.get_payload()) == b"%PDF-1.4"
