import logging
import uuid

from .message import OutboundMessage

log = logging.getLogger(__name__)


class ConsoleMailSender:
    """Sending disabled: log what would have been sent."""

    async def deliver(
        self, message: OutboundMessage, from_address: str
    ) -> str:
        log.info(
            "Email sending disabled. Would send %r from %s to %s "
            "with attachments %s",
            message.subject, from_address, message.to,
            message.attachment_names(),
        )
        return f"<console-{uuid.uuid4().hex}@localhost>"
