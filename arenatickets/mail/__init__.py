from typing import Optional

from .. import config
from ._console import ConsoleMailSender
from ._smtp import SmtpMailSender
from .dispatcher import MailDispatcher, MailSender
from .message import Attachment, DeliveryResult, OutboundMessage

BACKEND = config.MAIL_BACKEND  # 'smtp' | 'console'


def new_sender(*, backend: Optional[str] = None) -> Optional[MailSender]:
    """None when SMTP is selected but not configured; the dispatcher then
    reports every send as not delivered."""
    backend = (backend or BACKEND).lower()
    if backend == "console":
        return ConsoleMailSender()
    if not (config.EMAIL_HOST and config.EMAIL_USER and config.EMAIL_PASS):
        return None
    return SmtpMailSender(
        config.EMAIL_HOST,
        config.EMAIL_PORT,
        config.EMAIL_USER,
        config.EMAIL_PASS,
        secure=config.EMAIL_SECURE,
    )


def new_dispatcher(sender: Optional[MailSender] = None) -> MailDispatcher:
    return MailDispatcher(
        sender if sender is not None else new_sender(),
        config.EMAIL_FROM,
        timeout=config.MAIL_SEND_TIMEOUT,
    )


__all__ = [
    "Attachment",
    "BACKEND",
    "ConsoleMailSender",
    "DeliveryResult",
    "MailDispatcher",
    "MailSender",
    "OutboundMessage",
    "SmtpMailSender",
    "new_dispatcher",
    "new_sender",
]
