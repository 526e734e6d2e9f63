import asyncio
import smtplib
import ssl
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from .message import OutboundMessage


def build_mime(message: OutboundMessage, from_address: str) -> MIMEMultipart:
    mime = MIMEMultipart("mixed")
    mime["Subject"] = message.subject
    mime["From"] = from_address
    mime["To"] = message.to
    mime["Message-ID"] = make_msgid(domain=from_address.split("@")[-1])

    mime.attach(MIMEText(message.html_body, "html", "utf-8"))

    for att in message.attachments:
        maintype, _, subtype = att.mime_type.partition("/")
        part = MIMEBase(maintype, subtype or "octet-stream")
        part.set_payload(att.content)
        encoders.encode_base64(part)
        part.add_header(
            "Content-Disposition", "attachment", filename=att.filename
        )
        mime.attach(part)
    return mime


class SmtpMailSender:
    """Blocking smtplib client run in a worker thread."""

    def __init__(self, host: str, port: int, username: str, password: str,
                 secure: bool = False, timeout: float = 15.0) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.secure = secure
        self.timeout = timeout

    def _send_sync(self, message: OutboundMessage, from_address: str) -> str:
        mime = build_mime(message, from_address)
        context = ssl.create_default_context()
        if self.secure:
            server = smtplib.SMTP_SSL(
                self.host, self.port, context=context, timeout=self.timeout
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.secure:
                server.starttls(context=context)
            server.login(self.username, self.password)
            server.sendmail(from_address, [message.to], mime.as_string())
        return mime["Message-ID"]

    async def deliver(
        self, message: OutboundMessage, from_address: str
    ) -> str:
        return await asyncio.to_thread(self._send_sync, message, from_address)
