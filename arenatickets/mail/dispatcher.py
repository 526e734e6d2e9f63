from __future__ import annotations
import asyncio
import logging
from typing import Optional, Protocol

from ..errors import NotificationDeliveryFailure
from ..infra.timings import timeit
from .message import DeliveryResult, OutboundMessage

log = logging.getLogger(__name__)


class MailSender(Protocol):
    """Outbound transport. Returns a message id or raises."""

    async def deliver(
        self, message: OutboundMessage, from_address: str
    ) -> str: ...


class MailDispatcher:
    """Hands composed messages to a MailSender and never raises.

    Every failure (no sender configured, transport error, timeout) is
    logged and returned as DeliveryResult(delivered=False, error=...).
    """

    def __init__(
        self,
        sender: Optional[MailSender],
        from_address: str,
        timeout: float = 20.0,
    ) -> None:
        self.sender = sender
        self.from_address = from_address
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.sender is not None

    def _failed(self, message: OutboundMessage, reason: str) -> DeliveryResult:
        err = NotificationDeliveryFailure(reason)
        log.error("mail to %s failed: %s", message.to, err)
        return DeliveryResult(delivered=False, error=err.message)

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        if self.sender is None:
            return self._failed(message, "Email service not configured")
        try:
            async with timeit("mail.send"):
                message_id = await asyncio.wait_for(
                    self.sender.deliver(message, self.from_address),
                    timeout=self.timeout,
                )
        except asyncio.TimeoutError:
            return self._failed(
                message, f"mail send timed out after {self.timeout:g}s"
            )
        except Exception as e:
            log.debug("mail sender raised", exc_info=True)
            return self._failed(message, str(e) or e.__class__.__name__)
        log.info("mail sent to %s (%s)", message.to, message_id)
        return DeliveryResult(delivered=True, message_id=message_id)
