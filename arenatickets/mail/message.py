from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str


@dataclass
class OutboundMessage:
    to: str
    subject: str
    html_body: str
    attachments: List[Attachment] = field(default_factory=list)

    def attachment_names(self) -> List[str]:
        return [a.filename for a in self.attachments]


@dataclass
class DeliveryResult:
    delivered: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
