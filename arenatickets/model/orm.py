import json
from typing import List

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
)


Base = declarative_base()

# pending | confirmed | cancelled
TICKET_PENDING = "pending"
TICKET_CONFIRMED = "confirmed"
TICKET_CANCELLED = "cancelled"
TICKET_STATUSES = (TICKET_PENDING, TICKET_CONFIRMED, TICKET_CANCELLED)

COMPETITOR_STATUSES = ("pending", "qualified", "finalist", "eliminated")


# ----------------------------
# ORM models
# ----------------------------
class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False, default="general_admission")
    price_minor_units = Column(Integer, nullable=False)  # cents
    currency = Column(String, nullable=False, default="usd")

    # one ticket per payment; the constraint is the idempotency backstop
    payment_reference = Column(String, nullable=True, unique=True)

    status = Column(String, nullable=False, default=TICKET_PENDING)
    created_at = Column(Float, nullable=False)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_code": self.code,
            "email": self.email,
            "ticket_type": self.kind,
            "price": self.price_minor_units,
            "currency": self.currency,
            "payment_reference": self.payment_reference,
            "status": self.status,
            "created_at": self.created_at,
        }


class Signup(Base):
    __tablename__ = "signups"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    created_at = Column(Float, nullable=False)
    notified = Column(Boolean, nullable=False, default=False)


class Competitor(Base):
    __tablename__ = "competitors"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    full_name = Column(String, nullable=False)
    github_username = Column(String, nullable=True)
    twitter_username = Column(String, nullable=True)
    profile_photo_url = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    # JSON array of upload paths, in upload order
    submission_files = Column(Text, nullable=False, default="[]")
    status = Column(String, nullable=False, default="pending")
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    @property
    def files(self) -> List[str]:
        return json.loads(self.submission_files or "[]")

    @files.setter
    def files(self, value: List[str]) -> None:
        self.submission_files = json.dumps(list(value))

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "github_username": self.github_username,
            "twitter_username": self.twitter_username,
            "profile_photo_url": self.profile_photo_url,
            "bio": self.bio,
            "submission_files": self.files,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
