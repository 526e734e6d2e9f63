from .orm import Base, Ticket, Signup, Competitor
from .ledger import TicketLedger
from .signups import SignupStore
from .competitors import CompetitorStore, DuplicateCompetitorEmail

__all__ = [
    "Base",
    "Ticket",
    "Signup",
    "Competitor",
    "TicketLedger",
    "SignupStore",
    "CompetitorStore",
    "DuplicateCompetitorEmail",
]
