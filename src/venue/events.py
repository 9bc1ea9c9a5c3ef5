"""
Typed venue events.

Every message the venue sends is parsed into exactly one of these
variants (or ignored). The trading session dispatches on the type.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

from ..engine.models import Observation


@dataclass(frozen=True)
class Authorized:
    balance: float
    currency: str
    login_id: str


@dataclass(frozen=True)
class BalanceUpdated:
    balance: float
    currency: str = ""


@dataclass(frozen=True)
class HistoryReceived:
    observations: List[Observation] = field(default_factory=list)
    skipped: int = 0


@dataclass(frozen=True)
class ObservationReceived:
    observation: Observation


@dataclass(frozen=True)
class ProposalReady:
    proposal_id: str
    ask_price: float
    contract_type: Optional[str] = None


@dataclass(frozen=True)
class TradeFilled:
    contract_id: str
    buy_price: float


@dataclass(frozen=True)
class ContractResolved:
    contract_id: str
    profit: float
    payout: float = 0.0
    subscription_id: Optional[str] = None


@dataclass(frozen=True)
class VenueErrorEvent:
    """Any message carrying an ``error`` object."""
    message: str
    code: Optional[str] = None
    msg_type: Optional[str] = None


VenueEvent = Union[
    Authorized,
    BalanceUpdated,
    HistoryReceived,
    ObservationReceived,
    ProposalReady,
    TradeFilled,
    ContractResolved,
    VenueErrorEvent,
]
