"""
Venue transport for the Deriv websocket API.
"""

from .client import DerivClient
from .events import (
    Authorized,
    BalanceUpdated,
    ContractResolved,
    HistoryReceived,
    ObservationReceived,
    ProposalReady,
    TradeFilled,
    VenueErrorEvent,
    VenueEvent
)
from .exceptions import (
    VenueError,
    VenueAPIError,
    TransientError,
    PermanentError,
    ConnectionError
)
from .parser import DerivMessageParser

__all__ = [
    # Client
    "DerivClient",
    "DerivMessageParser",

    # Events
    "Authorized",
    "BalanceUpdated",
    "ContractResolved",
    "HistoryReceived",
    "ObservationReceived",
    "ProposalReady",
    "TradeFilled",
    "VenueErrorEvent",
    "VenueEvent",

    # Exceptions
    "VenueError",
    "VenueAPIError",
    "TransientError",
    "PermanentError",
    "ConnectionError",
]
