"""
Ensemble prediction and online-adaptation engine.

Feature extraction, the eight prediction models, adaptive fusion,
learning tables, pattern/context memory and the self-monitoring layer.
"""

from .config import EngineConfig
from .decision import DecisionManager, DecisionStateMachine, DecisionStatus
from .engine import TradingEngine
from .events import EngineEvent, EngineEventType
from .exceptions import (
    EngineError,
    InvalidObservationError,
    InvalidTransitionError,
    PersistenceError
)
from .models import (
    DigitClass,
    Mode,
    Strategy,
    Observation,
    ProbabilityPair,
    TradeCommand,
    TradeRecord
)
from .state import EngineState, OutcomeSummary, apply_outcome
from .tick_buffer import TickBuffer

__all__ = [
    # Engine
    "TradingEngine",
    "EngineConfig",
    "EngineState",
    "OutcomeSummary",
    "apply_outcome",
    "TickBuffer",

    # Decision lifecycle
    "DecisionManager",
    "DecisionStateMachine",
    "DecisionStatus",

    # Events
    "EngineEvent",
    "EngineEventType",

    # Exceptions
    "EngineError",
    "InvalidObservationError",
    "InvalidTransitionError",
    "PersistenceError",

    # Data models
    "DigitClass",
    "Mode",
    "Strategy",
    "Observation",
    "ProbabilityPair",
    "TradeCommand",
    "TradeRecord",
]
