"""
Engine events delivered to registered observers.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class EngineEventType(Enum):
    DECISION_MADE = "DECISION_MADE"
    TRADE_SKIPPED = "TRADE_SKIPPED"
    TRADE_RESOLVED = "TRADE_RESOLVED"
    TRADE_ABORTED = "TRADE_ABORTED"
    MODE_SWITCH = "MODE_SWITCH"
    HEALTH_WARNING = "HEALTH_WARNING"
    COOLDOWN_STARTED = "COOLDOWN_STARTED"
    DATA_ANOMALY = "DATA_ANOMALY"


@dataclass(frozen=True)
class EngineEvent:
    event_type: EngineEventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
