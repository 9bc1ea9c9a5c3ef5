"""
Trading session: venue event dispatch and engine wiring.
"""

from .session import SessionSettings, TradingSession

__all__ = [
    "SessionSettings",
    "TradingSession",
]
