"""
Engine configuration.

All knobs the engine reads, with the defaults used when the config file
omits them.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping


@dataclass
class EngineConfig:
    """Flattened learning, trading and limits settings."""

    # Learning
    base_learning_rate: float = 0.1
    base_confidence_threshold: float = 0.55
    epsilon: float = 0.05
    discount_factor: float = 0.9
    learning_rate_decay: float = 0.999
    autotune_interval: int = 50

    # Trading
    symbol: str = "R_100"
    base_stake: float = 1.0
    duration: int = 1
    martingale_multiplier: float = 2.0
    cooldown_seconds: float = 5.0
    min_history: int = 30
    currency: str = "USD"
    digit_decimals: int = 2

    # Limits
    max_history: int = 1000
    max_trade_history: int = 500
    max_pattern_memory: int = 1000
    max_context_memory: int = 500

    # Analysis windows
    analysis_window: int = 500
    volatility_window: int = 50
    validation_volatility_window: int = 20
    entropy_window: int = 50
    max_cycle_period: int = 20
    flush_every_trades: int = 10
    persisted_trades: int = 100

    SECTIONS = ("learning", "trading", "limits")

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "EngineConfig":
        """
        Build from the ``learning``, ``trading`` and ``limits`` sections.

        Unknown keys are ignored; values are coerced to the field type.

        Raises:
            ValueError: If a value cannot be coerced
        """
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}

        for section in cls.SECTIONS:
            for key, value in (config.get(section) or {}).items():
                if key not in known or value is None:
                    continue
                field_type = type(known[key].default)
                try:
                    values[key] = field_type(value)
                except (TypeError, ValueError) as e:
                    raise ValueError(f"Invalid value for {section}.{key}: {value!r}") from e

        engine_config = cls(**values)
        engine_config.validate()
        return engine_config

    def validate(self) -> None:
        """
        Raises:
            ValueError: If a setting is out of range
        """
        if self.base_stake <= 0:
            raise ValueError("trading.base_stake must be positive")
        if self.duration < 1:
            raise ValueError("trading.duration must be at least 1 tick")
        if self.martingale_multiplier < 1:
            raise ValueError("trading.martingale_multiplier must be >= 1")
        if not 0 < self.base_learning_rate <= 1:
            raise ValueError("learning.base_learning_rate must be in (0, 1]")
        if not 0 <= self.epsilon <= 1:
            raise ValueError("learning.epsilon must be in [0, 1]")
        if self.autotune_interval < 1:
            raise ValueError("learning.autotune_interval must be positive")
        for name in ("max_history", "max_trade_history", "max_pattern_memory", "max_context_memory"):
            if getattr(self, name) < 1:
                raise ValueError(f"limits.{name} must be positive")
