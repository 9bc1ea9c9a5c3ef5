"""
Engine state and the pure functions that update it.

EngineState holds every value the engine learns or counts. The update
functions below take the state by reference so they can be exercised
without a running engine.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import structlog

from .config import EngineConfig
from .learning import (
    DeepQTable,
    MetaQTable,
    QTable,
    decay_learning_rate,
    update_deep_q,
    update_meta_q,
    update_shallow_q,
)
from .memory import ContextMemory, ContextSnapshot, PatternMemory
from .models import (
    MODEL_NAMES,
    DataIntegrity,
    DigitClass,
    Mode,
    ModelState,
    TradeRecord,
)

logger = structlog.get_logger(__name__)


# Persistence keys
KEY_QTABLES = "qtables"
KEY_DEEP_QTABLES = "deepQtables"
KEY_META_QTABLES = "metaQtables"
KEY_PATTERN_MEMORY = "patternMemory"
KEY_CONTEXT_MEMORY = "contextMemory"
KEY_MODEL_PERFORMANCE = "modelPerformance"
KEY_TRADE_HISTORY = "tradeHistory"
KEY_ENGINE_STATS = "engineStats"

STORAGE_KEYS = (
    KEY_QTABLES,
    KEY_DEEP_QTABLES,
    KEY_META_QTABLES,
    KEY_PATTERN_MEMORY,
    KEY_CONTEXT_MEMORY,
    KEY_MODEL_PERFORMANCE,
    KEY_TRADE_HISTORY,
    KEY_ENGINE_STATS,
)


@dataclass
class EngineState:
    """Counters, tables and memories of one engine instance."""
    q_table: QTable
    deep_q_table: DeepQTable
    meta_q_table: MetaQTable
    pattern_memory: PatternMemory
    context_memory: ContextMemory
    learning_rate: float
    model_performance: Dict[str, ModelState] = field(
        default_factory=lambda: {name: ModelState() for name in MODEL_NAMES}
    )
    trade_history: List[TradeRecord] = field(default_factory=list)
    wins: int = 0
    losses: int = 0
    consecutive_losses: int = 0
    total_profit: float = 0.0
    mode: Mode = Mode.BALANCED
    smoothed_confidence: float = 0.5
    health_score: float = 1.0
    integrity: DataIntegrity = field(default_factory=DataIntegrity)
    cooldown_remaining: int = 0
    observations_seen: int = 0

    @classmethod
    def create(cls, config: EngineConfig) -> "EngineState":
        """Fresh state with default tables."""
        return cls(
            q_table=QTable(),
            deep_q_table=DeepQTable(),
            meta_q_table=MetaQTable(),
            pattern_memory=PatternMemory(config.max_pattern_memory),
            context_memory=ContextMemory(config.max_context_memory),
            learning_rate=config.base_learning_rate,
        )

    @property
    def total_trades(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades if self.total_trades else 0.0

    def snapshot(self, persisted_trades: int = 100) -> Dict[str, Any]:
        """
        Serialize everything that is persisted.

        Returns plain JSON-compatible values, so the result can be written
        from another thread while the engine keeps mutating its state.
        """
        return {
            KEY_QTABLES: self.q_table.to_dict(),
            KEY_DEEP_QTABLES: self.deep_q_table.to_dict(),
            KEY_META_QTABLES: self.meta_q_table.to_dict(),
            KEY_PATTERN_MEMORY: self.pattern_memory.to_list(),
            KEY_CONTEXT_MEMORY: self.context_memory.to_list(),
            KEY_MODEL_PERFORMANCE: {
                name: {"correct": perf.correct, "total": perf.total}
                for name, perf in self.model_performance.items()
            },
            KEY_TRADE_HISTORY: [
                record.to_dict() for record in self.trade_history[-persisted_trades:]
            ],
            KEY_ENGINE_STATS: {
                "wins": self.wins,
                "losses": self.losses,
                "consecutive_losses": self.consecutive_losses,
                "total_profit": self.total_profit,
                "learning_rate": self.learning_rate,
            },
        }

    @classmethod
    def restore(cls, data: Mapping[str, Any], config: EngineConfig) -> "EngineState":
        """
        Rebuild state from persisted values.

        Absent or malformed values fall back to defaults.
        """
        state = cls.create(config)

        state.q_table = QTable.from_dict(data.get(KEY_QTABLES))
        state.deep_q_table = DeepQTable.from_dict(data.get(KEY_DEEP_QTABLES))
        state.meta_q_table = MetaQTable.from_dict(data.get(KEY_META_QTABLES))
        state.pattern_memory = PatternMemory.from_list(
            data.get(KEY_PATTERN_MEMORY), config.max_pattern_memory
        )
        state.context_memory = ContextMemory.from_list(
            data.get(KEY_CONTEXT_MEMORY), config.max_context_memory
        )
        state.model_performance = _restore_performance(data.get(KEY_MODEL_PERFORMANCE))
        state.trade_history = _restore_history(
            data.get(KEY_TRADE_HISTORY), config.max_trade_history
        )
        _restore_stats(state, data.get(KEY_ENGINE_STATS))

        return state


def _restore_performance(data: Any) -> Dict[str, ModelState]:
    performance = {name: ModelState() for name in MODEL_NAMES}
    if not isinstance(data, dict):
        return performance

    for name in MODEL_NAMES:
        entry = data.get(name)
        if not isinstance(entry, dict):
            continue
        try:
            correct = int(entry.get("correct", 0))
            total = int(entry.get("total", 0))
        except (TypeError, ValueError):
            logger.warning("Skipping malformed model performance", model=name)
            continue
        if 0 <= correct <= total:
            performance[name] = ModelState(correct=correct, total=total)

    return performance


def _restore_history(data: Any, limit: int) -> List[TradeRecord]:
    if not isinstance(data, list):
        return []

    history = []
    for item in data:
        try:
            history.append(TradeRecord.from_dict(item))
        except (KeyError, ValueError, TypeError, AttributeError):
            logger.warning("Skipping malformed trade record")
    return history[-limit:]


def _restore_stats(state: EngineState, data: Any) -> None:
    if not isinstance(data, dict):
        return
    try:
        state.wins = max(0, int(data.get("wins", 0)))
        state.losses = max(0, int(data.get("losses", 0)))
        state.consecutive_losses = max(0, int(data.get("consecutive_losses", 0)))
        state.total_profit = float(data.get("total_profit", 0.0))
        state.learning_rate = float(data.get("learning_rate", state.learning_rate))
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed engine stats")


# ============================================================================
# Update functions
# ============================================================================

@dataclass(frozen=True)
class OutcomeSummary:
    """What one resolved trade changed."""
    sequence_id: int
    prediction: DigitClass
    won: bool
    profit: float
    reward: float
    shallow_value: float
    deep_value: float
    meta_value: float
    learning_rate: float
    consecutive_losses: int
    win_rate: float


def record_trade(state: EngineState, record: TradeRecord, limit: int) -> None:
    """Append a committed trade, keeping the newest ``limit`` records."""
    state.trade_history.append(record)
    if len(state.trade_history) > limit:
        del state.trade_history[:len(state.trade_history) - limit]


def discard_trade(state: EngineState, record: TradeRecord) -> bool:
    """Remove an unresolved record whose trade never happened."""
    for index in range(len(state.trade_history) - 1, -1, -1):
        if state.trade_history[index] is record:
            del state.trade_history[index]
            return True
    return False


def update_counters(state: EngineState, profit: float) -> bool:
    """
    Update win/loss counters.

    Returns:
        True if the trade won (profit > 0)
    """
    won = profit > 0
    if won:
        state.wins += 1
        state.consecutive_losses = 0
    else:
        state.losses += 1
        state.consecutive_losses += 1
    state.total_profit += profit
    return won


def update_model_performance(
    performance: Dict[str, ModelState],
    votes: Mapping[str, DigitClass],
    winning_side: DigitClass
) -> None:
    """Score each model's vote against the side that would have won."""
    for name, vote in votes.items():
        performance.setdefault(name, ModelState()).record(vote is winning_side)


def apply_outcome(
    state: EngineState,
    record: TradeRecord,
    profit: float,
    config: EngineConfig,
    timestamp: Optional[float] = None
) -> OutcomeSummary:
    """
    Apply a trade result to every learning structure.

    Updates, in order: counters, shallow Q-table, deep Q-table, learning
    rate decay, per-model accuracy, context memory, meta-strategy table and
    pattern memory. Each structure receives exactly one update.

    Args:
        state: Engine state, mutated in place
        record: The trade that resolved
        profit: Realized profit (win if > 0)
        config: Engine configuration
        timestamp: Context timestamp (defaults to the record's)

    Returns:
        OutcomeSummary describing the update
    """
    record.profit = profit
    won = update_counters(state, profit)
    reward = 1.0 if won else -1.0
    winning_side = record.prediction if won else record.prediction.other

    shallow_value = update_shallow_q(
        state.q_table, record.state, record.prediction, reward, state.learning_rate
    )
    deep_value = update_deep_q(
        state.deep_q_table,
        record.deep_bucket,
        record.prediction,
        reward,
        state.learning_rate,
        config.discount_factor
    )
    state.learning_rate = decay_learning_rate(state.learning_rate, config.learning_rate_decay)

    update_model_performance(state.model_performance, record.model_votes, winning_side)

    state.context_memory.append(ContextSnapshot(
        volatility=record.volatility,
        entropy=record.entropy,
        streak=record.streak,
        confidence=record.raw_confidence,
        predicted_side=record.prediction,
        result="win" if won else "loss",
        timestamp=timestamp if timestamp is not None else record.timestamp
    ))

    meta_value = update_meta_q(state.meta_q_table, record.meta_bucket, record.strategy, reward)

    if len(record.pattern) == state.pattern_memory.pattern_length:
        state.pattern_memory.record(record.pattern, record.prediction, won)

    return OutcomeSummary(
        sequence_id=record.sequence_id,
        prediction=record.prediction,
        won=won,
        profit=profit,
        reward=reward,
        shallow_value=shallow_value,
        deep_value=deep_value,
        meta_value=meta_value,
        learning_rate=state.learning_rate,
        consecutive_losses=state.consecutive_losses,
        win_rate=state.win_rate
    )
