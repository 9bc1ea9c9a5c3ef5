"""
Trading engine.

Turns a stream of observations into trade commands and learns from the
outcomes reported back. Single-threaded: one observation or outcome is
processed at a time and at most one decision is in flight.
"""

import random
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from .config import EngineConfig
from .decision import DecisionManager, DecisionStatus
from .events import EngineEvent, EngineEventType
from .exceptions import InvalidObservationError
from .features import entropy, extract_features, volatility
from .fusion import FusionResult, adaptive_weights, fuse
from .health import (
    LOW_HEALTH,
    adaptive_threshold,
    check_integrity,
    cooldown_ticks,
    health_score,
    mode_epsilon,
    recent_win_rate,
    select_mode,
    tune_learning_rate,
)
from .learning import deep_bucket, meta_bucket
from .models import (
    DigitClass,
    FeatureSnapshot,
    Mode,
    Observation,
    TradeCommand,
    TradeRecord,
)
from .predictors import ModelOutputs, run_models
from .risk import compute_stake, select_strategy
from .state import (
    STORAGE_KEYS,
    EngineState,
    OutcomeSummary,
    apply_outcome,
    discard_trade,
    record_trade,
)
from .tick_buffer import TickBuffer

logger = structlog.get_logger(__name__)


DEFAULT_RECENT_ENTROPY = 0.8
SMOOTHING_FACTOR = 0.7
NEUTRAL_VOLATILITY = 1.0


class TradingEngine:
    """
    Ensemble prediction and online-adaptation engine.

    Transport code feeds it with ``ingest`` and ``report_outcome`` and
    relays the returned TradeCommand to the venue.
    """

    def __init__(
        self,
        config: EngineConfig,
        store: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            store: Key-value store with ``get(key, default)`` and ``set(key, value)``
            clock: Time source in seconds
            rng: Random source for exploration
        """
        self.config = config
        self.store = store
        self.clock = clock
        self.rng = rng or random.Random()

        self.state = EngineState.create(config)
        self.buffer = TickBuffer(config.max_history)
        self.decisions = DecisionManager()

        self.running = False
        self.next_trade_time = 0.0
        self.flush_requested = False

        self._callbacks: List[Callable[[EngineEvent], None]] = []

        logger.info(
            "TradingEngine initialized",
            symbol=config.symbol,
            base_stake=config.base_stake,
            min_history=config.min_history
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self) -> None:
        self.running = True
        logger.info("Engine started")

    def stop(self) -> None:
        self.running = False
        logger.info("Engine stopped", **self.performance_summary())

    def register_callback(self, callback: Callable[[EngineEvent], None]):
        """
        Register callback for engine events.

        Args:
            callback: Function to call with each EngineEvent
        """
        self._callbacks.append(callback)
        logger.debug("Engine callback registered", callback=getattr(callback, "__name__", repr(callback)))

    def _emit(self, event_type: EngineEventType, **data) -> None:
        event = EngineEvent(event_type=event_type, data=data, timestamp=self.clock())
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "Error in engine callback",
                    callback=getattr(callback, "__name__", repr(callback)),
                    event_type=event_type.value,
                    error=str(e),
                    exc_info=True
                )

    # ========================================================================
    # Persistence
    # ========================================================================

    def load_state(self) -> None:
        """Load tables, memories and history from the store (defaults when absent)."""
        if self.store is None:
            return

        data = {key: self.store.get(key, None) for key in STORAGE_KEYS}
        self.state = EngineState.restore(data, self.config)

        logger.info(
            "Engine state loaded",
            patterns=len(self.state.pattern_memory),
            contexts=len(self.state.context_memory),
            trades=len(self.state.trade_history),
            wins=self.state.wins,
            losses=self.state.losses
        )

    def snapshot(self) -> Dict[str, Any]:
        """Serialize persisted state; safe to hand to a worker thread."""
        return self.state.snapshot(self.config.persisted_trades)

    def write_snapshot(self, snapshot: Dict[str, Any]) -> bool:
        """
        Write a snapshot to the store.

        Returns:
            True if every key was written
        """
        if self.store is None:
            return False

        ok = True
        for key, value in snapshot.items():
            if not self.store.set(key, value):
                ok = False

        if ok:
            logger.info("Engine state flushed", keys=len(snapshot))
        else:
            logger.warning("Engine state flush incomplete")
        return ok

    def flush(self) -> bool:
        """Snapshot and write synchronously."""
        self.flush_requested = False
        return self.write_snapshot(self.snapshot())

    # ========================================================================
    # Observation path
    # ========================================================================

    def load_history(self, observations: Iterable[Observation]) -> int:
        """
        Seed the buffer with historical observations.

        Returns:
            Number of observations kept
        """
        count = self.buffer.load(observations)
        logger.info("Tick history loaded", ticks=count)
        return count

    def ingest_quote(self, sequence_id: Any, price: Any) -> Optional[TradeCommand]:
        """
        Build an observation from a raw quote and ingest it.

        Malformed quotes are logged and rejected without touching state.
        """
        try:
            observation = Observation.from_price(sequence_id, price, self.config.digit_decimals)
        except InvalidObservationError as e:
            logger.warning("Rejected malformed observation", error=str(e), sequence_id=sequence_id)
            return None
        return self.ingest(observation)

    def ingest(self, observation: Observation) -> Optional[TradeCommand]:
        """
        Process one observation.

        Args:
            observation: Validated observation

        Returns:
            TradeCommand if a decision was committed, else None
        """
        previous = self.buffer.last
        if previous is not None and observation.sequence_id <= previous.sequence_id:
            logger.warning(
                "Rejected out-of-order observation",
                sequence_id=observation.sequence_id,
                last_sequence_id=previous.sequence_id
            )
            return None

        clean = True
        if previous is not None:
            clean = self._validate(observation, previous)

        # Anomalous observations are still buffered and feed the feature
        # windows. Replicated policy, not necessarily the right one.
        self.buffer.append(observation)
        self.state.observations_seen += 1

        if self.state.observations_seen % self.config.autotune_interval == 0:
            self.autotune()

        if self.state.cooldown_remaining > 0:
            self.state.cooldown_remaining -= 1
            return None

        if not clean or not self._eligible():
            return None

        ticks = cooldown_ticks(self.state.consecutive_losses, self._recent_entropy())
        if ticks:
            self.state.cooldown_remaining = ticks
            logger.warning(
                "Forced cooldown started",
                observations=ticks,
                consecutive_losses=self.state.consecutive_losses
            )
            self._emit(
                EngineEventType.COOLDOWN_STARTED,
                observations=ticks,
                consecutive_losses=self.state.consecutive_losses
            )
            return None

        self.decisions.begin()
        try:
            return self._evaluate(observation)
        except Exception:
            self.decisions.reset()
            raise

    def _validate(self, observation: Observation, previous: Observation) -> bool:
        ticks = self.buffer.window(self.config.validation_volatility_window)
        if len(self.buffer) >= self.config.validation_volatility_window:
            recent_volatility = volatility(ticks, self.config.validation_volatility_window)
        else:
            recent_volatility = NEUTRAL_VOLATILITY

        price_change = abs(observation.price - previous.price)
        clean = check_integrity(self.state.integrity, price_change, recent_volatility)
        if not clean:
            logger.warning(
                "Data anomaly detected",
                sequence_id=observation.sequence_id,
                price_change=price_change,
                threshold=recent_volatility * 5,
                integrity=round(self.state.integrity.score, 3)
            )
            self._emit(
                EngineEventType.DATA_ANOMALY,
                sequence_id=observation.sequence_id,
                price_change=price_change,
                integrity=self.state.integrity.score
            )
        return clean

    def _eligible(self) -> bool:
        return (
            self.running
            and self.decisions.is_idle
            and self.clock() >= self.next_trade_time
            and len(self.buffer) >= self.config.min_history
        )

    def _recent_entropy(self) -> float:
        if len(self.buffer) < self.config.entropy_window:
            return DEFAULT_RECENT_ENTROPY
        return entropy(self.buffer.window(self.config.entropy_window), self.config.entropy_window)

    def analyze(self):
        """
        Run feature extraction, all models and fusion on the current buffer.

        Returns:
            (features, model outputs, weights, fusion result, deep bucket)
        """
        ticks = self.buffer.window(self.config.analysis_window)
        features = extract_features(
            ticks,
            self.config.volatility_window,
            self.config.entropy_window,
            self.config.max_cycle_period
        )
        bucket = deep_bucket(features.volatility, features.trend_strength, features.streak_length)

        outputs = run_models(
            ticks,
            features,
            self.state.q_table,
            self.state.deep_q_table,
            bucket,
            self.state.pattern_memory
        )
        weights = adaptive_weights(self.state.model_performance)
        bias = self.state.context_memory.bias(
            features.volatility, features.entropy, features.streak_length
        )

        fusion = fuse(
            outputs.probabilities,
            outputs.votes,
            weights,
            bias,
            features.has_cycle,
            outputs.probabilities["cycle"],
            self.state.integrity.score
        )
        return features, outputs, weights, fusion, bucket

    def _evaluate(self, observation: Observation) -> Optional[TradeCommand]:
        features, outputs, weights, fusion, bucket = self.analyze()
        state = self.state

        epsilon = mode_epsilon(state.mode, self.config.epsilon)
        exploring = self.rng.random() < epsilon
        if exploring:
            prediction = self.rng.choice((DigitClass.ODD, DigitClass.EVEN))
            raw_confidence = 0.5
        else:
            prediction = fusion.probabilities.vote
            raw_confidence = fusion.probabilities.get(prediction)

        state.smoothed_confidence = (
            SMOOTHING_FACTOR * state.smoothed_confidence + (1 - SMOOTHING_FACTOR) * raw_confidence
        )

        report = health_score(state.trade_history)
        if report.score < LOW_HEALTH and state.health_score >= LOW_HEALTH:
            logger.warning("Reasoning health degraded", health=round(report.score, 3))
            self._emit(
                EngineEventType.HEALTH_WARNING,
                health=report.score,
                win_rate=report.recent_win_rate,
                confidence_variance=report.confidence_variance
            )
        state.health_score = report.score

        threshold = adaptive_threshold(
            self.config.base_confidence_threshold, report.score, features.entropy
        )

        if state.smoothed_confidence < threshold:
            return self._skip(
                observation, "low_confidence",
                confidence=round(state.smoothed_confidence, 4),
                threshold=round(threshold, 4)
            )

        if state.mode is Mode.PRECISION and not fusion.consensus.has_consensus:
            return self._skip(
                observation, "no_consensus",
                agreement=round(fusion.consensus.agreement, 4)
            )

        return self._commit(
            observation, features, outputs, weights, fusion, bucket,
            prediction, raw_confidence, exploring
        )

    def _skip(self, observation: Observation, reason: str, **details):
        self.decisions.skip()
        logger.debug("Trade skipped", sequence_id=observation.sequence_id, reason=reason, **details)
        self._emit(
            EngineEventType.TRADE_SKIPPED,
            sequence_id=observation.sequence_id,
            reason=reason,
            **details
        )
        return None

    def _commit(
        self,
        observation: Observation,
        features: FeatureSnapshot,
        outputs: ModelOutputs,
        weights: Dict[str, float],
        fusion: FusionResult,
        bucket: int,
        prediction: DigitClass,
        raw_confidence: float,
        exploring: bool
    ) -> TradeCommand:
        state = self.state
        strategy = select_strategy(state.meta_q_table, features.volatility, features.entropy)
        stake = compute_stake(
            self.config.base_stake,
            self.config.martingale_multiplier,
            state.consecutive_losses,
            strategy,
            state.smoothed_confidence
        )

        pattern_length = state.pattern_memory.pattern_length
        window = self.buffer.window(pattern_length)
        pattern = tuple(tick.digit_class.bit for tick in window) if len(window) == pattern_length else ()

        record = TradeRecord(
            sequence_id=observation.sequence_id,
            prediction=prediction,
            stake=stake,
            raw_confidence=raw_confidence,
            smoothed_confidence=state.smoothed_confidence,
            state=features.state,
            deep_bucket=bucket,
            meta_bucket=meta_bucket(features.volatility, features.entropy),
            strategy=strategy,
            pattern=pattern,
            volatility=features.volatility,
            entropy=features.entropy,
            streak=features.streak_length,
            model_votes=dict(outputs.votes),
            weights=dict(weights),
            consensus=fusion.consensus.agreement,
            mode=state.mode,
            health_score=state.health_score,
            data_integrity=state.integrity.score,
            consecutive_losses=state.consecutive_losses,
            timestamp=self.clock()
        )
        record_trade(state, record, self.config.max_trade_history)
        self.decisions.commit(record, self.clock())

        command = TradeCommand(
            side=prediction,
            stake=stake,
            duration_ticks=self.config.duration,
            symbol=self.config.symbol,
            currency=self.config.currency
        )

        logger.info(
            "Decision committed",
            sequence_id=observation.sequence_id,
            prediction=prediction.value,
            confidence=round(raw_confidence, 4),
            smoothed=round(state.smoothed_confidence, 4),
            stake=stake,
            strategy=strategy.value,
            mode=state.mode.value,
            consensus=round(fusion.consensus.agreement, 3),
            exploring=exploring
        )
        self._emit(
            EngineEventType.DECISION_MADE,
            sequence_id=observation.sequence_id,
            prediction=prediction.value,
            confidence=raw_confidence,
            stake=stake,
            strategy=strategy.value,
            mode=state.mode.value,
            consensus=fusion.consensus.agreement,
            exploring=exploring
        )
        return command

    # ========================================================================
    # Outcome path
    # ========================================================================

    def mark_filled(self, contract_id: str) -> None:
        """
        Record that the venue bought the committed contract.

        Raises:
            InvalidTransitionError: If no decision is committed
        """
        self.decisions.mark_open(contract_id)
        logger.info("Trade filled", contract_id=contract_id)

    def abort_pending(self, reason: str) -> bool:
        """
        Drop the in-flight decision without learning from it.

        Returns:
            True if a decision was aborted
        """
        if not self.decisions.in_flight:
            return False

        committed_at = self.decisions.committed_at
        pending_seconds = None if committed_at is None else round(self.clock() - committed_at, 3)

        record = self.decisions.release()
        if record is not None:
            discard_trade(self.state, record)

        logger.warning("Pending trade aborted", reason=reason, pending_seconds=pending_seconds)
        self._emit(EngineEventType.TRADE_ABORTED, reason=reason, pending_seconds=pending_seconds)
        return True

    def report_outcome(self, profit: float) -> Optional[OutcomeSummary]:
        """
        Learn from the result of the in-flight trade.

        Args:
            profit: Realized profit, a win when > 0

        Returns:
            OutcomeSummary, or None if nothing was in flight
        """
        if not self.decisions.in_flight or self.decisions.pending_record is None:
            logger.warning("Outcome received with no trade in flight", profit=profit)
            return None

        record = self.decisions.release()
        summary = apply_outcome(self.state, record, float(profit), self.config, self.clock())
        self.next_trade_time = self.clock() + self.config.cooldown_seconds

        if self.state.total_trades % self.config.flush_every_trades == 0:
            self.flush_requested = True

        logger.info(
            "Trade resolved",
            sequence_id=summary.sequence_id,
            result="win" if summary.won else "loss",
            profit=summary.profit,
            consecutive_losses=summary.consecutive_losses,
            win_rate=round(summary.win_rate, 4),
            learning_rate=round(summary.learning_rate, 5)
        )
        self._emit(
            EngineEventType.TRADE_RESOLVED,
            sequence_id=summary.sequence_id,
            won=summary.won,
            profit=summary.profit,
            wins=self.state.wins,
            losses=self.state.losses,
            win_rate=summary.win_rate,
            total_profit=self.state.total_profit
        )
        return summary

    # ========================================================================
    # Self-tuning
    # ========================================================================

    def autotune(self) -> None:
        """Periodic learning-rate tuning and mode selection."""
        state = self.state
        win_rate = recent_win_rate(state.trade_history)
        tuned = tune_learning_rate(
            state.learning_rate,
            self.config.base_learning_rate,
            self.config.learning_rate_decay,
            win_rate
        )
        if tuned != state.learning_rate:
            logger.info(
                "Learning rate tuned",
                old=round(state.learning_rate, 5),
                new=round(tuned, 5),
                win_rate=win_rate
            )
            state.learning_rate = tuned

        recent = self._recent_entropy()
        mode = select_mode(recent)
        if mode is not state.mode:
            logger.info("Mode switch", old_mode=state.mode.value, new_mode=mode.value, entropy=round(recent, 3))
            self._emit(
                EngineEventType.MODE_SWITCH,
                old_mode=state.mode.value,
                new_mode=mode.value,
                entropy=recent
            )
            state.mode = mode

    # ========================================================================
    # Reporting
    # ========================================================================

    @property
    def status(self) -> DecisionStatus:
        return self.decisions.status

    def performance_summary(self) -> Dict[str, Any]:
        state = self.state
        return {
            "trades": state.total_trades,
            "wins": state.wins,
            "losses": state.losses,
            "win_rate": round(state.win_rate, 4),
            "total_profit": round(state.total_profit, 2),
            "mode": state.mode.value,
            "learning_rate": round(state.learning_rate, 5),
            "health": round(state.health_score, 3),
            "integrity": round(state.integrity.score, 3),
            "patterns": len(state.pattern_memory),
            "contexts": len(state.context_memory),
            "model_accuracy": {
                name: {
                    "correct": perf.correct,
                    "total": perf.total,
                    "accuracy": round(perf.accuracy, 4) if perf.total else None,
                }
                for name, perf in state.model_performance.items()
            },
        }
