"""
Unit tests for the decision lifecycle.
"""

import pytest

from src.engine.decision import DecisionManager, DecisionStateMachine, DecisionStatus
from src.engine.exceptions import InvalidTransitionError
from src.engine.models import DigitClass, Mode, Strategy, TradeRecord


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def decision_manager():
    """Create Decision Manager instance."""
    return DecisionManager()


@pytest.fixture
def sample_record():
    """Create sample trade record."""
    return TradeRecord(
        sequence_id=1700000000,
        prediction=DigitClass.ODD,
        stake=1.0,
        raw_confidence=0.62,
        smoothed_confidence=0.6,
        state=DigitClass.EVEN,
        deep_bucket=3,
        meta_bucket=1,
        strategy=Strategy.BALANCED,
        pattern=(1, 0, 1, 1, 0),
        volatility=0.2,
        entropy=0.85,
        streak=2,
        model_votes={"stat": DigitClass.ODD},
        weights={"stat": 1.0},
        consensus=0.75,
        mode=Mode.BALANCED,
        health_score=1.0,
        data_integrity=1.0,
        consecutive_losses=0,
        timestamp=1700000000.0
    )


# ============================================================================
# DecisionStateMachine Tests
# ============================================================================

@pytest.mark.unit
def test_valid_transitions():
    """Test valid state transitions."""
    # IDLE → EVALUATING
    assert DecisionStateMachine.can_transition(DecisionStatus.IDLE, DecisionStatus.EVALUATING)

    # EVALUATING → SKIPPED / COMMITTED
    assert DecisionStateMachine.can_transition(DecisionStatus.EVALUATING, DecisionStatus.SKIPPED)
    assert DecisionStateMachine.can_transition(DecisionStatus.EVALUATING, DecisionStatus.COMMITTED)

    # SKIPPED → IDLE
    assert DecisionStateMachine.can_transition(DecisionStatus.SKIPPED, DecisionStatus.IDLE)

    # COMMITTED → OPEN / IDLE
    assert DecisionStateMachine.can_transition(DecisionStatus.COMMITTED, DecisionStatus.OPEN)
    assert DecisionStateMachine.can_transition(DecisionStatus.COMMITTED, DecisionStatus.IDLE)

    # OPEN → IDLE
    assert DecisionStateMachine.can_transition(DecisionStatus.OPEN, DecisionStatus.IDLE)


@pytest.mark.unit
def test_invalid_transitions():
    """Test invalid state transitions."""
    # A second decision cannot start while one is in flight
    assert not DecisionStateMachine.can_transition(DecisionStatus.COMMITTED, DecisionStatus.EVALUATING)
    assert not DecisionStateMachine.can_transition(DecisionStatus.OPEN, DecisionStatus.EVALUATING)

    # Cannot commit without evaluating
    assert not DecisionStateMachine.can_transition(DecisionStatus.IDLE, DecisionStatus.COMMITTED)

    # Cannot reopen a skipped decision
    assert not DecisionStateMachine.can_transition(DecisionStatus.SKIPPED, DecisionStatus.COMMITTED)


@pytest.mark.unit
def test_validate_transition_raises_exception():
    """Test validate_transition raises exception for invalid transitions."""
    with pytest.raises(InvalidTransitionError):
        DecisionStateMachine.validate_transition(DecisionStatus.OPEN, DecisionStatus.COMMITTED)


@pytest.mark.unit
def test_in_flight_statuses():
    """Test only committed and open decisions are in flight."""
    assert DecisionStateMachine.is_in_flight(DecisionStatus.COMMITTED)
    assert DecisionStateMachine.is_in_flight(DecisionStatus.OPEN)
    assert not DecisionStateMachine.is_in_flight(DecisionStatus.IDLE)
    assert not DecisionStateMachine.is_in_flight(DecisionStatus.EVALUATING)


# ============================================================================
# DecisionManager Tests
# ============================================================================

@pytest.mark.unit
def test_skip_returns_to_idle(decision_manager):
    """Test a skipped evaluation ends idle."""
    decision_manager.begin()
    decision_manager.skip()

    assert decision_manager.is_idle
    assert decision_manager.pending_record is None


@pytest.mark.unit
def test_full_lifecycle(decision_manager, sample_record):
    """Test commit, fill and settlement."""
    decision_manager.begin()
    decision_manager.commit(sample_record, now=10.0)

    assert decision_manager.status is DecisionStatus.COMMITTED
    assert decision_manager.in_flight
    assert decision_manager.pending_record is sample_record
    assert decision_manager.committed_at == 10.0

    decision_manager.mark_open("contract_1")
    assert decision_manager.status is DecisionStatus.OPEN
    assert decision_manager.contract_id == "contract_1"

    record = decision_manager.release()
    assert record is sample_record
    assert decision_manager.is_idle
    assert decision_manager.contract_id is None
    assert decision_manager.committed_at is None


@pytest.mark.unit
def test_release_from_committed(decision_manager, sample_record):
    """Test an unfilled decision can be released."""
    decision_manager.begin()
    decision_manager.commit(sample_record, now=0.0)

    assert decision_manager.release() is sample_record
    assert decision_manager.is_idle


@pytest.mark.unit
def test_single_decision_in_flight(decision_manager, sample_record):
    """Test a new evaluation cannot begin while a trade is in flight."""
    decision_manager.begin()
    decision_manager.commit(sample_record, now=0.0)

    with pytest.raises(InvalidTransitionError):
        decision_manager.begin()


@pytest.mark.unit
def test_mark_open_requires_commit(decision_manager):
    """Test a fill without a committed decision is rejected."""
    with pytest.raises(InvalidTransitionError):
        decision_manager.mark_open("contract_1")


@pytest.mark.unit
def test_reset_from_evaluating(decision_manager):
    """Test reset recovers from an interrupted evaluation only."""
    decision_manager.begin()
    decision_manager.reset()
    assert decision_manager.is_idle

    decision_manager.reset()
    assert decision_manager.is_idle
