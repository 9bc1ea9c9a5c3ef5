"""
Unit tests for the observation buffer and observation parsing.
"""

import pytest

from src.engine.exceptions import InvalidObservationError
from src.engine.models import DigitClass, Observation
from src.engine.tick_buffer import TickBuffer


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def buffer():
    """Buffer holding at most five observations."""
    return TickBuffer(capacity=5)


# ============================================================================
# Observation Tests
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("price,digit", [
    ("100.13", 3),
    (100.13, 3),
    ("1234.5", 0),
    (987.61, 1),
    ("0.08", 8),
])
def test_observation_digit_extraction(price, digit):
    """Test the digit is the second decimal of the quote."""
    observation = Observation.from_price(1, price)

    assert observation.digit == digit
    assert observation.digit_class is DigitClass.from_digit(digit)


@pytest.mark.unit
def test_observation_custom_decimals():
    """Test digit extraction with three significant decimals."""
    assert Observation.from_price(1, "1.2345", decimals=3).digit == 4


@pytest.mark.unit
@pytest.mark.parametrize("price", [None, "abc", float("nan"), float("inf"), True])
def test_observation_rejects_bad_price(price):
    """Test malformed quotes raise InvalidObservationError."""
    with pytest.raises(InvalidObservationError):
        Observation.from_price(1, price)


@pytest.mark.unit
def test_observation_rejects_bad_sequence_id():
    """Test a non-numeric sequence id is rejected."""
    with pytest.raises(InvalidObservationError):
        Observation.from_price("epoch", "100.13")


# ============================================================================
# Buffer Tests
# ============================================================================

@pytest.mark.unit
def test_buffer_evicts_oldest(buffer, make_ticks):
    """Test capacity is enforced oldest-first."""
    for tick in make_ticks(list(range(8))):
        buffer.append(tick)

    assert len(buffer) == 5
    assert [tick.sequence_id for tick in buffer] == [4, 5, 6, 7, 8]


@pytest.mark.unit
def test_buffer_rejects_out_of_order(buffer, make_ticks):
    """Test duplicates and older sequence ids are rejected."""
    ticks = make_ticks([1, 2, 3])
    buffer.append(ticks[1])

    with pytest.raises(InvalidObservationError):
        buffer.append(ticks[1])
    with pytest.raises(InvalidObservationError):
        buffer.append(ticks[0])

    assert len(buffer) == 1


@pytest.mark.unit
def test_buffer_load_replaces_contents(buffer, make_ticks):
    """Test a history batch replaces the buffer and drops out-of-order ticks."""
    buffer.append(make_ticks([9], start=100)[0])
    ticks = make_ticks([1, 2, 3, 4])
    batch = [ticks[0], ticks[2], ticks[1], ticks[3]]

    kept = buffer.load(batch)

    assert kept == 3
    assert [tick.sequence_id for tick in buffer] == [1, 3, 4]


@pytest.mark.unit
def test_buffer_window(buffer, make_ticks):
    """Test the window returns the newest observations."""
    for tick in make_ticks([1, 2, 3]):
        buffer.append(tick)

    assert [tick.digit for tick in buffer.window(2)] == [2, 3]
    assert len(buffer.window(10)) == 3
    assert buffer.last.digit == 3


@pytest.mark.unit
def test_buffer_invalid_capacity():
    """Test capacity must be positive."""
    with pytest.raises(ValueError):
        TickBuffer(capacity=0)
