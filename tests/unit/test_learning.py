"""
Unit tests for learning tables and update rules.
"""

import pytest

from src.engine.learning import (
    DEEP_BUCKETS,
    META_BUCKETS,
    DeepQTable,
    MetaQTable,
    QTable,
    decay_learning_rate,
    deep_bucket,
    deep_bucket_label,
    meta_bucket,
    meta_bucket_label,
    update_deep_q,
    update_meta_q,
    update_shallow_q,
)
from src.engine.models import DigitClass, Strategy


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def q_table():
    """Fresh shallow Q-table."""
    return QTable()


@pytest.fixture
def deep_table():
    """Fresh deep Q-table."""
    return DeepQTable()


@pytest.fixture
def meta_table():
    """Fresh meta-strategy table."""
    return MetaQTable()


# ============================================================================
# Shallow Q Tests
# ============================================================================

@pytest.mark.unit
def test_shallow_q_positive_rewards_increase_monotonically(q_table):
    """Test repeated wins raise the value strictly, never past the reward."""
    previous = q_table.get(DigitClass.ODD, DigitClass.ODD)

    for _ in range(30):
        value = update_shallow_q(q_table, DigitClass.ODD, DigitClass.ODD, 1.0, 0.1)
        assert previous < value < 1.0
        previous = value


@pytest.mark.unit
def test_shallow_q_only_touches_one_cell(q_table):
    """Test an update changes exactly one cell."""
    update_shallow_q(q_table, DigitClass.EVEN, DigitClass.ODD, -1.0, 0.1)

    assert q_table.get(DigitClass.EVEN, DigitClass.ODD) == pytest.approx(0.35)
    assert q_table.get(DigitClass.EVEN, DigitClass.EVEN) == 0.5
    assert q_table.get(DigitClass.ODD, DigitClass.ODD) == 0.5
    assert q_table.get(DigitClass.ODD, DigitClass.EVEN) == 0.5


@pytest.mark.unit
def test_shallow_q_is_unclamped(q_table):
    """Test repeated losses can push the stored value below 0."""
    for _ in range(20):
        update_shallow_q(q_table, DigitClass.ODD, DigitClass.EVEN, -1.0, 0.5)

    assert q_table.get(DigitClass.ODD, DigitClass.EVEN) < 0


# ============================================================================
# Deep / Meta Q Tests
# ============================================================================

@pytest.mark.unit
def test_deep_q_update(deep_table):
    """Test the discounted update on a fresh bucket."""
    value = update_deep_q(deep_table, 13, DigitClass.ODD, 1.0, 0.1, 0.9)

    assert value == pytest.approx(0.5 + 0.1 * (1.0 + 0.9 * 0.5 - 0.5))
    assert deep_table.get(13, DigitClass.EVEN) == 0.5


@pytest.mark.unit
def test_meta_q_update_changes_best_strategy(meta_table):
    """Test a rewarded strategy becomes the bucket's best."""
    update_meta_q(meta_table, 4, Strategy.AGGRESSIVE, 1.0)

    assert meta_table.get(4, Strategy.AGGRESSIVE) == pytest.approx(0.595)
    assert meta_table.best_strategy(4) is Strategy.AGGRESSIVE


@pytest.mark.unit
def test_meta_q_untouched_bucket_selects_balanced(meta_table):
    """Test balanced wins ties."""
    for bucket in range(META_BUCKETS):
        assert meta_table.best_strategy(bucket) is Strategy.BALANCED


@pytest.mark.unit
def test_meta_q_penalized_strategy_not_selected(meta_table):
    """Test a punished balanced strategy loses to the untouched ones."""
    update_meta_q(meta_table, 0, Strategy.BALANCED, -1.0)

    assert meta_table.best_strategy(0) is Strategy.CONSERVATIVE


@pytest.mark.unit
def test_decay_learning_rate_floor():
    """Test the learning rate never decays below 0.01."""
    assert decay_learning_rate(0.1, 0.999) == pytest.approx(0.0999)
    assert decay_learning_rate(0.0101, 0.5) == 0.01


# ============================================================================
# Bucketing Tests
# ============================================================================

@pytest.mark.unit
def test_deep_bucket_bounds():
    """Test bucket indexes cover 0..26."""
    assert deep_bucket(0.1, 0.1, 1) == 0
    assert deep_bucket(0.8, -0.1, 7) == DEEP_BUCKETS - 1
    assert deep_bucket(0.5, 0.0, 4) == 13


@pytest.mark.unit
def test_bucket_labels():
    """Test persisted labels are human-readable."""
    assert deep_bucket_label(0) == "low_bullish_short"
    assert deep_bucket_label(26) == "high_bearish_long"
    assert deep_bucket_label(13) == "medium_neutral_medium"
    assert meta_bucket(0.5, 0.95) == 5
    assert meta_bucket_label(5) == "medium_high"


# ============================================================================
# Persistence Tests
# ============================================================================

@pytest.mark.unit
def test_q_table_to_dict_from_dict(q_table):
    """Test the shallow table survives a persisted round trip."""
    update_shallow_q(q_table, DigitClass.ODD, DigitClass.EVEN, 1.0, 0.1)

    data = q_table.to_dict()
    restored = QTable.from_dict(data)

    assert data["odd"]["even"] == pytest.approx(0.55)
    assert restored.values == q_table.values


@pytest.mark.unit
def test_tables_from_malformed_data():
    """Test malformed persisted tables fall back to defaults."""
    assert QTable.from_dict("garbage").values == QTable().values
    assert DeepQTable.from_dict(None).values == DeepQTable().values
    assert MetaQTable.from_dict([1, 2, 3]).values == MetaQTable().values


@pytest.mark.unit
def test_table_bad_cell_uses_default():
    """Test a non-numeric cell is replaced with the default value."""
    table = DeepQTable.from_dict({"low_bullish_short": {"odd": "x", "even": 0.7}})

    assert table.get(0, DigitClass.ODD) == 0.5
    assert table.get(0, DigitClass.EVEN) == 0.7
