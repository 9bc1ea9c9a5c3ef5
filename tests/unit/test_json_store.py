"""
Unit tests for the JSON file store.
"""

import json
from unittest.mock import patch

import pytest

from src.engine.exceptions import PersistenceError
from src.storage.json_store import JsonStore


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def store(tmp_path):
    """Initialized store in a temporary directory."""
    s = JsonStore(str(tmp_path / "data"))
    s.init()
    return s


# ============================================================================
# JsonStore Tests
# ============================================================================

@pytest.mark.unit
def test_set_and_get(store, tmp_path):
    """Test values are written as JSON files and read back."""
    assert store.set("qtables", {"odd": {"odd": 0.55, "even": 0.5}})

    path = tmp_path / "data" / "qtables.json"
    assert json.loads(path.read_text())["odd"]["odd"] == 0.55
    assert store.get("qtables")["odd"]["even"] == 0.5
    assert not (tmp_path / "data" / "qtables.json.tmp").exists()


@pytest.mark.unit
def test_get_missing_key_returns_default(store):
    """Test absent keys return the default."""
    assert store.get("patternMemory") is None
    assert store.get("patternMemory", []) == []


@pytest.mark.unit
def test_get_reads_from_disk(store, tmp_path):
    """Test a new store reads values written by another instance."""
    store.set("engineStats", {"wins": 3})

    other = JsonStore(str(tmp_path / "data"))

    assert other.get("engineStats") == {"wins": 3}


@pytest.mark.unit
def test_get_corrupt_file_returns_default(store, tmp_path):
    """Test unreadable JSON falls back to the default."""
    (tmp_path / "data" / "contextMemory.json").write_text("{not json")

    assert store.get("contextMemory", []) == []


@pytest.mark.unit
def test_set_unserializable_value(store):
    """Test values that are not JSON report failure."""
    assert store.set("tradeHistory", {"bad": object()}) is False
    assert store.get("tradeHistory") is None


@pytest.mark.unit
def test_set_write_failure(store):
    """Test an OS error on write is reported, not raised."""
    with patch("src.storage.json_store.os.replace", side_effect=OSError("disk full")):
        assert store.set("qtables", {}) is False


@pytest.mark.unit
def test_delete(store):
    """Test delete removes the file and the cached value."""
    store.set("metaQtables", {"a": 1})

    assert store.delete("metaQtables")
    assert store.get("metaQtables") is None
    assert not store.delete("metaQtables")


@pytest.mark.unit
def test_cache_is_used(store, tmp_path):
    """Test cached values are served until the cache is cleared."""
    store.set("engineStats", {"wins": 1})
    (tmp_path / "data" / "engineStats.json").write_text(json.dumps({"wins": 2}))

    assert store.get("engineStats") == {"wins": 1}

    store.clear_cache()
    assert store.get("engineStats") == {"wins": 2}


@pytest.mark.unit
def test_init_failure(tmp_path):
    """Test an unusable data directory raises PersistenceError."""
    blocker = tmp_path / "file"
    blocker.write_text("x")

    with pytest.raises(PersistenceError):
        JsonStore(str(blocker / "data")).init()
