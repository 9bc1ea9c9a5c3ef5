"""
Unit tests for the retry decorator.
"""

from unittest.mock import AsyncMock, patch

import pytest

from src.utils.retry import retry_on_transient_error
from src.venue.exceptions import PermanentError, TransientError


@pytest.fixture
def no_sleep():
    """Patch backoff sleeps."""
    with patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retries_then_succeeds(no_sleep):
    """Test transient failures are retried with exponential backoff."""
    func = AsyncMock(side_effect=[TransientError("503"), TransientError("503"), "ok"])
    func.__name__ = "func"
    wrapped = retry_on_transient_error(max_attempts=3, backoff_base=2)(func)

    assert await wrapped() == "ok"
    assert func.await_count == 3
    assert [c.args[0] for c in no_sleep.await_args_list] == [1, 2]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reraises_after_max_attempts(no_sleep):
    """Test the last transient error propagates."""
    func = AsyncMock(side_effect=TransientError("timeout"))
    func.__name__ = "func"
    wrapped = retry_on_transient_error(max_attempts=2)(func)

    with pytest.raises(TransientError):
        await wrapped()

    assert func.await_count == 2
    assert no_sleep.await_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_permanent_error_not_retried(no_sleep):
    """Test errors outside the retry list propagate immediately."""
    func = AsyncMock(side_effect=PermanentError("400"))
    func.__name__ = "func"
    wrapped = retry_on_transient_error(max_attempts=3)(func)

    with pytest.raises(PermanentError):
        await wrapped()

    assert func.await_count == 1
    no_sleep.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delay_is_capped(no_sleep):
    """Test a single delay never exceeds max_delay."""
    func = AsyncMock(side_effect=[TransientError("x")] * 4 + ["ok"])
    func.__name__ = "func"
    wrapped = retry_on_transient_error(max_attempts=5, backoff_base=10, max_delay=30)(func)

    await wrapped()

    assert [c.args[0] for c in no_sleep.await_args_list] == [1, 10, 30, 30]


@pytest.mark.unit
def test_invalid_max_attempts():
    """Test max_attempts below one is rejected."""
    with pytest.raises(ValueError):
        retry_on_transient_error(max_attempts=0)
