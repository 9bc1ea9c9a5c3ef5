"""
Unit tests for the Deriv websocket client.
"""

import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from src.venue.client import DerivClient
from src.venue.events import ObservationReceived
from src.venue.exceptions import ConnectionError as VenueConnectionError
from src.venue.parser import DerivMessageParser


# ============================================================================
# Test Fixtures
# ============================================================================

class FakeWebSocket:
    """Websocket stand-in yielding canned messages then closing."""

    def __init__(self, messages=()):
        self.messages = list(messages)
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


def tick_message(epoch, quote):
    return json.dumps({"msg_type": "tick", "tick": {"epoch": epoch, "quote": quote}})


def make_client(connector, **kwargs):
    return DerivClient(
        app_id="1089",
        parser=DerivMessageParser(),
        connector=connector,
        **kwargs
    )


@pytest.fixture
def no_sleep():
    """Patch reconnect sleeps."""
    with patch("src.venue.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# ============================================================================
# Connection Tests
# ============================================================================

@pytest.mark.unit
def test_client_url():
    """Test the endpoint includes the app id."""
    client = make_client(Mock())
    assert client.url == "wss://ws.derivws.com/websockets/v3?app_id=1089"
    assert not client.is_connected


@pytest.mark.unit
def test_reconnect_delay_backoff():
    """Test exponential backoff with a cap."""
    client = make_client(Mock(), interval_seconds=5.0)

    client._attempts = 1
    assert client._reconnect_delay() == 5.0
    client._attempts = 3
    assert client._reconnect_delay() == 20.0
    client._attempts = 10
    assert client._reconnect_delay() == DerivClient.MAX_RECONNECT_DELAY


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_dispatches_events_until_attempts_exhausted(no_sleep):
    """Test events are dispatched and the loop gives up after max attempts."""
    ws = FakeWebSocket([tick_message(1, 100.13), tick_message(2, 100.14), "{bad json"])
    connector = Mock(side_effect=[ws, OSError("refused"), OSError("refused")])
    client = make_client(connector, max_attempts=2, interval_seconds=5.0)

    received = []
    on_connect = AsyncMock()
    client.on_event(received.append)
    client.on_connect(on_connect)

    with pytest.raises(VenueConnectionError):
        await client.run()

    assert len(received) == 2
    assert all(isinstance(event, ObservationReceived) for event in received)
    assert received[0].observation.digit == 3
    on_connect.assert_awaited_once()
    assert connector.call_count == 3
    assert [c.args[0] for c in no_sleep.await_args_list] == [5.0, 10.0]
    assert client.stats["messages_received"] == 3
    assert client.stats["events_dispatched"] == 2
    assert not client.is_connected


@pytest.mark.unit
@pytest.mark.asyncio
async def test_attempts_reset_after_successful_connect(no_sleep):
    """Test a successful connection resets the attempt counter."""
    connector = Mock(side_effect=[
        OSError("refused"),
        FakeWebSocket(),
        OSError("refused"),
        OSError("refused"),
    ])
    client = make_client(connector, max_attempts=2)

    with pytest.raises(VenueConnectionError):
        await client.run()

    assert connector.call_count == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconnect_disabled(no_sleep):
    """Test the first drop is fatal when reconnection is disabled."""
    connector = Mock(side_effect=[FakeWebSocket()])
    client = make_client(connector, reconnect_enabled=False)

    with pytest.raises(VenueConnectionError):
        await client.run()

    no_sleep.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_stops_run_loop(no_sleep):
    """Test close() ends run() without an error."""
    ws = FakeWebSocket([tick_message(1, 100.13)])
    client = make_client(Mock(return_value=ws))

    async def on_connect():
        await client.subscribe_ticks("R_100")
        await client.close()

    client.on_connect(on_connect)
    await client.run()

    assert ws.sent == [{"ticks": "R_100", "subscribe": 1}]
    assert ws.closed
    no_sleep.assert_not_awaited()


# ============================================================================
# Send / Dispatch Tests
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_when_not_connected():
    """Test sending without a connection fails softly."""
    client = make_client(Mock())

    assert await client.send({"ping": 1}) is False
    assert await client.authorize("token") is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_payloads():
    """Test request helpers build Deriv payloads."""
    ws = FakeWebSocket()
    client = make_client(Mock(return_value=ws))
    client._ws = ws
    client._is_connected = True

    assert await client.request_proposal(
        amount=2.0, contract_type="DIGITODD", currency="USD", duration=1, symbol="R_100"
    )
    await client.buy("prop-1", 2.0)
    await client.request_history("R_100", 5000)
    await client.forget("sub-1")

    assert ws.sent[0] == {
        "proposal": 1,
        "amount": 2.0,
        "basis": "stake",
        "contract_type": "DIGITODD",
        "currency": "USD",
        "duration": 1,
        "duration_unit": "t",
        "symbol": "R_100"
    }
    assert ws.sent[1] == {"buy": "prop-1", "price": 2.0}
    assert ws.sent[2]["ticks_history"] == "R_100"
    assert ws.sent[2]["count"] == 5000
    assert ws.sent[3] == {"forget": "sub-1"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_callback_error_does_not_stop_dispatch():
    """Test a failing callback is logged and dispatch continues."""
    client = make_client(Mock())
    callback = AsyncMock(side_effect=[RuntimeError("boom"), None])
    client.on_event(callback)

    await client._handle_message(tick_message(1, 100.13))
    await client._handle_message(tick_message(2, 100.14))

    assert callback.await_count == 2
    assert client.stats["events_dispatched"] == 1
