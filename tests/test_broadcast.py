import json

import pytest
import websockets
from websockets.exceptions import ConnectionClosed

from middleman.config import FeedbackBusConfig
from middleman.core.feedback import FeedbackModuleState
from middleman.gateway.broadcast import BroadcastSink, build_payload


def make_payload(object_id=100, hex_state="022C"):
    state = FeedbackModuleState(object_id)
    state.update(hex_state)
    return build_payload(state, FeedbackBusConfig(left=2, middle=1, right=0))


def test_build_payload():
    assert make_payload(101, "8001") == {
        "event": {
            "objectId": 101,
            "port": 2,
            "state": {"hex": "8001", "binary": "1000000000000001"},
        },
        "info": {"left": 2, "middle": 1, "right": 0},
    }


class DeadSocket:
    async def send(self, message):
        raise ConnectionClosed(None, None)


@pytest.mark.asyncio
async def test_publish_without_observers():
    sink = BroadcastSink("127.0.0.1", 0)
    assert await sink.publish(make_payload()) == 0


@pytest.mark.asyncio
async def test_closed_observers_are_discarded():
    sink = BroadcastSink("127.0.0.1", 0)
    sink.clients.add(DeadSocket())
    assert await sink.publish(make_payload()) == 0
    assert sink.client_count == 0


@pytest.mark.asyncio
async def test_observer_gets_snapshot_then_changes():
    snapshot = make_payload(100, "0000")
    change = make_payload(100, "022C")
    sink = BroadcastSink("127.0.0.1", 0)
    sink.set_snapshot_provider(lambda: [snapshot])
    await sink.start()
    try:
        uri = f"ws://127.0.0.1:{sink.bound_port}/s88/"
        async with websockets.connect(uri) as ws:
            assert json.loads(await ws.recv()) == snapshot
            assert sink.client_count == 1

            sink.publish_nowait(change)
            assert json.loads(await ws.recv()) == change
    finally:
        await sink.stop()


@pytest.mark.asyncio
async def test_unknown_path_rejected():
    sink = BroadcastSink("127.0.0.1", 0)
    await sink.start()
    try:
        uri = f"ws://127.0.0.1:{sink.bound_port}/other/"
        async with websockets.connect(uri) as ws:
            with pytest.raises(ConnectionClosed):
                await ws.recv()
        assert sink.client_count == 0
    finally:
        await sink.stop()
