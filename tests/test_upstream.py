import asyncio

import pytest

from middleman.gateway.upstream import ClientListener

SNAPSHOT = "<EVENT 100>\r\n100 state[0x0000]\r\n<END 0 (OK)>"


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def read_line(reader, timeout=2.0):
    data = await asyncio.wait_for(reader.readline(), timeout)
    return data.decode("ascii").rstrip("\r\n")


async def connect(listener):
    return await asyncio.open_connection("127.0.0.1", listener.bound_port)


@pytest.mark.asyncio
async def test_snapshot_on_connect_and_refresh():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=0.05)
    listener.set_snapshot_provider(lambda: [SNAPSHOT])
    await listener.start()
    reader, writer = await connect(listener)
    try:
        # initial snapshot, then at least one refresh
        for _ in range(2):
            assert await read_line(reader) == "<EVENT 100>"
            assert await read_line(reader) == "100 state[0x0000]"
            assert await read_line(reader) == "<END 0 (OK)>"
    finally:
        writer.close()
        await listener.stop()


@pytest.mark.asyncio
async def test_frames_reach_handler_and_reply_to_origin():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=60)
    received = []

    async def handler(line, session):
        received.append((line, session.session_id))
        session.send(f"<REPLY {line}>")

    listener.set_frame_handler(handler)
    await listener.start()
    reader, writer = await connect(listener)
    try:
        writer.write(b"get(1, info)\r\n\r\n")
        await writer.drain()
        assert await read_line(reader) == "<REPLY get(1, info)>"
        assert received == [("get(1, info)", 1)]
    finally:
        writer.close()
        await listener.stop()


@pytest.mark.asyncio
async def test_outbound_order_preserved():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=60)

    async def handler(line, session):
        for i in range(50):
            session.send(f"line {i}")

    listener.set_frame_handler(handler)
    await listener.start()
    reader, writer = await connect(listener)
    try:
        writer.write(b"go()\r\n")
        await writer.drain()
        lines = [await read_line(reader) for _ in range(50)]
        assert lines == [f"line {i}" for i in range(50)]
    finally:
        writer.close()
        await listener.stop()


@pytest.mark.asyncio
async def test_broadcast_reaches_every_session():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=60)
    await listener.start()
    r1, w1 = await connect(listener)
    r2, w2 = await connect(listener)
    try:
        await wait_until(lambda: listener.client_count == 2)
        assert listener.broadcast("<EVENT 101>") == 2
        assert await read_line(r1) == "<EVENT 101>"
        assert await read_line(r2) == "<EVENT 101>"
    finally:
        w1.close()
        w2.close()
        await listener.stop()


@pytest.mark.asyncio
async def test_disconnect_cancels_refresh_and_unregisters():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=0.05)
    connected = []
    disconnected = []
    listener.set_snapshot_provider(lambda: [SNAPSHOT])
    listener.set_session_callbacks(
        on_connected=lambda s, e: connected.append(s),
        on_disconnected=lambda s, e: disconnected.append((s, e)),
    )
    await listener.start()
    reader, writer = await connect(listener)
    try:
        await wait_until(lambda: connected)
        session = connected[0]
        assert session.refresh_task is not None

        writer.close()
        await wait_until(lambda: disconnected)
        assert listener.client_count == 0
        assert session.refresh_task is None
        assert not session.connected
        assert disconnected[0] == (session, None)
        assert session.send("late") is False
    finally:
        await listener.stop()


@pytest.mark.asyncio
async def test_stop_closes_client_sockets():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=60)
    await listener.start()
    reader, writer = await connect(listener)
    await wait_until(lambda: listener.client_count == 1)
    listener.broadcast("bye")

    await listener.stop()

    assert not listener.is_running
    assert await read_line(reader) == "bye"
    assert await asyncio.wait_for(reader.read(), 2.0) == b""
    writer.close()


@pytest.mark.asyncio
async def test_stalled_client_is_dropped():
    listener = ClientListener("127.0.0.1", 0, refresh_interval=0.01, max_pending=8)
    bulk = "x" * 256 * 1024
    connected = []
    disconnected = []
    listener.set_snapshot_provider(lambda: [bulk] * 4)
    listener.set_session_callbacks(
        on_connected=lambda s, e: connected.append(s),
        on_disconnected=lambda s, e: disconnected.append((s, e)),
    )
    await listener.start()
    # never read from this connection
    reader, writer = await connect(listener)
    try:
        await wait_until(lambda: disconnected, timeout=10.0)
        session = connected[0]
        assert disconnected[0] == (session, None)
        assert session.pending <= 8
        assert listener.client_count == 0
        assert not session.connected
        assert session.send("late") is False
    finally:
        writer.close()
        await listener.stop()
