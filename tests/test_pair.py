import asyncio

import pytest

from conftest import FailingReader, FakeWriter, fed_reader, read_all, tcp_connection
from relaytap.common import Connection, ForwardError
from relaytap.pair import ConnectionPair
from relaytap.sessions import SessionRegistry


@pytest.mark.asyncio
async def test_pair_relays_both_directions_over_tcp():
    # client <-> [inbound | pair | outbound] <-> backend
    client, inbound, acc_in = await tcp_connection("client")
    outbound, backend, acc_out = await tcp_connection("target")
    inbound.label = "client"
    try:
        pair = ConnectionPair(inbound, outbound, session_id=7, chunk_size=1024)
        task = asyncio.create_task(pair.run())

        request = b"GET / HTTP/1.1\r\n\r\n" + bytes(range(256)) * 64
        response = b"HTTP/1.1 200 OK\r\n\r\n" + b"x" * 50000

        client.writer.write(request)
        await client.writer.drain()
        client.writer.write_eof()

        assert await read_all(backend.reader) == request

        backend.writer.write(response)
        await backend.writer.drain()
        backend.writer.write_eof()

        assert await read_all(client.reader) == response
        assert await asyncio.wait_for(task, timeout=5) == (len(request), len(response))
        assert inbound.is_closing()
        assert outbound.is_closing()
    finally:
        for c in (client, backend):
            await c.close()
        await acc_in.stop()
        await acc_out.stop()


@pytest.mark.asyncio
async def test_pair_half_closes_destination_on_eof():
    in_w = FakeWriter()
    out_w = FakeWriter()
    inbound = Connection(fed_reader(b"ping"), in_w, label="client")
    outbound = Connection(fed_reader(b"pong"), out_w, label="target")

    sent, received = await ConnectionPair(inbound, outbound).run()

    assert (sent, received) == (4, 4)
    assert bytes(out_w.buf) == b"ping"
    assert bytes(in_w.buf) == b"pong"
    assert out_w.eof and in_w.eof
    assert out_w.closed and in_w.closed


@pytest.mark.asyncio
async def test_pair_failure_does_not_stop_other_direction():
    in_w = FakeWriter()
    out_w = FakeWriter()
    inbound = Connection(FailingReader(ConnectionResetError("reset")), in_w, label="client")
    outbound = Connection(fed_reader(b"already in flight"), out_w, label="target")

    with pytest.raises(ForwardError) as ei:
        await ConnectionPair(inbound, outbound, session_id=3).run()

    assert ei.value.op == "read"
    assert ei.value.direction == "[#3] client -> target"
    # The failing direction only half-closed its destination...
    assert out_w.eof
    assert out_w.buf == b""
    # ...while the other direction still delivered what it had.
    assert bytes(in_w.buf) == b"already in flight"
    assert in_w.closed


@pytest.mark.asyncio
async def test_pair_failure_still_delivers_late_response_over_tcp():
    client, accepted, acc_in = await tcp_connection("client")
    outbound, backend, acc_out = await tcp_connection("target")
    inbound = Connection(FailingReader(ConnectionResetError("reset")), accepted.writer, label="client")
    try:
        task = asyncio.create_task(ConnectionPair(inbound, outbound, session_id=5).run())

        # The backend sees EOF from the failed direction, not a reset.
        assert await read_all(backend.reader) == b""
        assert not task.done()

        backend.writer.write(b"late response")
        await backend.writer.drain()
        backend.writer.write_eof()

        assert await read_all(client.reader) == b"late response"
        with pytest.raises(ForwardError) as ei:
            await asyncio.wait_for(task, timeout=5)
        assert ei.value.op == "read"
    finally:
        for c in (client, backend, accepted):
            await c.close()
        await acc_in.stop()
        await acc_out.stop()


@pytest.mark.asyncio
async def test_pair_reports_first_failure_when_both_fail():
    in_w = FakeWriter(drain_error=BrokenPipeError("in gone"))
    out_w = FakeWriter(drain_error=BrokenPipeError("out gone"))
    inbound = Connection(fed_reader(b"a", eof=False), in_w, label="client")
    outbound = Connection(fed_reader(b"b", eof=False), out_w, label="target")

    with pytest.raises(ForwardError) as ei:
        await ConnectionPair(inbound, outbound).run()

    assert ei.value.op == "write"
    assert "client -> target" in ei.value.direction


@pytest.mark.asyncio
async def test_pair_updates_registry():
    registry = SessionRegistry(event_maxlen=10)
    inbound = Connection(fed_reader(b"GET /x HTTP/1.1\r\n"), FakeWriter(("10.0.0.1", 5000)), label="client")
    outbound = Connection(fed_reader(b"Qreply"), FakeWriter(("10.0.0.2", 5432)), label="target")

    await ConnectionPair(inbound, outbound, session_id=1, registry=registry).run()

    totals = registry.totals()
    assert totals["sessions_started"] == 1
    assert totals["sessions_active"] == 0
    assert totals["sessions_failed"] == 0
    assert totals["bytes_in"] == len(b"GET /x HTTP/1.1\r\n")
    assert totals["bytes_out"] == len(b"Qreply")

    kinds = [e["kind"] for e in registry.events.snapshot()]
    assert kinds[0] == "session_open"
    assert kinds[-1] == "session_close"
    assert "http" in kinds and "query" in kinds
    opened = registry.events.snapshot()[0]
    assert opened["inbound"] == "10.0.0.1:5000"
    assert opened["outbound"] == "10.0.0.2:5432"
