"""
Test the broadcast gateway.
Verifies event fan-out to viewers and viewer command handling.
"""
import json

import pytest

from flow_monitor.gateway import BroadcastGateway
from flow_monitor.monitor import MonitorController
from conftest import make_record


@pytest.fixture
def monitor(broker):
    return MonitorController(broker, history_capacity=100)


@pytest.fixture
def gateway(monitor):
    gateway = BroadcastGateway(monitor, queue_size=10, recent_limit=3)
    yield gateway
    gateway.close()


def drain(queue):
    messages = []
    while not queue.empty():
        messages.append(json.loads(queue.get_nowait()))
    return messages


@pytest.mark.asyncio
async def test_viewer_is_greeted(gateway):
    queue = gateway.register()
    assert not queue.dropped.is_set()
    assert drain(queue) == [{"type": "connected", "data": None}]
    assert gateway.viewer_count == 1


@pytest.mark.asyncio
async def test_flow_output_broadcast_to_all_viewers(gateway, monitor):
    first, second = gateway.register(), gateway.register()
    drain(first), drain(second)

    monitor.ingest(make_record(topic="acme-topic", value='{"a": 1}'))

    for queue in (first, second):
        [message] = drain(queue)
        assert message["type"] == "message"
        assert message["data"]["source_id"] == "acme"
        assert message["data"]["payload"] == {"a": 1}


@pytest.mark.asyncio
async def test_lifecycle_events_broadcast_as_status(gateway, monitor):
    queue = gateway.register()
    drain(queue)

    await gateway.handle_command('{"type": "start"}')
    await gateway.handle_command('{"type": "stop"}')

    messages = drain(queue)
    assert [m["type"] for m in messages] == ["monitor_connected", "status", "status"]
    assert messages[1]["data"]["monitoring"] is True
    assert set(messages[1]["data"]["topics"]) == {"x-topic", "y-topic"}
    assert messages[2]["data"] == {"monitoring": False}


@pytest.mark.asyncio
async def test_start_command_with_source(gateway, monitor, broker):
    await gateway.handle_command({"type": "start", "data": {"source_id": "x"}})
    assert monitor.get_status().monitored_topics == ["x-topic"]
    await monitor.stop()


@pytest.mark.asyncio
async def test_clear_command_broadcasts_cleared(gateway, monitor):
    queue = gateway.register()
    monitor.ingest(make_record())
    drain(queue)

    reply = await gateway.handle_command('{"type": "clear"}')

    assert reply is None
    assert drain(queue) == [{"type": "cleared", "data": None}]
    assert monitor.get_status().total_outputs == 0


@pytest.mark.asyncio
async def test_status_command(gateway, monitor):
    monitor.ingest(make_record())
    reply = await gateway.handle_command('{"type": "status"}')

    assert reply.type == "status"
    assert reply.data["monitoring"] is False
    assert reply.data["total_outputs"] == 1
    assert reply.data["topics"] == ["demo-topic"]


@pytest.mark.asyncio
async def test_recent_command_uses_default_limit(gateway, monitor):
    for i in range(5):
        monitor.ingest(make_record(offset=i))

    reply = await gateway.handle_command('{"type": "recent"}')
    assert [o["offset"] for o in reply.data] == ["4", "3", "2"]

    reply = await gateway.handle_command({"type": "recent", "data": {"limit": 1}})
    assert [o["offset"] for o in reply.data] == ["4"]


@pytest.mark.asyncio
async def test_stats_command(gateway, monitor):
    monitor.ingest(make_record())
    monitor.ingest(make_record(offset=1))

    reply = await gateway.handle_command('{"type": "stats"}')
    assert reply.type == "stats"
    assert reply.data[0]["topic"] == "demo-topic"
    assert reply.data[0]["message_count"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["not json", '{"data": {}}', '{"type": "dance"}', "[1, 2]"])
async def test_bad_messages_are_ignored(gateway, raw):
    """Invalid envelopes and unknown types are logged and ignored"""
    assert await gateway.handle_command(raw) is None


@pytest.mark.asyncio
async def test_failed_start_replies_with_error(gateway, broker):
    queue = gateway.register()
    drain(queue)
    broker.unreachable = True

    reply = await gateway.handle_command('{"type": "start"}')

    assert reply.type == "error"
    assert reply.data == {"message": "Failed to process request"}
    [broadcast] = drain(queue)
    assert broadcast["type"] == "error"
    assert "broker unreachable" in broadcast["data"]["message"]


@pytest.mark.asyncio
async def test_parse_error_broadcast(gateway, monitor):
    queue = gateway.register()
    drain(queue)

    monitor.ingest(make_record(value=None))

    [message] = drain(queue)
    assert message["type"] == "parse_error"
    assert message["data"]["raw_record"]["topic"] == "demo-topic"


@pytest.mark.asyncio
async def test_slow_viewer_is_dropped(monitor):
    gateway = BroadcastGateway(monitor, queue_size=2)
    slow = gateway.register()

    for i in range(3):
        monitor.ingest(make_record(offset=i))

    assert gateway.viewer_count == 0
    assert slow.qsize() == 2
    assert slow.dropped.is_set()
    gateway.close()


@pytest.mark.asyncio
async def test_unregister(gateway):
    queue = gateway.register()
    gateway.unregister(queue)
    gateway.unregister(queue)
    assert gateway.viewer_count == 0
