"""
Test the aiokafka broker client.
Verifies record mapping, subscription options and quiet teardown.
"""
from types import SimpleNamespace

import pytest
from aiokafka.errors import KafkaConnectionError

import flow_monitor.broker as broker_module
from flow_monitor.broker import BrokerConnectionError, KafkaBrokerClient, _decode


class StubConsumer:
    """Stands in for AIOKafkaConsumer"""
    instances = []
    messages = []
    fail_start = None
    fail_stop = False

    def __init__(self, *topics, **kwargs):
        self.topics = topics
        self.kwargs = kwargs
        self.stopped = False
        type(self).instances.append(self)

    async def start(self):
        if self.fail_start is not None:
            raise self.fail_start

    async def stop(self):
        self.stopped = True
        if self.fail_stop:
            raise RuntimeError("consumer already closed")

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in list(self.messages):
            yield message


class StubAdmin:
    """Stands in for AIOKafkaAdminClient"""
    instances = []
    topics = ["a-topic", "misc"]
    fail_list = False

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.closed = False
        type(self).instances.append(self)

    async def start(self):
        pass

    async def list_topics(self):
        if self.fail_list:
            raise KafkaConnectionError()
        return list(self.topics)

    async def close(self):
        self.closed = True


@pytest.fixture
def consumer_cls(monkeypatch):
    class Consumer(StubConsumer):
        instances = []
        messages = []
        fail_start = None
        fail_stop = False

    monkeypatch.setattr(broker_module, "AIOKafkaConsumer", Consumer)
    return Consumer


@pytest.fixture
def admin_cls(monkeypatch):
    class Admin(StubAdmin):
        instances = []
        fail_list = False

    monkeypatch.setattr(broker_module, "AIOKafkaAdminClient", Admin)
    return Admin


@pytest.fixture
def client():
    return KafkaBrokerClient(["localhost:9092"], client_id="monitor", group_id="monitor-group")


def test_decode():
    assert _decode(None) is None
    assert _decode("café".encode("utf-8")) == "café"
    assert _decode(b"\xff{") == "�{"


@pytest.mark.asyncio
async def test_subscribe_reads_new_records_only_by_default(client, consumer_cls):
    await client.subscribe(["a-topic", "b-topic"])

    [consumer] = consumer_cls.instances
    assert consumer.topics == ("a-topic", "b-topic")
    assert consumer.kwargs["auto_offset_reset"] == "latest"
    assert consumer.kwargs["bootstrap_servers"] == ["localhost:9092"]


@pytest.mark.asyncio
async def test_subscribe_from_beginning(client, consumer_cls):
    await client.subscribe(["a-topic"], from_beginning=True)
    assert consumer_cls.instances[0].kwargs["auto_offset_reset"] == "earliest"


@pytest.mark.asyncio
async def test_each_subscription_gets_its_own_group(client, consumer_cls):
    """A new subscription closes the previous consumer and uses a fresh group"""
    await client.subscribe(["a-topic"])
    await client.subscribe(["a-topic"])

    first, second = consumer_cls.instances
    assert first.stopped
    assert first.kwargs["group_id"].startswith("monitor-group_")
    assert second.kwargs["group_id"].startswith("monitor-group_")
    assert first.kwargs["group_id"] != second.kwargs["group_id"]


@pytest.mark.asyncio
async def test_records_are_mapped(client, consumer_cls):
    consumer_cls.messages = [
        SimpleNamespace(topic="a-topic", partition=2, offset=18446744073709551615,
                        key=b"k1", value=b"\xff{", timestamp=1700000000000),
        SimpleNamespace(topic="a-topic", partition=0, offset=3,
                        key=None, value=None, timestamp=1700000000001),
    ]

    stream = await client.subscribe(["a-topic"])
    records = [record async for record in stream]

    assert records[0].offset == "18446744073709551615"
    assert records[0].partition == 2
    assert records[0].key == "k1"
    assert records[0].value == "�{"
    assert records[0].timestamp == 1700000000000
    assert records[1].key is None
    assert records[1].value is None


@pytest.mark.asyncio
async def test_subscribe_failure_raises_connection_error(client, consumer_cls):
    consumer_cls.fail_start = KafkaConnectionError()

    with pytest.raises(BrokerConnectionError):
        await client.subscribe(["a-topic"])

    assert consumer_cls.instances[0].stopped


@pytest.mark.asyncio
async def test_disconnect_never_raises(client, consumer_cls):
    await client.subscribe(["a-topic"])
    consumer_cls.fail_stop = True

    await client.disconnect()
    await client.disconnect()

    assert consumer_cls.instances[0].stopped


@pytest.mark.asyncio
async def test_list_topics_reuses_admin(client, admin_cls):
    assert await client.list_topics() == ["a-topic", "misc"]
    assert await client.list_topics() == ["a-topic", "misc"]
    assert len(admin_cls.instances) == 1

    await client.close()
    assert admin_cls.instances[0].closed


@pytest.mark.asyncio
async def test_list_topics_failure_drops_admin(client, admin_cls):
    admin_cls.fail_list = True

    with pytest.raises(BrokerConnectionError):
        await client.list_topics()
    assert admin_cls.instances[0].closed

    admin_cls.fail_list = False
    assert await client.list_topics() == ["a-topic", "misc"]
    assert len(admin_cls.instances) == 2
