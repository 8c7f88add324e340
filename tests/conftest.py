"""
Shared fixtures: an in-memory broker standing in for Kafka.
"""
import asyncio
from typing import List, Optional

import pytest

from flow_monitor.broker import BrokerClient, BrokerConnectionError
from flow_monitor.models import BrokerRecord

BASE_TS = 1700000000000


class FakeBroker(BrokerClient):
    """Broker client backed by an asyncio.Queue per subscription"""

    def __init__(self, topics: Optional[List[str]] = None):
        self.topics = list(topics or [])
        self.unreachable = False
        self.fail_disconnect = False
        self.subscriptions = []
        self.disconnect_calls = 0
        self.closed = False
        self._queue: Optional[asyncio.Queue] = None

    async def list_topics(self) -> List[str]:
        if self.unreachable:
            raise BrokerConnectionError("broker unreachable")
        return list(self.topics)

    async def subscribe(self, topics, from_beginning=False):
        if self.unreachable:
            raise BrokerConnectionError("broker unreachable")
        self.subscriptions.append((list(topics), from_beginning))
        self._queue = asyncio.Queue()
        return self._stream(self._queue)

    async def _stream(self, queue):
        while True:
            record = await queue.get()
            if record is None:
                return
            yield record

    async def deliver(self, record: BrokerRecord):
        await self._queue.put(record)

    @property
    def subscribed(self) -> bool:
        return self._queue is not None

    async def disconnect(self):
        self.disconnect_calls += 1
        if self._queue is not None:
            self._queue.put_nowait(None)
            self._queue = None
        if self.fail_disconnect:
            raise RuntimeError("connection already closed")

    async def close(self):
        await self.disconnect()
        self.closed = True


def make_record(topic="demo-topic", value='{"a": 1}', offset=0, timestamp=None, key=None, partition=0):
    return BrokerRecord(
        topic=topic,
        partition=partition,
        offset=str(offset),
        key=key,
        value=value,
        timestamp=BASE_TS + offset * 1000 if timestamp is None else timestamp
    )


@pytest.fixture
def broker():
    return FakeBroker(["x-topic", "y-topic", "misc"])
