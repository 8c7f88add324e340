"""
Broker client used by the monitor.
Lists topics and streams records from a Kafka cluster through aiokafka.
"""
import asyncio
import logging
import uuid
from typing import AsyncIterator, List, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.admin import AIOKafkaAdminClient
from aiokafka.errors import KafkaError

from .models import BrokerRecord

logger = logging.getLogger(__name__)


class BrokerConnectionError(Exception):
    """Raised when the broker cannot be reached or does not answer in time"""


class BrokerClient:
    """
    Capability the monitor needs from a message broker.

    Implementations list topic names, open a subscription that yields
    BrokerRecord values, and tear that subscription down again.
    """

    async def list_topics(self) -> List[str]:
        raise NotImplementedError

    async def subscribe(self, topics: List[str], from_beginning: bool = False) -> AsyncIterator[BrokerRecord]:
        raise NotImplementedError

    async def disconnect(self) -> None:
        """Close the active subscription. Must not raise."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release every connection held by the client"""
        await self.disconnect()


class KafkaBrokerClient(BrokerClient):
    """
    aiokafka-backed broker client.

    The admin connection is created lazily and kept open so that periodic
    topic re-checks do not reconnect every time. Each subscription gets its
    own consumer in a randomized consumer group, so every monitor instance
    sees every record instead of sharing partitions with other monitors.
    """

    def __init__(
        self,
        bootstrap_servers: List[str],
        client_id: str,
        group_id: str,
        connection_timeout_ms: int = 3000,
        request_timeout_ms: int = 30000,
        retry_backoff_ms: int = 100
    ):
        """
        Initialize the client.

        Args:
            bootstrap_servers: Broker addresses (host:port)
            client_id: Client id reported to the brokers
            group_id: Base consumer group id, suffixed per subscription
            connection_timeout_ms: Upper bound for establishing a connection
            request_timeout_ms: Upper bound for a single broker request
            retry_backoff_ms: Backoff between retries of failed requests
        """
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.group_id = group_id
        self.connection_timeout = connection_timeout_ms / 1000
        self.request_timeout_ms = request_timeout_ms
        self.retry_backoff_ms = retry_backoff_ms

        self._admin: Optional[AIOKafkaAdminClient] = None
        self._consumer: Optional[AIOKafkaConsumer] = None

    async def _get_admin(self) -> AIOKafkaAdminClient:
        if self._admin is None:
            admin = AIOKafkaAdminClient(
                bootstrap_servers=self.bootstrap_servers,
                client_id=self.client_id,
                request_timeout_ms=self.request_timeout_ms,
                retry_backoff_ms=self.retry_backoff_ms
            )
            try:
                await asyncio.wait_for(admin.start(), timeout=self.connection_timeout)
            except (KafkaError, OSError, asyncio.TimeoutError) as e:
                await self._close_quietly(admin)
                raise BrokerConnectionError(
                    f"Cannot connect to brokers {self.bootstrap_servers}: {e!r}"
                ) from e
            self._admin = admin
            logger.info("Kafka admin connected")
        return self._admin

    async def list_topics(self) -> List[str]:
        admin = await self._get_admin()
        try:
            return list(await admin.list_topics())
        except (KafkaError, OSError) as e:
            # Drop the admin so the next call reconnects
            await self._close_quietly(admin)
            self._admin = None
            raise BrokerConnectionError(f"Failed to list topics: {e!r}") from e

    async def subscribe(self, topics: List[str], from_beginning: bool = False) -> AsyncIterator[BrokerRecord]:
        await self.disconnect()

        consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            group_id=f"{self.group_id}_{uuid.uuid4().hex[:7]}",
            auto_offset_reset="earliest" if from_beginning else "latest",
            request_timeout_ms=self.request_timeout_ms,
            retry_backoff_ms=self.retry_backoff_ms
        )
        try:
            await asyncio.wait_for(consumer.start(), timeout=self.connection_timeout)
        except (KafkaError, OSError, asyncio.TimeoutError) as e:
            await self._close_quietly(consumer)
            raise BrokerConnectionError(f"Failed to subscribe to {topics}: {e!r}") from e

        self._consumer = consumer
        logger.info(f"Subscribed to topics: {', '.join(topics)}")
        return self._iter_records(consumer)

    async def _iter_records(self, consumer: AIOKafkaConsumer) -> AsyncIterator[BrokerRecord]:
        async for message in consumer:
            yield BrokerRecord(
                topic=message.topic,
                partition=message.partition,
                offset=str(message.offset),
                key=_decode(message.key),
                value=_decode(message.value),
                timestamp=message.timestamp
            )

    async def disconnect(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            await self._close_quietly(consumer)
            logger.info("Kafka consumer disconnected")

    async def close(self) -> None:
        await self.disconnect()
        admin, self._admin = self._admin, None
        if admin is not None:
            await self._close_quietly(admin)
            logger.info("Kafka admin disconnected")

    @staticmethod
    async def _close_quietly(client) -> None:
        try:
            if isinstance(client, AIOKafkaConsumer):
                await client.stop()
            else:
                await client.close()
        except Exception as e:
            logger.warning(f"Error while closing Kafka client: {e}")


def _decode(raw: Optional[bytes]) -> Optional[str]:
    if raw is None:
        return None
    return raw.decode("utf-8", errors="replace")
