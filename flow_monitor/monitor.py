"""
Flow output monitor.
Discovers flow topics, consumes them and keeps statistics and recent history.
"""
import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional

from .broker import BrokerClient
from .catalog import TopicCatalog
from .events import (
    EventBus, FLOW_OUTPUT, MONITOR_CONNECTED, MONITORING_ERROR,
    MONITORING_STARTED, MONITORING_STOPPED, OUTPUTS_CLEARED, PARSE_ERROR
)
from .history import HistoryBuffer
from .models import BrokerRecord, FlowOutput, MonitoringStatus, TopicStats
from .stats import StatisticsAggregator
from .transformer import MalformedRecord, transform

logger = logging.getLogger(__name__)


class MonitorController:
    """
    Owns the monitoring lifecycle (idle or monitoring a set of topics).

    start/stop/rescan serialize on a single asyncio.Lock so the monitoring
    flag and the broker subscription always change together. ingest() and
    clear() never await, so they run atomically on the event loop.
    Every read returns a copy of the current state.
    """

    def __init__(
        self,
        broker: BrokerClient,
        history_capacity: int = 1000,
        events: Optional[EventBus] = None,
        catalog: Optional[TopicCatalog] = None
    ):
        """
        Initialize the monitor.

        Args:
            broker: Broker client to discover and consume topics with
            history_capacity: Number of recent outputs kept in memory
            events: Event bus to publish notifications on
            catalog: Topic catalog, built on the broker when omitted
        """
        self.broker = broker
        self.catalog = catalog or TopicCatalog(broker)
        self.events = events or EventBus()
        self.history = HistoryBuffer(history_capacity)
        self.statistics = StatisticsAggregator()

        self.monitoring = False
        self.topics: List[str] = []
        self.source_filter: Optional[str] = None

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    async def start(self, source_filter: Optional[str] = None) -> List[str]:
        """
        Discover flow topics and start consuming them.

        A start while already monitoring replaces the running subscription.

        Args:
            source_filter: Optional source id to restrict monitoring to

        Returns:
            Topics now being monitored (may be empty)
        """
        async with self._lock:
            if self.monitoring:
                logger.info("Monitor already running, restarting with new scope")
                await self._stop_locked()
            return await self._start_locked(source_filter)

    async def stop(self):
        """Close the subscription and go idle. Never raises."""
        async with self._lock:
            await self._stop_locked()

    async def rescan(self) -> bool:
        """
        Re-run discovery and restart if the flow topic set changed.

        Returns:
            True if the monitor was restarted
        """
        async with self._lock:
            if not self.monitoring:
                return False

            topics = await self.catalog.list_flow_topics(self.source_filter)
            if not topics or set(topics) == set(self.topics):
                return False

            new_topics = sorted(set(topics) - set(self.topics))
            logger.info(f"Flow topics changed (new: {new_topics}), restarting monitor")
            source_filter = self.source_filter
            await self._stop_locked()
            await self._start_locked(source_filter)
            return True

    async def disconnect(self):
        """Stop monitoring and release the broker client"""
        await self.stop()
        try:
            await self.broker.close()
        except Exception as e:
            logger.error(f"Error closing broker client: {e}", exc_info=True)
        logger.info("Output monitor disconnected")

    async def _start_locked(self, source_filter: Optional[str]) -> List[str]:
        logger.info("Starting flow output monitoring...")
        stream = None
        try:
            topics = await self.catalog.list_flow_topics(source_filter)
            if topics:
                stream = await self.broker.subscribe(topics, from_beginning=False)
        except Exception as e:
            logger.error(f"Failed to start monitoring: {e}", exc_info=True)
            self.events.emit(MONITORING_ERROR, e)
            raise

        self.source_filter = source_filter
        self.topics = list(topics)
        self.monitoring = True

        if stream is None:
            if source_filter:
                logger.warning(f"No flow topics found matching {source_filter}-topic")
            else:
                logger.warning("No flow topics found; waiting for topics ending with -topic")
            self.events.emit(MONITORING_STARTED, {"topics": []})
            return []

        self._task = asyncio.create_task(self._consume_loop(stream))
        logger.info(f"Monitoring {len(topics)} flow topics: {topics}")
        self.events.emit(MONITOR_CONNECTED)
        self.events.emit(MONITORING_STARTED, {"topics": list(topics)})
        return list(topics)

    async def _stop_locked(self):
        task, self._task = self._task, None
        try:
            await self.broker.disconnect()
        except Exception as e:
            logger.error(f"Error closing subscription: {e}", exc_info=True)

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Consume loop ended with error: {e}", exc_info=True)

        self.monitoring = False
        self.topics = []
        logger.info("Output monitoring stopped")
        self.events.emit(MONITORING_STOPPED)

    async def _consume_loop(self, stream: AsyncIterator[BrokerRecord]):
        """Feed every delivered record through ingest(), one at a time"""
        logger.info("Consume loop started")
        try:
            async for record in stream:
                self.ingest(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in consume loop: {e}", exc_info=True)
            self.events.emit(MONITORING_ERROR, e)
        finally:
            logger.info("Consume loop finished")

    def ingest(self, record: BrokerRecord) -> Optional[FlowOutput]:
        """
        Process one broker record.

        Malformed records are reported with a parse-error event and dropped.

        Returns:
            The FlowOutput built from the record, or None if it was dropped
        """
        try:
            output = transform(record)
        except MalformedRecord as e:
            logger.warning(f"Dropped record from '{record.topic}': {e}")
            self.events.emit(PARSE_ERROR, {
                "raw_record": record.model_dump(),
                "failure_detail": str(e)
            })
            return None

        self.statistics.record(output)
        self.history.append(output)
        logger.debug(
            f"Flow output from {output.source_id or '<none>'} "
            f"({output.topic}[{output.partition}]@{output.offset})"
        )

        self.events.emit(FLOW_OUTPUT, output)
        return output

    def clear(self):
        """Drop all stored outputs and statistics"""
        self.history.clear()
        self.statistics.clear()
        logger.info("Cleared all stored outputs and statistics")
        self.events.emit(OUTPUTS_CLEARED)

    def subscribe_outputs(
        self,
        handler: Callable[[FlowOutput], None],
        source_id: Optional[str] = None,
        topic: Optional[str] = None
    ) -> Callable[[], None]:
        """Register a flow output handler, optionally narrowed to a source or topic"""
        tags = {}
        if source_id is not None:
            tags["source_id"] = source_id
        if topic is not None:
            tags["topic"] = topic
        return self.events.subscribe(FLOW_OUTPUT, handler, **tags)

    def get_status(self) -> MonitoringStatus:
        topics = self.statistics.topics()
        return MonitoringStatus(
            monitoring=self.monitoring,
            total_outputs=len(self.history),
            topic_count=len(topics),
            topics=topics,
            monitored_topics=list(self.topics),
            source_filter=self.source_filter
        )

    def get_topic_statistics(self) -> List[TopicStats]:
        return self.statistics.snapshot()

    def get_topic_stats(self, topic: str) -> Optional[TopicStats]:
        return self.statistics.get(topic)

    def get_latest_outputs(self, limit: int = 10) -> List[FlowOutput]:
        """Most recent outputs first"""
        return self.history.latest(limit)

    def get_all_outputs(self) -> List[FlowOutput]:
        return self.history.all()

    def get_outputs_for_source(self, source_id: str) -> List[FlowOutput]:
        return self.history.filter(lambda output: output.source_id == source_id)

    def get_outputs_for_topic(self, topic: str) -> List[FlowOutput]:
        return self.history.filter(lambda output: output.topic == topic)
