"""
Topic discovery against the flow topic naming convention.
A flow topic is named "<source_id>-topic".
"""
import logging
from typing import List, Optional

from .broker import BrokerClient

logger = logging.getLogger(__name__)

FLOW_TOPIC_SUFFIX = "-topic"


def is_flow_topic(topic: str) -> bool:
    return topic.endswith(FLOW_TOPIC_SUFFIX)


def topic_for_source(source_id: str) -> str:
    return f"{source_id}{FLOW_TOPIC_SUFFIX}"


class TopicCatalog:
    """Lists the flow topics currently present on the broker"""

    def __init__(self, broker: BrokerClient):
        self.broker = broker

    async def list_flow_topics(self, source_filter: Optional[str] = None) -> List[str]:
        """
        Query the broker and keep only flow topics.

        Args:
            source_filter: Optional source id; narrows the result to
                "<source_filter>-topic" if that topic exists

        Returns:
            Matching topic names (empty when nothing matches)
        """
        all_topics = await self.broker.list_topics()
        flow_topics = [t for t in all_topics if is_flow_topic(t)]

        if source_filter:
            wanted = topic_for_source(source_filter)
            flow_topics = [t for t in flow_topics if t == wanted][:1]

        logger.debug(f"Found {len(flow_topics)} flow topics out of {len(all_topics)}")
        return flow_topics
