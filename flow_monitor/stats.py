"""
Per-topic statistics over observed flow outputs.
"""
from typing import Dict, List, Optional

from .models import FlowOutput, TopicStats


class StatisticsAggregator:
    """
    Running message count and first/last-seen times per topic.

    Readers always get copies, never the live TopicStats entries.
    """

    def __init__(self):
        self._stats: Dict[str, TopicStats] = {}

    def record(self, output: FlowOutput):
        """Account for one output on its topic"""
        stats = self._stats.get(output.topic)
        if stats is None:
            stats = TopicStats(topic=output.topic)
            self._stats[output.topic] = stats

        stats.message_count += 1
        stats.last_seen_at = output.timestamp
        stats.last_output = output
        if stats.first_seen_at is None:
            stats.first_seen_at = output.timestamp

    def get(self, topic: str) -> Optional[TopicStats]:
        stats = self._stats.get(topic)
        return stats.model_copy() if stats is not None else None

    def snapshot(self) -> List[TopicStats]:
        return [stats.model_copy() for stats in self._stats.values()]

    def topics(self) -> List[str]:
        return list(self._stats)

    def clear(self):
        self._stats.clear()

    def __len__(self) -> int:
        return len(self._stats)
