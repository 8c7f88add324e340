"""
Bounded history of the most recent flow outputs.
"""
from collections import deque
from itertools import islice
from typing import Callable, Deque, List

from .models import FlowOutput


class HistoryBuffer:
    """
    Insertion-ordered buffer holding at most `capacity` outputs.

    Appending at capacity evicts the oldest entry.
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: Deque[FlowOutput] = deque(maxlen=capacity)

    def append(self, output: FlowOutput):
        self._items.append(output)

    def latest(self, n: int) -> List[FlowOutput]:
        """Up to n most recent outputs, newest first"""
        if n <= 0:
            return []
        return list(islice(reversed(self._items), n))

    def all(self) -> List[FlowOutput]:
        """All outputs, oldest first"""
        return list(self._items)

    def filter(self, predicate: Callable[[FlowOutput], bool]) -> List[FlowOutput]:
        return [output for output in self._items if predicate(output)]

    def clear(self):
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
