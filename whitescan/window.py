from collections import deque
from typing import Iterator, List

from .models import ScanResult

DEFAULT_CAPACITY = 100
SCROLL_KEEP = 50


class ResultWindow:
    """
    Bounded buffer of the most recent results for live display.
    Display numbers always run 1..N in buffer order.
    """
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items = deque()

    def add(self, result: ScanResult) -> None:
        result.number = len(self._items) + 1
        self._items.append(result)
        if len(self._items) > self.capacity:
            self._items.popleft()
            self._renumber()

    def trim(self, keep: int = SCROLL_KEEP) -> int:
        """Drop the oldest entries down to `keep`; returns how many went."""
        removed = 0
        while len(self._items) > max(0, keep):
            self._items.popleft()
            removed += 1
        if removed:
            self._renumber()
        return removed

    def clear(self) -> None:
        self._items.clear()

    def _renumber(self) -> None:
        for i, item in enumerate(self._items, start=1):
            item.number = i

    def snapshot(self) -> List[ScanResult]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ScanResult]:
        return iter(self._items)
