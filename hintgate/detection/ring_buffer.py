"""Short-term, time-windowed record of recent detections."""
from collections import deque
from typing import Deque, List
from hintgate.detection.models import RecentDetection


class RecentDetectionBuffer:
    """
    Bounded, arrival-ordered detection history used for multi-hit corroboration.

    Entries older than ``window_ms`` are dropped on every access, and the
    oldest entry is evicted when the buffer would exceed ``capacity``.
    """

    def __init__(self, capacity: int = 10, window_ms: float = 1500.0):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.window_ms = window_ms
        self._entries: Deque[RecentDetection] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def compact(self, now_ms: float) -> None:
        if any(now_ms - e.detected_at >= self.window_ms for e in self._entries):
            self._entries = deque(e for e in self._entries if now_ms - e.detected_at < self.window_ms)

    def add(self, detection: RecentDetection, now_ms: float) -> None:
        self.compact(now_ms)
        self._entries.append(detection)
        while len(self._entries) > self.capacity:
            self._entries.popleft()

    def count_hits(self, label_id: str, now_ms: float) -> int:
        self.compact(now_ms)
        return sum(1 for e in self._entries if e.label_id == label_id)

    def snapshot(self) -> List[RecentDetection]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
