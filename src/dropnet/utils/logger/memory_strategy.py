from collections import deque

from .log_storage_strategy import LogStorageStrategy


class MemoryStrategy(LogStorageStrategy):
    """
    Keeps log records in memory. Used by tests and by hosts that embed the
    engine and want to show the run log themselves.
    """

    def __init__(self, capacity=None):
        self.capacity = capacity
        # oldest records fall off once capacity is reached
        self.records = deque(maxlen=capacity)

    def store_log(self, message, priority, timestamp):
        self.records.append((timestamp, priority, message))

    def flush_logs(self):
        self.records.clear()

    def messages(self, priority=None):
        """Return stored messages, optionally only those of one priority name."""
        return [msg for _, prio, msg in self.records if priority is None or prio == priority]
