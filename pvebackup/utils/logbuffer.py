"""In-memory buffer of recent log lines for failure reports."""

import logging
from collections import deque
from typing import List


class RecentLogBuffer(logging.Handler):
    """
    Logging handler that keeps the last N formatted records.
    """

    def __init__(self, capacity: int = 50, level: int = logging.INFO):
        super().__init__(level)
        self._lines = deque(maxlen=capacity)
        self.setFormatter(logging.Formatter('[%(asctime)s] %(message)s', '%Y-%m-%d %H:%M:%S'))

    def emit(self, record: logging.LogRecord):
        try:
            self._lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    @property
    def lines(self) -> List[str]:
        return list(self._lines)
