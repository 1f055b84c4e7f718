"""Log handlers for chainswap.

Console, file and in-memory handlers. The memory handler is what tests use
to assert on emitted protocol events.
"""

import os
import sys
import threading
from typing import Any, Dict, List, Optional

from .core import LogEntry, LogHandler, LogLevel


class ConsoleHandler(LogHandler):
    """Console log handler."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stdout
        self._lock = threading.RLock()

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to console."""
        with self._lock:
            self.stream.write(self.render(entry) + "\n")
            self.stream.flush()


class FileHandler(LogHandler):
    """File log handler."""

    def __init__(
        self,
        filename: str,
        mode: str = "a",
        encoding: str = "utf-8",
        delay: bool = False,
    ):
        super().__init__()
        self.filename = filename
        self.mode = mode
        self.encoding = encoding
        self.stream = None
        self._lock = threading.RLock()

        if not delay:
            self._open()

    def _open(self) -> None:
        """Open file stream."""
        if self.stream is None:
            directory = os.path.dirname(self.filename)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self.stream = open(self.filename, self.mode, encoding=self.encoding)

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to file."""
        with self._lock:
            if self.stream is None:
                self._open()
            self.stream.write(self.render(entry) + "\n")
            self.stream.flush()

    def close(self) -> None:
        """Close handler."""
        with self._lock:
            if self.stream is not None:
                self.stream.close()
                self.stream = None


class MemoryHandler(LogHandler):
    """Memory log handler."""

    def __init__(self, max_size: int = 1000):
        super().__init__()
        self.max_size = max_size
        self.buffer: List[Dict[str, Any]] = []
        self._lock = threading.RLock()

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to memory."""
        with self._lock:
            self.buffer.append(
                {
                    "timestamp": entry.timestamp,
                    "level": entry.level.value,
                    "message": entry.message,
                    "logger_name": entry.logger_name,
                    "context": entry.context.to_dict(),
                    "extra": entry.extra,
                    "formatted": self.render(entry),
                }
            )

            if len(self.buffer) > self.max_size:
                self.buffer.pop(0)

    def get_logs(
        self, level: Optional[LogLevel] = None, channel_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get logs from memory, optionally filtered by level or channel."""
        with self._lock:
            logs = self.buffer.copy()
        if level is not None:
            logs = [log for log in logs if log["level"] == level.value]
        if channel_id is not None:
            logs = [log for log in logs if log["context"]["channel_id"] == channel_id]
        return logs

    def clear_logs(self) -> None:
        """Clear all logs from memory."""
        with self._lock:
            self.buffer.clear()

    def close(self) -> None:
        """Close handler."""
        self.clear_logs()
