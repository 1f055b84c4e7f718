"""Log filters for chainswap."""

from typing import Optional

from .core import LogEntry, LogFilter, LogLevel


class LevelFilter(LogFilter):
    """Filter logs by level."""

    def __init__(self, min_level: LogLevel, max_level: LogLevel = None):
        self.min_level = min_level
        self.max_level = max_level or LogLevel.FATAL

    def filter(self, entry: LogEntry) -> bool:
        """Filter log entry by level."""
        return self.min_level.rank <= entry.level.rank <= self.max_level.rank


class ContextFilter(LogFilter):
    """Filter logs by swap context."""

    def __init__(
        self,
        ledger_id: Optional[int] = None,
        channel_id: Optional[str] = None,
        actor: Optional[str] = None,
        component: Optional[str] = None,
    ):
        self.ledger_id = ledger_id
        self.channel_id = channel_id
        self.actor = actor
        self.component = component

    def filter(self, entry: LogEntry) -> bool:
        """Filter log entry by context."""
        ctx = entry.context

        if self.ledger_id is not None and ctx.ledger_id != self.ledger_id:
            return False

        if self.channel_id and ctx.channel_id != self.channel_id:
            return False

        if self.actor and ctx.actor != self.actor:
            return False

        if self.component and ctx.component != self.component:
            return False

        return True
