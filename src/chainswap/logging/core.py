"""Core logging interfaces and data structures for chainswap.

This module defines the structured logging entries, the context attached to
them (ledger, channel, turn, actor) and the manager that routes entries to
handlers.
"""

import json
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(Enum):
    """Log levels."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    FATAL = "fatal"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {level: i for i, level in enumerate(LogLevel)}


@dataclass
class LogContext:
    """Log context information."""

    ledger_id: Optional[int] = None
    channel_id: Optional[str] = None
    turn_number: Optional[int] = None
    actor: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "ledger_id": self.ledger_id,
            "channel_id": self.channel_id,
            "turn_number": self.turn_number,
            "actor": self.actor,
            "component": self.component,
            "operation": self.operation,
            "metadata": self.metadata,
        }

    def merged_with(self, base: "LogContext") -> "LogContext":
        """Fill unset fields from a base context."""
        merged = LogContext()
        for f in fields(self):
            if f.name == "metadata":
                continue
            value = getattr(self, f.name)
            setattr(merged, f.name, value if value is not None else getattr(base, f.name))
        merged.metadata = {**base.metadata, **self.metadata}
        return merged


@dataclass
class LogEntry:
    """Log entry data structure."""

    timestamp: float
    level: LogLevel
    message: str
    logger_name: str
    context: LogContext
    exception: Optional[BaseException] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    thread_id: Optional[int] = None
    process_id: Optional[int] = None

    def __post_init__(self):
        if self.thread_id is None:
            self.thread_id = threading.get_ident()
        if self.process_id is None:
            self.process_id = os.getpid()

    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary."""
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "logger_name": self.logger_name,
            "context": self.context.to_dict(),
            "exception": str(self.exception) if self.exception else None,
            "extra": self.extra,
            "thread_id": self.thread_id,
            "process_id": self.process_id,
        }

    def to_json(self) -> str:
        """Convert log entry to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class LogConfig:
    """Log configuration."""

    def __init__(
        self,
        name: str = "chainswap",
        level: LogLevel = LogLevel.INFO,
        format_type: str = "json",
        handlers: List[str] = None,
        log_file: Optional[str] = None,
        memory_size: int = 1000,
    ):
        self.name = name
        self.level = level
        self.format_type = format_type
        self.handlers = handlers or ["console"]
        self.log_file = log_file
        self.memory_size = memory_size

        self.handler_configs: Dict[str, Dict[str, Any]] = {}

    def add_handler_config(self, name: str, config: Dict[str, Any]) -> None:
        """Add handler configuration."""
        self.handler_configs[name] = config


class LogFilter(ABC):
    """Abstract log filter."""

    @abstractmethod
    def filter(self, entry: LogEntry) -> bool:
        """Filter log entry. Return True to allow, False to block."""
        pass


class LogFormatter(ABC):
    """Abstract log formatter."""

    @abstractmethod
    def format(self, entry: LogEntry) -> str:
        """Format log entry."""
        pass


class LogHandler(ABC):
    """Abstract log handler."""

    def __init__(self, name: str = None):
        self.name = name or self.__class__.__name__
        self.formatter: Optional[LogFormatter] = None
        self.filters: List[LogFilter] = []
        self.level: LogLevel = LogLevel.TRACE
        self._lock = threading.RLock()

    def set_formatter(self, formatter: LogFormatter) -> None:
        """Set formatter."""
        with self._lock:
            self.formatter = formatter

    def add_filter(self, filter_obj: LogFilter) -> None:
        """Add filter."""
        with self._lock:
            self.filters.append(filter_obj)

    def set_level(self, level: LogLevel) -> None:
        """Set log level."""
        with self._lock:
            self.level = level

    def should_handle(self, entry: LogEntry) -> bool:
        """Check if handler should handle the entry."""
        with self._lock:
            if entry.level.rank < self.level.rank:
                return False

            for filter_obj in self.filters:
                if not filter_obj.filter(entry):
                    return False

            return True

    def render(self, entry: LogEntry) -> str:
        if self.formatter:
            return self.formatter.format(entry)
        return f"{entry.timestamp} [{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"

    @abstractmethod
    def emit(self, entry: LogEntry) -> None:
        """Emit log entry."""
        pass

    def handle(self, entry: LogEntry) -> None:
        """Handle log entry."""
        if self.should_handle(entry):
            self.emit(entry)

    def close(self) -> None:
        pass


class LogManager:
    """Log manager for orchestrating logging operations."""

    def __init__(self, config: LogConfig = None):
        self.config = config or LogConfig()
        self.loggers: Dict[str, "ChainSwapLogger"] = {}
        self.handlers: Dict[str, LogHandler] = {}
        self._lock = threading.RLock()
        self._context = LogContext()

        self.configure(self.config)

    def configure(self, config: LogConfig) -> None:
        """Apply a configuration, replacing handlers but keeping loggers."""
        from .formatters import ColoredFormatter, JSONFormatter, TextFormatter
        from .handlers import ConsoleHandler, FileHandler, MemoryHandler

        with self._lock:
            for handler in self.handlers.values():
                handler.close()
            self.handlers.clear()
            self.config = config

            if config.format_type == "text":
                formatter = TextFormatter()
            elif config.format_type == "colored":
                formatter = ColoredFormatter()
            else:
                formatter = JSONFormatter()

            for name in config.handlers:
                if name == "console":
                    handler = ConsoleHandler()
                elif name == "memory":
                    handler = MemoryHandler(max_size=config.memory_size)
                elif name == "file" and config.log_file:
                    handler = FileHandler(config.log_file)
                else:
                    continue
                handler.set_formatter(formatter)
                handler.set_level(config.level)
                self.handlers[name] = handler

            for logger in self.loggers.values():
                logger.set_level(config.level)

    def get_logger(self, name: str) -> "ChainSwapLogger":
        """Get logger."""
        with self._lock:
            if name not in self.loggers:
                logger = ChainSwapLogger(name, self)
                logger.set_level(self.config.level)
                self.loggers[name] = logger
            return self.loggers[name]

    def add_handler(self, name: str, handler: LogHandler) -> None:
        """Add handler."""
        with self._lock:
            self.handlers[name] = handler

    def remove_handler(self, name: str) -> None:
        """Remove handler."""
        with self._lock:
            handler = self.handlers.pop(name, None)
            if handler is not None:
                handler.close()

    def get_handler(self, name: str) -> Optional[LogHandler]:
        with self._lock:
            return self.handlers.get(name)

    def set_context(self, context: LogContext) -> None:
        """Set global context."""
        with self._lock:
            self._context = context

    def get_context(self) -> LogContext:
        """Get global context."""
        with self._lock:
            return self._context

    def log(
        self,
        level: LogLevel,
        message: str,
        logger_name: str = "root",
        context: LogContext = None,
        exception: BaseException = None,
        extra: Dict[str, Any] = None,
    ) -> None:
        """Log a message."""
        with self._lock:
            if context is None:
                context = self._context
            else:
                context = context.merged_with(self._context)

            entry = LogEntry(
                timestamp=time.time(),
                level=level,
                message=message,
                logger_name=logger_name,
                context=context,
                exception=exception,
                extra=extra or {},
            )

            for handler in list(self.handlers.values()):
                handler.handle(entry)

    def shutdown(self) -> None:
        """Shutdown log manager."""
        with self._lock:
            for handler in self.handlers.values():
                handler.close()
            self.handlers.clear()


class ChainSwapLogger:
    """chainswap logger implementation."""

    def __init__(self, name: str, manager: LogManager):
        self.name = name
        self.manager = manager
        self.level = LogLevel.INFO
        self._lock = threading.RLock()

    def set_level(self, level: LogLevel) -> None:
        """Set log level."""
        with self._lock:
            self.level = level

    def is_enabled_for(self, level: LogLevel) -> bool:
        """Check if logger is enabled for level."""
        with self._lock:
            return level.rank >= self.level.rank

    def log(
        self,
        level: LogLevel,
        message: str,
        context: LogContext = None,
        exception: BaseException = None,
        extra: Dict[str, Any] = None,
    ) -> None:
        """Log a message."""
        if self.is_enabled_for(level):
            self.manager.log(
                level=level,
                message=message,
                logger_name=self.name,
                context=context,
                exception=exception,
                extra=extra,
            )

    def trace(self, message: str, **kwargs) -> None:
        """Log trace message."""
        self.log(LogLevel.TRACE, message, **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self.log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self.log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self.log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log error message."""
        self.log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs) -> None:
        """Log critical message."""
        self.log(LogLevel.CRITICAL, message, **kwargs)

    def fatal(self, message: str, **kwargs) -> None:
        """Log fatal message."""
        self.log(LogLevel.FATAL, message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log exception message."""
        exc_info = sys.exc_info()
        if exc_info[0] is not None:
            kwargs["exception"] = exc_info[1]
        self.log(LogLevel.ERROR, message, **kwargs)


# Global log manager instance
_global_manager: Optional[LogManager] = None


def get_log_manager() -> LogManager:
    """Get the global log manager, creating it on first use."""
    global _global_manager
    if _global_manager is None:
        _global_manager = LogManager()
    return _global_manager


def get_logger(name: str = "root") -> ChainSwapLogger:
    """Get logger instance."""
    return get_log_manager().get_logger(name)


def setup_logging(config: LogConfig) -> LogManager:
    """Setup logging with configuration.

    Loggers obtained before this call keep working: the global manager is
    reconfigured in place.
    """
    manager = get_log_manager()
    manager.configure(config)
    return manager


def shutdown_logging() -> None:
    """Shutdown logging."""
    global _global_manager
    if _global_manager is not None:
        _global_manager.shutdown()
