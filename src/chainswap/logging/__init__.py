"""chainswap logging system.

Structured logging with per-entry swap context (ledger, channel, turn,
actor), JSON/text/colored formatting and console, file and memory handlers.
"""

from .core import (
    ChainSwapLogger,
    LogConfig,
    LogContext,
    LogEntry,
    LogFilter,
    LogFormatter,
    LogHandler,
    LogLevel,
    LogManager,
    get_log_manager,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .filters import ContextFilter, LevelFilter
from .formatters import ColoredFormatter, JSONFormatter, TextFormatter
from .handlers import ConsoleHandler, FileHandler, MemoryHandler

__all__ = [
    # Core
    "ChainSwapLogger",
    "LogConfig",
    "LogContext",
    "LogEntry",
    "LogFilter",
    "LogFormatter",
    "LogHandler",
    "LogLevel",
    "LogManager",
    "get_log_manager",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
    # Filters
    "ContextFilter",
    "LevelFilter",
    # Formatters
    "ColoredFormatter",
    "JSONFormatter",
    "TextFormatter",
    # Handlers
    "ConsoleHandler",
    "FileHandler",
    "MemoryHandler",
]
