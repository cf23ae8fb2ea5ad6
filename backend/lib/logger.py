"""
Console Logging for the Backend

- Color-coded levels when attached to a terminal
- Per-component icons (keyed by the last part of the logger name)
- Section banners for request handling
"""

import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional, Union


class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DEBUG = '\033[36m'
    INFO = '\033[32m'
    WARNING = '\033[33m'
    ERROR = '\033[31m'
    CRITICAL = '\033[35m'
    SECTION = '\033[94m'
    KEY = '\033[93m'
    TIMESTAMP = '\033[90m'


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """`[HH:MM:SS.mmm] icon LEVEL logger | message`"""

    LEVEL_ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    COMPONENT_ICONS = {
        'main': '🌐',
        'session_router': '🧭',
        'context_store': '💾',
        'evaluator': '📊',
        'response_shaper': '🎭',
        'structured_reply': '🧩',
        'providers': '🤖',
        'usage_tracker': '📈',
        'speech': '🔊',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.split('.')[-1]
        icon = self.COMPONENT_ICONS.get(component, self.LEVEL_ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        level = self._paint(LEVEL_COLORS.get(record.levelname, Colors.RESET), f"{record.levelname:8s}")

        formatted = (
            f"{self._paint(Colors.TIMESTAMP, f'[{timestamp}]')} {icon} {level} "
            f"{self._paint(Colors.BOLD, record.name)} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def format_fields(data: Dict[str, Any], indent: int = 2) -> str:
    """One `key: value` line per field; long strings and lists are shortened."""
    lines = []
    for key, value in data.items():
        if isinstance(value, str) and len(value) > 120:
            value = value[:117] + "..."
        elif isinstance(value, list) and len(value) > 5:
            value = f"{value[:3]} ... ({len(value)} items total)"
        lines.append(f"{' ' * indent}{key}: {value}")
    return "\n".join(lines)


class StructuredLogger:
    """Thin wrapper adding sections and request/response lines to a logger."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        return f"{message}\n{format_fields(data)}" if data else message

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        separator = "=" * 60
        self.logger.info(self._with_data(f"\n{separator}\n📋 {title.upper()}\n{separator}", data))

    def subsection(self, title: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"  → {title}", data))

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        if error:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self.logger.error(self._with_data(message, data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def request(self, method: str, path: str, session_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        fields = {"session_id": session_id[:20] + "..." if session_id and len(session_id) > 20 else session_id}
        fields.update(data or {})
        self.logger.info(self._with_data(f"📥 REQUEST: {method} {path}", fields))

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        fields = {"duration_ms": f"{duration * 1000:.2f}" if duration is not None else None}
        fields.update(data or {})
        self.logger.info(self._with_data(f"📤 RESPONSE: {status} {path}", fields))


def setup_logging(level: Optional[Union[int, str]] = None, use_colors: bool = True) -> logging.Logger:
    """Install the colored console handler on the root logger (level from LOG_LEVEL by default)."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    for noisy in ('asyncio', 'httpx', 'httpcore', 'urllib3', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name, logging.getLogger(name))
