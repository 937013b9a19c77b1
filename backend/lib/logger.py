"""
Logging Utility for the Backend

Structured, colour-coded console logging:
- Level colours and icons (component icons for engine loggers)
- Pretty printing of attached data, including `extra={"data": ...}`
- Section banners for startup/shutdown
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray

    LEVELS = {
        'DEBUG': DEBUG,
        'INFO': INFO,
        'WARNING': WARNING,
        'ERROR': ERROR,
        'CRITICAL': CRITICAL,
    }


class ColoredFormatter(logging.Formatter):
    """Formatter with colours, icons and attached-data rendering."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last part of the logger name
    COMPONENT_ICONS = {
        'main': '🌐',
        'session_lifecycle': '💾',
        'offline_queue': '📴',
        'offline_sync': '🔄',
        'connectivity': '📶',
        'study_plan_scheduler': '📋',
        'practice_questions': '📚',
        'response_dispatcher': '🤖',
        'response_generation': '🤖',
        'engine': '⚙️',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.split('.')[-1]
        icon = self.COMPONENT_ICONS.get(component, self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        level = self._paint(f"{record.levelname:8s}", Colors.LEVELS.get(record.levelname, Colors.RESET))

        formatted = (
            f"{self._paint(f'[{timestamp}]', Colors.TIMESTAMP)} {icon} {level} "
            f"{self._paint(record.name, Colors.BOLD)} | {record.getMessage()}"
        )

        data = getattr(record, 'data', None)
        if data:
            formatted += "\n" + format_data(data, use_colors=self.use_colors)

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def format_data(data: Any, indent: int = 2, use_colors: bool = False) -> str:
    """Render nested dicts/lists as indented text. Long lists are truncated."""
    pad = ' ' * indent
    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            key_text = f"{Colors.KEY}{key}{Colors.RESET}" if use_colors else str(key)
            if isinstance(value, (dict, list)):
                lines.append(f"{pad}{key_text}:\n{format_data(value, indent + 2, use_colors)}")
            else:
                lines.append(f"{pad}{key_text}: {value}")
        return "\n".join(lines)
    if isinstance(data, list):
        shown = data[:3] if len(data) > 5 else data
        lines = []
        for item in shown:
            if isinstance(item, (dict, list)):
                lines.append(f"{pad}-\n{format_data(item, indent + 2, use_colors)}")
            else:
                lines.append(f"{pad}- {item}")
        if len(shown) < len(data):
            lines.append(f"{pad}... ({len(data)} items total)")
        return "\n".join(lines)
    return f"{pad}{data}"


class StructuredLogger:
    """Logger wrapper with data attachments and section banners."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, exc_info=None):
        extra = {"data": data} if data else None
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a banner, e.g. for startup or shutdown."""
        separator = "=" * 80
        body = f"\n{separator}\n📋 {title.upper()}"
        if data:
            body += "\n" + format_data(data)
        self.logger.info(f"{body}\n{separator}")

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        if error:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self._log(logging.ERROR, message, data, exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"✅ {message}", data)

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Log an incoming request."""
        request_data = {"method": method, "path": path}
        if user_id:
            request_data["user_id"] = user_id[:20] + "..." if len(user_id) > 20 else user_id
        if data:
            request_data.update(data)
        self._log(logging.INFO, f"📥 REQUEST: {method} {path}", request_data)

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        """Log an outgoing response."""
        response_data = {"status": status, "path": path}
        if duration is not None:
            response_data["duration_ms"] = f"{duration * 1000:.2f}"
        if data:
            response_data.update(data)
        self._log(logging.INFO, f"📤 RESPONSE: {status} {path}", response_data)


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the coloured console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'urllib3', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
