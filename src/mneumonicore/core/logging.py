"""
Logging setup for the relay process.

One dictConfig covers the REST app and the Socket.IO server. Console output
is colored in debug runs and JSON otherwise. Relay context (socket ids,
document ids, reasons) is passed through ``extra=`` and lands in the JSON
``extra`` object.
"""
import logging
import logging.config
import sys
import json
from datetime import datetime
from typing import Any, Dict, Optional
from pathlib import Path

from ..config import Settings, get_settings

# LogRecord attributes that are not user supplied "extra" fields
_RESERVED_ATTRS = frozenset((
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'message', 'asctime',
))

_ROTATE_BYTES = 10_000_000
_ROTATE_KEEP = 5

# Third-party loggers that only reach the log file, and from which level
_QUIET_LOGGERS = {
    'socketio': 'WARNING',
    'engineio': 'WARNING',
    'sqlalchemy': 'WARNING',
    'aiohttp': 'WARNING',
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with ``extra=`` fields under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__ if exc_type else None,
                'message': str(exc_value) if exc_value else None,
                'traceback': self.formatException(record.exc_info),
            }

        extra = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra:
            entry['extra'] = extra

        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """ANSI-colored level and logger name for a developer terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[90m'

    def format(self, record: logging.LogRecord) -> str:
        # the file handlers see the same record and must stay plain
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.name = f"{self.DIM}{record.name}{self.RESET}"
        return super().format(record)


def get_log_level(level_str: Optional[str] = None) -> int:
    """Numeric level for a name like ``"debug"``; unknown names mean INFO."""
    name = (level_str or get_settings().log_level).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _rotating(filename: Path, formatter: str, level: str) -> Dict[str, Any]:
    return {
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': filename,
        'maxBytes': _ROTATE_BYTES,
        'backupCount': _ROTATE_KEEP,
        'formatter': formatter,
        'level': level,
    }


def build_logging_config(settings: Settings, log_dir: Path) -> Dict[str, Any]:
    """dictConfig for the relay: console, a full log file and an error log."""
    loggers: Dict[str, Any] = {
        '': {
            'handlers': ['console', 'file'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'mneumonicore': {
            'handlers': ['console', 'file', 'error_file'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'uvicorn': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        'uvicorn.access': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
    }
    for name, level in _QUIET_LOGGERS.items():
        loggers[name] = {'handlers': ['file'], 'level': level, 'propagate': False}

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {'()': JSONFormatter},
            'colored': {
                '()': ColoredFormatter,
                'format': '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
                'datefmt': '%H:%M:%S',
            },
            'file': {
                'format': '%(asctime)s | %(levelname)-8s | %(name)-36s | %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'colored' if settings.debug else 'json',
                'stream': sys.stdout,
                'level': get_log_level(settings.log_level),
            },
            'file': _rotating(log_dir / 'mneumonicore.log', 'file', 'DEBUG'),
            'error_file': _rotating(log_dir / 'error.log', 'json', 'ERROR'),
        },
        'loggers': loggers,
    }


def setup_logging(log_dir: Path = Path("logs")) -> None:
    settings = get_settings()
    log_dir.mkdir(exist_ok=True)
    logging.config.dictConfig(build_logging_config(settings, log_dir))

    get_logger('logging').info("Logging configured", extra={
        'log_level': settings.log_level,
        'debug': settings.debug,
        'environment': settings.environment,
    })


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``mneumonicore`` tree, so the error log picks it up."""
    return logging.getLogger(f"mneumonicore.{name}")


class LoggingMiddleware:
    """Logs each REST request and its response status with the elapsed time."""

    def __init__(self, app, logger_name: str = "http"):
        self.app = app
        self.logger = get_logger(logger_name)

    async def __call__(self, scope, receive, send):
        # websocket/lifespan scopes pass through
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = datetime.utcnow()
        request_id = id(scope)
        method, path = scope['method'], scope['path']

        def elapsed_ms() -> float:
            return round((datetime.utcnow() - started).total_seconds() * 1000, 2)

        self.logger.info("HTTP Request", extra={
            'request_id': request_id,
            'method': method,
            'path': path,
            'query_string': scope.get('query_string', b'').decode(),
            'client_ip': scope['client'][0] if scope.get('client') else 'unknown',
        })

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                self.logger.info("HTTP Response", extra={
                    'request_id': request_id,
                    'status_code': message.get('status', 0),
                    'duration_ms': elapsed_ms(),
                    'method': method,
                    'path': path,
                })
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            self.logger.error("HTTP Request Failed", extra={
                'request_id': request_id,
                'method': method,
                'path': path,
                'duration_ms': elapsed_ms(),
                'exception_type': type(exc).__name__,
                'exception_message': str(exc),
            })
            raise
