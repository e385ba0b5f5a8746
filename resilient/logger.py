"""
Level-filtered, structured logging of pipeline events.

Events are formatted on the caller's thread but handed to the stdlib logging
handlers through a queue, so a slow handler never holds up a request.
"""

from dataclasses import dataclass
from enum import IntEnum
import logging
import logging.handlers
import queue
from typing import Mapping, Optional, Union

from .errors import NetworkError
from .util import preview

VERBOSE = 5
logging.addLevelName(VERBOSE, 'VERBOSE')

logger = logging.getLogger(__name__)


class LogLevel(IntEnum):
    VERBOSE = 0
    DEBUG = 1
    INFO = 2
    WARNING = 3
    ERROR = 4

    @property
    def stdlib_level(self) -> int:
        return {
            LogLevel.VERBOSE: VERBOSE,
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]

    @classmethod
    def parse(cls, name: Union[str, 'LogLevel']) -> 'LogLevel':
        if isinstance(name, LogLevel):
            return name
        return cls[name.upper()]


@dataclass(frozen=True)
class RequestEvent:
    method: str
    url: str
    headers: Optional[Mapping[str, str]] = None
    body: Optional[bytes] = None
    level = LogLevel.INFO


@dataclass(frozen=True)
class ResponseEvent:
    body: bytes
    model: Optional[str] = None
    level = LogLevel.INFO


@dataclass(frozen=True)
class ErrorEvent:
    error: NetworkError
    level = LogLevel.ERROR


@dataclass(frozen=True)
class MessageEvent:
    level: LogLevel
    message: str


LogEvent = Union[RequestEvent, ResponseEvent, ErrorEvent, MessageEvent]


def info(message: str) -> MessageEvent:
    return MessageEvent(LogLevel.INFO, message)


def warning(message: str) -> MessageEvent:
    return MessageEvent(LogLevel.WARNING, message)


def debug(message: str) -> MessageEvent:
    return MessageEvent(LogLevel.DEBUG, message)


def verbose(message: str) -> MessageEvent:
    return MessageEvent(LogLevel.VERBOSE, message)


class RequestLogger:
    """
    Emits pipeline events to a stdlib logger, dropping anything below the
    current level.

    @param level
      The minimum level of events that get emitted.
    @param name
      The name of the stdlib logger the events end up in.
    @param handlers
      The handlers that actually write records. They run on a background
      listener thread. When omitted, records propagate to the logger's ancestors
      as usual.
    """

    def __init__(self, level: LogLevel = LogLevel.DEBUG, name: str = 'resilient.network',
                 handlers=None) -> None:
        self.__level = LogLevel.parse(level)
        self.__target = logging.getLogger(name)
        self.__target.setLevel(VERBOSE)
        self.__queue = queue.SimpleQueue()
        self.__queue_handler = logging.handlers.QueueHandler(self.__queue)
        if handlers is None:
            handlers = [_Forwarder(self.__target)]
        self.__listener = logging.handlers.QueueListener(self.__queue, *handlers, respect_handler_level=True)
        self.__started = False

    @property
    def level(self) -> LogLevel:
        return self.__level

    def set_level(self, level: LogLevel) -> None:
        self.__level = LogLevel.parse(level)

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level >= self.__level

    def start(self) -> None:
        if not self.__started:
            self.__listener.start()
            self.__started = True

    def stop(self) -> None:
        """
        Flush any queued records and stop the listener thread.
        """
        if self.__started:
            self.__listener.stop()
            self.__started = False

    def log(self, event: LogEvent) -> None:
        if not self.is_enabled_for(event.level):
            return
        self.start()
        try:
            record = self.__target.makeRecord(self.__target.name, event.level.stdlib_level, __file__, 0,
                                              self.format(event), None, None)
            self.__queue_handler.handle(record)
        except Exception:
            # Logging must never take down a request.
            logger.debug('Dropping a log event that could not be formatted', exc_info=True)

    def format(self, event: LogEvent) -> str:
        if isinstance(event, RequestEvent):
            return self._format_request(event)
        if isinstance(event, ResponseEvent):
            return self._format_response(event)
        if isinstance(event, ErrorEvent):
            return 'ERROR: {} (Code: {})'.format(event.error.message, event.error.code)
        return event.message

    def _format_request(self, event: RequestEvent) -> str:
        lines = ['REQUEST:', '{} {}'.format(event.method, event.url)]
        if event.headers:
            lines.append('Headers:')
            lines.extend('   {}: {}'.format(k, v) for k, v in event.headers.items())
        if event.body:
            lines.append('Body ({} bytes):'.format(len(event.body)))
            lines.append('   ' + preview(event.body))
        return '\n'.join(lines)

    def _format_response(self, event: ResponseEvent) -> str:
        lines = ['RESPONSE:', 'Size: {} bytes'.format(len(event.body))]
        if event.model:
            lines.append('Model: {}'.format(event.model))
        if self.__level == LogLevel.VERBOSE:
            lines.append('Content:')
            lines.append(preview(event.body, limit=len(event.body)))
        return '\n'.join(lines)


class _Forwarder(logging.Handler):
    """
    Hands records taken off the queue to the target logger's handler chain.
    """

    def __init__(self, target: logging.Logger) -> None:
        super().__init__()
        self.__target = target

    def emit(self, record: logging.LogRecord) -> None:
        self.__target.handle(record)
