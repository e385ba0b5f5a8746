"""
Pluggable request/response transformers.

An interceptor sees every request descriptor before it is built, and every raw
response body before its status is validated. It may replace either one, or fail
with a `NetworkError` to abort the call.
"""

from abc import ABC
import asyncio
from collections import deque
import inspect
import json
import logging
import time
from typing import Awaitable, Callable, Deque, Iterable, Optional, Tuple, Union

from . import logger as log
from .errors import DecodingError, NetworkError, NoData, Unknown
from .logger import RequestLogger
from .model import RequestDescriptor, TransportResponse

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class Interceptor(ABC):
    """
    The default implementations pass everything through unchanged.
    """

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        return descriptor

    async def on_response(self, body: bytes, response: TransportResponse) -> bytes:
        return body


class LoggingInterceptor(Interceptor):
    """
    Logs each request with the full URL it resolves to against `base_url`, and
    the status and size of each response.
    """

    def __init__(self, request_logger: RequestLogger, base_url: str = '') -> None:
        self.__logger = request_logger
        self.__base_url = base_url

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        self.__logger.log(log.RequestEvent(method=descriptor.method.value,
                                           url=descriptor.resolve_url(self.__base_url),
                                           headers=descriptor.headers,
                                           body=descriptor.body))
        if descriptor.parameters:
            self.__logger.log(log.debug('Parameters: {}'.format(descriptor.parameters)))
        return descriptor

    async def on_response(self, body: bytes, response: TransportResponse) -> bytes:
        self.__logger.log(log.info('Response: {} - {}'.format(response.status, response.reason)))
        self.__logger.log(log.info('Response Size: {} bytes'.format(len(body))))
        return body


class RateLimitingInterceptor(Interceptor):
    """
    Lets at most `max_requests_per_second` requests through in any trailing
    one-second window.

    Callers over the limit wait (without blocking the loop) until the oldest
    timestamp leaves the window. Waiters queue on the lock in arrival order, so
    nobody is starved.
    """

    window = 1.0

    def __init__(self, max_requests_per_second: int = 10,
                 clock: Callable[[], float] = time.monotonic) -> None:
        if max_requests_per_second < 1:
            raise ValueError('max_requests_per_second must be >= 1')
        self.__max = max_requests_per_second
        self.__clock = clock
        self.__timestamps: Deque[float] = deque(maxlen=max_requests_per_second)
        self.__lock: Optional[asyncio.Lock] = None
        self.__lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def max_requests_per_second(self) -> int:
        return self.__max

    @property
    def timestamps(self) -> Tuple[float, ...]:
        return tuple(self.__timestamps)

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        await self.acquire()
        return descriptor

    async def acquire(self) -> None:
        # A lock only works on the loop it first waited on.
        loop = asyncio.get_running_loop()
        if self.__lock is None or self.__lock_loop is not loop:
            self.__lock = asyncio.Lock()
            self.__lock_loop = loop
        async with self.__lock:
            while True:
                now = self.__clock()
                self._expire(now)
                if len(self.__timestamps) < self.__max:
                    self.__timestamps.append(now)
                    return
                wait = self.__timestamps[0] + self.window - now
                logger.debug('Rate limit reached, waiting {:.3f}s'.format(wait))
                await asyncio.sleep(max(wait, 0.001))

    def _expire(self, now: float) -> None:
        while self.__timestamps and self.__timestamps[0] <= now - self.window:
            self.__timestamps.popleft()


class ResponseValidationInterceptor(Interceptor):
    async def on_response(self, body: bytes, response: TransportResponse) -> bytes:
        if not body:
            raise NoData()
        try:
            json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise DecodingError('Invalid JSON response')
        return body


class AuthenticationInterceptor(Interceptor):
    """
    Attaches a bearer token to every request, when one is available.

    @param token_provider
      A callable, sync or async, returning the current token or `None`.
    """

    def __init__(self, token_provider: TokenProvider) -> None:
        self.__token_provider = token_provider

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        token = self.__token_provider()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            return descriptor
        return descriptor.with_header('Authorization', 'Bearer {}'.format(token))


class InterceptorChain:
    """
    Runs interceptors in the order they were given, for both phases.
    """

    def __init__(self, interceptors: Iterable[Interceptor] = ()) -> None:
        self.__interceptors = tuple(interceptors)

    @property
    def interceptors(self) -> Tuple[Interceptor, ...]:
        return self.__interceptors

    def __len__(self):
        return len(self.__interceptors)

    async def apply_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        for interceptor in self.__interceptors:
            descriptor = await self._call(interceptor, interceptor.on_request(descriptor))
        return descriptor

    async def apply_response(self, body: bytes, response: TransportResponse) -> bytes:
        for interceptor in self.__interceptors:
            body = await self._call(interceptor, interceptor.on_response(body, response))
        return body

    @staticmethod
    async def _call(interceptor: Interceptor, awaitable):
        try:
            return await awaitable
        except NetworkError:
            raise
        except Exception as e:
            logger.exception('Interceptor {} failed'.format(type(interceptor).__name__))
            raise Unknown('{}: {}'.format(type(interceptor).__name__, e)) from e
