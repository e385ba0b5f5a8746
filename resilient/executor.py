"""
The request executor: turns a request descriptor into decoded data or a
`NetworkError`.

Each call goes through: connectivity check, request interceptors, request
building, an attempt loop (transport call, response interceptors, status
validation, cache store), then decoding. Only the transport call is retried; the
interceptors' request phase runs once per call.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Type, TypeVar
from urllib.parse import urlsplit

from . import logger as log
from .cache import FileCache, MemoryCache, ResponseCache
from .config import NetworkConfiguration
from .connectivity import ConnectivityMonitor
from .errors import Cancelled, DecodingError, EncodingError, InvalidURL, NetworkError, NoConnectivity, \
    error_for_status, map_exception
from .interceptors import (AuthenticationInterceptor, Interceptor, InterceptorChain, LoggingInterceptor,
                           RateLimitingInterceptor, ResponseValidationInterceptor, TokenProvider)
from .logger import LogLevel, RequestLogger
from .model import CachePolicy, HttpMethod, RequestDescriptor, TransportRequest, TransportResponse
from .retry import RetryPolicy, is_retryable
from .transport import RequestsTransport, Transport
from .util import DataclassJSONDecoder

T = TypeVar('T')

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
}


class NetworkService:
    """
    Executes requests with connectivity gating, interceptors, retries and caching.

    All collaborators are passed in explicitly. The in-flight registry is only ever
    touched from the event loop's thread, so `cancel()` and `cancel_all()` must be
    called from there too.

    @param configuration
      Base URL, timeout, retry and caching options.
    @param transport
      Sends built requests. Defaults to a `requests` backed transport.
    @param interceptors
      Applied in the given order, for both the request and the response phase.
    @param monitor
      Gates every call on connectivity. Without one, the network is assumed reachable.
    @param request_logger
      Receives pipeline events when `configuration.enable_logging` is set.
    @param cache
      Receives successful GET responses when `configuration.enable_caching` is set.
    @param retry_policy
      Decides the wait between attempts. Defaults to the configured policy.
    """

    def __init__(self,
                 configuration: NetworkConfiguration,
                 transport: Optional[Transport] = None,
                 interceptors: Iterable[Interceptor] = (),
                 monitor: Optional[ConnectivityMonitor] = None,
                 request_logger: Optional[RequestLogger] = None,
                 cache: Optional[ResponseCache] = None,
                 retry_policy: Optional[RetryPolicy] = None) -> None:
        self.__configuration = configuration
        self.__transport = transport if transport is not None else RequestsTransport()
        self.__chain = InterceptorChain(interceptors)
        self.__monitor = monitor
        self.__logger = request_logger
        self.__cache = cache
        self.__retry_policy = retry_policy if retry_policy is not None else configuration.retry_policy()
        self.__active: Dict[str, asyncio.Task] = {}

    @property
    def configuration(self) -> NetworkConfiguration:
        return self.__configuration

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self.__cache

    @property
    def active_requests(self) -> int:
        return len(self.__active)

    # region Public API

    async def execute(self, descriptor: RequestDescriptor, result_type: Type[T]) -> T:
        """
        Execute `descriptor` and decode the JSON response into `result_type`.

        @throws NetworkError
          The single terminal failure of the call. A body that does not decode
          into `result_type` is a `DecodingError` and is never retried.
        """
        body = await self.execute_raw(descriptor)
        model = getattr(result_type, '__name__', str(result_type))
        try:
            value = json.loads(body, cls=DataclassJSONDecoder, class_type=result_type)
        except Exception as e:
            error = DecodingError(str(e))
            self._log(log.ErrorEvent(error))
            raise error from e
        self._log(log.ResponseEvent(body=body, model=model))
        return value

    async def execute_raw(self, descriptor: RequestDescriptor) -> bytes:
        """
        Execute `descriptor` and return the validated response body.
        """
        if self.__monitor is not None and not await self.__monitor.is_connected():
            error = NoConnectivity()
            self._log(log.ErrorEvent(error))
            raise error

        decorated = await self.__chain.apply_request(descriptor)
        request = self._build(decorated)

        if decorated.prefer_cache and self._is_cachable(decorated):
            entry = await self.__cache.retrieve(request)
            if entry is not None:
                self._log(log.debug('Serving {} {} from cache'.format(request.method, request.url)))
                return entry.payload

        task = asyncio.ensure_future(self._attempt_loop(request, decorated.cache_policy))
        self._register(request.signature, task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            # Whoever awaits us was cancelled; take the in-flight request down too.
            task.cancel()
            raise
        finally:
            self._unregister(request.signature, task)

        if task.cancelled():
            error = Cancelled()
            self._log(log.ErrorEvent(error))
            raise error
        return task.result()

    def cancel(self, descriptor: RequestDescriptor) -> bool:
        """
        Cancel the in-flight request matching `descriptor`.

        @return
          Whether a request was cancelled.
        """
        try:
            signature = self._build(descriptor).signature
        except NetworkError:
            return False
        task = self.__active.pop(signature, None)
        if task is None or task.done():
            return False
        logger.info('Cancelling {}'.format(signature))
        task.cancel()
        return True

    def cancel_all(self) -> int:
        """
        Cancel every in-flight request.

        @return
          The number of requests cancelled.
        """
        tasks, self.__active = list(self.__active.values()), {}
        cancelled = 0
        for task in tasks:
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info('Cancelled {} in-flight requests'.format(cancelled))
        return cancelled

    def close(self) -> None:
        self.cancel_all()
        self.__transport.close()
        if self.__cache is not None:
            self.__cache.close()
        if self.__logger is not None:
            self.__logger.stop()

    # endregion

    def _register(self, signature: str, task: asyncio.Task) -> None:
        previous = self.__active.get(signature)
        if previous is not None and not previous.done():
            logger.info('Superseding in-flight request {}'.format(signature))
            previous.cancel()
        self.__active[signature] = task

    def _unregister(self, signature: str, task: asyncio.Task) -> None:
        if self.__active.get(signature) is task:
            del self.__active[signature]

    def _build(self, descriptor: RequestDescriptor) -> TransportRequest:
        url = descriptor.resolve_url(self.__configuration.base_url)
        parts = urlsplit(url)
        if parts.scheme not in ('http', 'https') or not parts.netloc:
            error = InvalidURL(url)
            self._log(log.ErrorEvent(error))
            raise error

        body = None
        if descriptor.method is not HttpMethod.GET:
            if descriptor.body is not None:
                body = descriptor.body
            elif descriptor.parameters is not None:
                try:
                    body = json.dumps(descriptor.parameters).encode('utf-8')
                except (TypeError, ValueError) as e:
                    error = EncodingError(str(e))
                    self._log(log.ErrorEvent(error))
                    raise error from e

        headers = dict(DEFAULT_HEADERS)
        for name, value in (descriptor.headers or {}).items():
            for default in DEFAULT_HEADERS:
                if default.lower() == name.lower():
                    headers.pop(default, None)
            headers[name] = value

        return TransportRequest(method=descriptor.method.value,
                                url=url,
                                headers=headers,
                                body=body,
                                timeout=self.__configuration.timeout)

    def _is_cachable(self, descriptor: RequestDescriptor) -> bool:
        return (self.__cache is not None
                and self.__configuration.enable_caching
                and descriptor.method is HttpMethod.GET
                and descriptor.cache_policy is not CachePolicy.NONE)

    async def _attempt_loop(self, request: TransportRequest, policy: CachePolicy) -> bytes:
        retry_count = self.__configuration.retry_count
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(request, policy)
            except NetworkError as error:
                self._log(log.ErrorEvent(error))
                retries_left = retry_count - (attempt - 1)
                if retries_left <= 0 or not is_retryable(error):
                    raise
                delay = self.__retry_policy.delay(attempt)
                self._log(log.info('Retrying request. Attempts remaining: {}'.format(retries_left)))
                await asyncio.sleep(delay)

    async def _attempt(self, request: TransportRequest, policy: CachePolicy) -> bytes:
        loop = asyncio.get_running_loop()
        try:
            response: TransportResponse = await loop.run_in_executor(None, self.__transport.send, request)
        except NetworkError:
            raise
        except Exception as e:
            raise map_exception(e) from e

        body = await self.__chain.apply_response(response.body, response)

        error = error_for_status(response.status, response.reason)
        if error is not None:
            raise error

        if request.method == HttpMethod.GET.value and self.__cache is not None \
                and self.__configuration.enable_caching and policy is not CachePolicy.NONE:
            await self.__cache.store(body, request, policy, etag=response.header('ETag'))
        return body

    def _log(self, event: log.LogEvent) -> None:
        if self.__logger is not None and self.__configuration.enable_logging:
            self.__logger.log(event)


def create(configuration: Optional[NetworkConfiguration] = None,
           token_provider: Optional[TokenProvider] = None,
           monitor: Optional[ConnectivityMonitor] = None,
           transport: Optional[Transport] = None) -> NetworkService:
    """
    Wire up a `NetworkService` with the standard interceptor chain and a two-tier cache.

    Authentication runs before logging, so logged headers include the token.
    """
    if configuration is None:
        configuration = NetworkConfiguration()
    request_logger = RequestLogger(level=LogLevel.parse(configuration.log_level))

    interceptors = []
    if token_provider is not None:
        interceptors.append(AuthenticationInterceptor(token_provider))
    if configuration.enable_logging:
        interceptors.append(LoggingInterceptor(request_logger, configuration.base_url))
    interceptors.append(RateLimitingInterceptor(configuration.max_requests_per_second))
    interceptors.append(ResponseValidationInterceptor())

    cache = None
    if configuration.enable_caching:
        cache = ResponseCache(memory=MemoryCache(configuration.max_memory_size),
                              disk=FileCache(Path(configuration.cache_directory), configuration.max_disk_size),
                              expiration=configuration.cache_expiration)

    return NetworkService(configuration,
                          transport=transport,
                          interceptors=interceptors,
                          monitor=monitor if monitor is not None else ConnectivityMonitor(),
                          request_logger=request_logger,
                          cache=cache)
