"""
The failures a caller of the executor can observe.

Every failure is a `NetworkError` carrying a numeric `code` and a human readable
`message`, so that a UI can both describe the problem and decide whether to
offer a retry button.
"""

import asyncio
from http import HTTPStatus
from typing import Optional

import requests


class NetworkError(Exception):
    code = -9999
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __eq__(self, other):
        return (type(self) is type(other)
                and self.code == other.code
                and self.message == other.message)

    def __hash__(self):
        return hash((type(self), self.code, self.message))

    def __repr__(self):
        return '{}(code={}, message={!r})'.format(self.kind, self.code, self.message)


class InvalidURL(NetworkError):
    code = -1000

    def __init__(self, url: Optional[str] = None) -> None:
        message = 'Invalid URL provided'
        if url:
            message = '{}: {}'.format(message, url)
        super().__init__(message)
        self.url = url


class NoData(NetworkError):
    code = -1001

    def __init__(self) -> None:
        super().__init__('No data received from server')


class DecodingError(NetworkError):
    code = -1002

    def __init__(self, detail: str) -> None:
        super().__init__('Failed to decode response: {}'.format(detail))
        self.detail = detail


class EncodingError(NetworkError):
    code = -1003

    def __init__(self, detail: str) -> None:
        super().__init__('Failed to encode request: {}'.format(detail))
        self.detail = detail


class ServerError(NetworkError):
    def __init__(self, code: int, message: Optional[str] = None) -> None:
        if message is None:
            message = _reason(code)
        super().__init__('Server error ({}): {}'.format(code, message))
        self.code = code
        self.reason = message

    @property
    def retryable(self) -> bool:
        return self.code >= 500


class TransportError(NetworkError):
    code = -1004
    retryable = True

    def __init__(self, detail: str) -> None:
        super().__init__('Network error: {}'.format(detail))
        self.detail = detail


class Timeout(NetworkError):
    code = -1005
    retryable = True

    def __init__(self) -> None:
        super().__init__('Request timed out')


class Cancelled(NetworkError):
    code = -1006

    def __init__(self) -> None:
        super().__init__('Request was cancelled')


class NoConnectivity(NetworkError):
    code = -1007

    def __init__(self) -> None:
        super().__init__('No internet connection available')


class Unauthorized(NetworkError):
    code = 401

    def __init__(self) -> None:
        super().__init__('Unauthorized access - please login')


class Forbidden(NetworkError):
    code = 403

    def __init__(self) -> None:
        super().__init__('Access forbidden')


class NotFound(NetworkError):
    code = 404

    def __init__(self) -> None:
        super().__init__('Resource not found')


class RateLimited(NetworkError):
    code = 429

    def __init__(self) -> None:
        super().__init__('Too many requests - please try again later')


class ServiceUnavailable(ServerError):
    """
    A 503. Still a server error, and so still retryable.
    """

    def __init__(self) -> None:
        super().__init__(503, 'Server is under maintenance')


class Unknown(NetworkError):
    code = -9999

    def __init__(self, detail: str) -> None:
        super().__init__('Unknown error: {}'.format(detail))
        self.detail = detail


def _reason(status: int) -> str:
    try:
        return HTTPStatus(status).phrase.lower()
    except ValueError:
        return 'unknown status'


def error_for_status(status: int, reason: Optional[str] = None) -> Optional[NetworkError]:
    """
    Map an HTTP status code to the matching failure, or `None` for a 2xx.
    """
    if 200 <= status < 300:
        return None
    if status == 401:
        return Unauthorized()
    if status == 403:
        return Forbidden()
    if status == 404:
        return NotFound()
    if status == 429:
        return RateLimited()
    if status == 503:
        return ServiceUnavailable()
    return ServerError(status, reason or _reason(status))


def map_exception(error: BaseException) -> NetworkError:
    """
    Translate anything raised below the executor into a `NetworkError`.
    """
    if isinstance(error, NetworkError):
        return error
    if isinstance(error, asyncio.CancelledError):
        return Cancelled()
    if isinstance(error, (requests.exceptions.InvalidURL,
                          requests.exceptions.MissingSchema,
                          requests.exceptions.InvalidSchema)):
        return InvalidURL(str(error) or None)
    if isinstance(error, requests.exceptions.Timeout):
        return Timeout()
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return Timeout()
    if isinstance(error, requests.exceptions.RequestException):
        return TransportError(str(error) or type(error).__name__)
    if isinstance(error, ConnectionError):
        return TransportError(str(error) or type(error).__name__)
    return Unknown(str(error) or type(error).__name__)
