"""
Defines the value types that flow through the request pipeline.

These types are as simple as possible in order to most conveniently consume and
produce instances of them. None of them is ever mutated once built: an
interceptor that wants a different request produces a new descriptor.
"""

from dataclasses import dataclass, field, replace as dataclass_replace
from enum import Enum
import hashlib
import json
import time
from typing import Any, Mapping, Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit


class HttpMethod(Enum):
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    DELETE = 'DELETE'
    PATCH = 'PATCH'


class CachePolicy(Enum):
    NONE = 'none'
    MEMORY_ONLY = 'memory_only'
    DISK_ONLY = 'disk_only'
    MEMORY_AND_DISK = 'memory_and_disk'
    AUTOMATIC = 'automatic'

    @property
    def uses_memory(self) -> bool:
        return self in (CachePolicy.MEMORY_ONLY, CachePolicy.MEMORY_AND_DISK, CachePolicy.AUTOMATIC)

    @property
    def uses_disk(self) -> bool:
        return self in (CachePolicy.DISK_ONLY, CachePolicy.MEMORY_AND_DISK, CachePolicy.AUTOMATIC)


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Optional[Tuple[Tuple[str, Any], ...]]:
    if mapping is None:
        return None
    return tuple(mapping.items())


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Describes a pending request before it is serialized for the transport.

    Headers and parameters are stored as tuples of pairs so that the descriptor
    stays hashable and nobody can change it behind the executor's back. Use the
    `headers` and `parameters` properties to read them as dicts.
    """

    endpoint: str
    """
    Either an absolute URL or a path relative to the configured base URL.
    """

    method: HttpMethod = HttpMethod.GET

    header_items: Optional[Tuple[Tuple[str, str], ...]] = None

    parameter_items: Optional[Tuple[Tuple[str, Any], ...]] = None
    """
    Query parameters for GET, a JSON body for everything else.
    """

    body: Optional[bytes] = None
    """
    Raw body bytes. Takes precedence over `parameters` for non-GET requests.
    """

    cache_policy: CachePolicy = CachePolicy.AUTOMATIC

    prefer_cache: bool = False
    """
    Serve a fresh cached response, when there is one, instead of calling the network.
    """

    @classmethod
    def create(cls,
               endpoint: str,
               method: HttpMethod = HttpMethod.GET,
               headers: Optional[Mapping[str, str]] = None,
               parameters: Optional[Mapping[str, Any]] = None,
               body: Optional[bytes] = None,
               cache_policy: CachePolicy = CachePolicy.AUTOMATIC,
               prefer_cache: bool = False) -> 'RequestDescriptor':
        if isinstance(method, str):
            method = HttpMethod(method.upper())
        return cls(endpoint=endpoint,
                   method=method,
                   header_items=_freeze(headers),
                   parameter_items=_freeze(parameters),
                   body=body,
                   cache_policy=cache_policy,
                   prefer_cache=prefer_cache)

    @property
    def headers(self) -> Optional[dict]:
        return None if self.header_items is None else dict(self.header_items)

    @property
    def parameters(self) -> Optional[dict]:
        return None if self.parameter_items is None else dict(self.parameter_items)

    @property
    def signature(self) -> str:
        return '{}_{}'.format(self.method.value, self.endpoint)

    def replace(self, **changes) -> 'RequestDescriptor':
        if 'headers' in changes:
            changes['header_items'] = _freeze(changes.pop('headers'))
        if 'parameters' in changes:
            changes['parameter_items'] = _freeze(changes.pop('parameters'))
        return dataclass_replace(self, **changes)

    def with_header(self, name: str, value: str) -> 'RequestDescriptor':
        headers = self.headers or {}
        headers[name] = value
        return self.replace(headers=headers)

    def resolve_url(self, base_url: str = '') -> str:
        """
        The URL this descriptor is sent to.

        Absolute endpoints are used as they are, anything else is appended to
        `base_url`. GET parameters are added to the query string, after any query
        the endpoint already carries.
        """
        url = self.endpoint
        if not url.startswith(('http://', 'https://')):
            if url and not url.startswith('/'):
                url = '/' + url
            url = base_url + url

        parameters = self.parameters
        if self.method is not HttpMethod.GET or not parameters:
            return url
        parts = urlsplit(url)
        query = urlencode([(k, _render(v)) for k, v in parameters.items()])
        if parts.query:
            query = parts.query + '&' + query
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


@dataclass(frozen=True)
class TransportRequest:
    """
    A fully built request, ready to hand to the transport.

    Retries re-use the very same instance.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: float = 30.0

    @property
    def signature(self) -> str:
        """
        The key under which the in-flight task for this request is tracked.
        """
        return '{}_{}'.format(self.method, self.url)

    @property
    def cache_key(self) -> str:
        """
        A digest of the whole request shape: method, URL, headers and body.

        Header names are lower-cased and sorted before hashing so that two
        logically equal header sets always produce the same key.
        """
        headers = json.dumps(sorted((k.lower(), v) for k, v in self.headers.items()))
        body = hashlib.sha256(self.body or b'').hexdigest()
        combined = '|'.join((self.method, self.url, headers, body))
        return hashlib.sha256(combined.encode('utf-8')).hexdigest()

    @property
    def host(self) -> str:
        return urlsplit(self.url).netloc


@dataclass(frozen=True)
class TransportResponse:
    """
    The raw response as the transport saw it.

    Callers of the executor never get to see one of these; they receive decoded
    data or an error.
    """

    status: int
    reason: str = ''
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = field(default=b'', compare=False)
    url: str = ''

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached payload.

    Timestamps are seconds since the epoch. An entry is expired once the
    current time is strictly past `expires_at`.
    """

    payload: bytes = field(repr=False)
    created_at: float
    expires_at: float
    etag: Optional[str] = None
    size: int = -1

    def __post_init__(self):
        if self.expires_at <= self.created_at:
            raise ValueError('A cache entry must expire after it was created')
        if self.size < 0:
            object.__setattr__(self, 'size', len(self.payload))

    @classmethod
    def create(cls, payload: bytes, expiration: float = 300.0, etag: Optional[str] = None,
               now: Optional[float] = None) -> 'CacheEntry':
        created_at = time.time() if now is None else now
        return cls(payload=payload,
                   created_at=created_at,
                   expires_at=created_at + expiration,
                   etag=etag)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) > self.expires_at


@dataclass(frozen=True)
class CacheInfo:
    total_size: int
    entry_count: int
    oldest_entry: Optional[float]
    newest_entry: Optional[float]
    expired_count: int
