from .cache import FileCache, MemoryCache, ResponseCache
from .config import NetworkConfiguration, get_configuration
from .connectivity import ConnectionType, ConnectivityMonitor, NetworkStatus, StaticConnectivity
from .errors import NetworkError
from .executor import NetworkService, create
from .interceptors import (AuthenticationInterceptor, Interceptor, LoggingInterceptor, RateLimitingInterceptor,
                           ResponseValidationInterceptor)
from .logger import LogLevel, RequestLogger
from .model import CachePolicy, HttpMethod, RequestDescriptor
from .retry import ExponentialBackoff, FixedDelay, RetryPolicy
