"""
Configuration for the network layer, read from the environment.

Every option can be set with a `RESILIENT_` prefixed environment variable (or a
`.env` file), e.g. `RESILIENT_BASE_URL` or `RESILIENT_RETRY_COUNT`.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .retry import ExponentialBackoff, FixedDelay, RetryPolicy

MIB = 1024 * 1024


def _default_cache_directory() -> Path:
    return Path.home() / '.cache' / 'resilient' / 'NetworkCache'


class NetworkConfiguration(BaseSettings):
    model_config = SettingsConfigDict(env_prefix='RESILIENT_', env_file='.env', extra='ignore')

    base_url: str = ''
    timeout: float = Field(default=30.0, gt=0)
    retry_count: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    retry_strategy: str = 'fixed'
    max_retry_delay: float = Field(default=60.0, ge=0)
    enable_logging: bool = True
    enable_caching: bool = True

    # Cache
    cache_expiration: float = Field(default=300.0, gt=0)
    max_memory_size: int = Field(default=50 * MIB, ge=0)
    max_disk_size: int = Field(default=100 * MIB, ge=0)
    cache_directory: Path = Field(default_factory=_default_cache_directory)

    # Interceptors
    max_requests_per_second: int = Field(default=10, ge=1)
    log_level: str = 'debug'

    @field_validator('retry_strategy')
    @classmethod
    def check_retry_strategy(cls, v: str) -> str:
        v = v.lower()
        if v not in ('fixed', 'exponential'):
            raise ValueError('retry_strategy must be "fixed" or "exponential"')
        return v

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip('/')

    def retry_policy(self) -> RetryPolicy:
        if self.retry_strategy == 'exponential':
            return ExponentialBackoff(self.retry_delay, max(self.max_retry_delay, self.retry_delay))
        return FixedDelay(self.retry_delay)


@lru_cache
def get_configuration() -> NetworkConfiguration:
    return NetworkConfiguration()
