"""
Delay policies for the executor's attempt loop.
"""

from abc import ABC, abstractmethod

from .errors import NetworkError


class RetryPolicy(ABC):
    @abstractmethod
    def delay(self, attempt: int) -> float:
        """
        The number of seconds to wait before retry number `attempt`.

        @param attempt
          The 1-based number of the retry about to happen.
        """


class FixedDelay(RetryPolicy):
    def __init__(self, delay: float = 1.0) -> None:
        if delay < 0:
            raise ValueError('delay must be >= 0')
        self.__delay = delay

    def delay(self, attempt: int) -> float:
        return self.__delay

    def __repr__(self):
        return 'FixedDelay({})'.format(self.__delay)


class ExponentialBackoff(RetryPolicy):
    """
    Doubles the delay on every retry, capped at `max_delay`.
    """

    def __init__(self, base: float = 1.0, max_delay: float = 60.0) -> None:
        if base < 0:
            raise ValueError('base must be >= 0')
        if max_delay < base:
            raise ValueError('max_delay must be >= base')
        self.__base = base
        self.__max_delay = max_delay

    def delay(self, attempt: int) -> float:
        return min(self.__base * (2 ** max(attempt - 1, 0)), self.__max_delay)

    def __repr__(self):
        return 'ExponentialBackoff(base={}, max_delay={})'.format(self.__base, self.__max_delay)


def is_retryable(error: BaseException) -> bool:
    """
    Only timeouts, generic transport failures and 5xx responses are worth another go.
    """
    return isinstance(error, NetworkError) and error.retryable
