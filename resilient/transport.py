from abc import ABC, abstractmethod
import logging

import requests
from requests.adapters import HTTPAdapter

from .errors import map_exception
from .model import TransportRequest, TransportResponse

logger = logging.getLogger(__name__)


class Transport(ABC):
    """
    Sends one built request and hands back the raw response.

    `send()` blocks. The executor runs it on a worker thread.
    """

    @abstractmethod
    def send(self, request: TransportRequest) -> TransportResponse:
        """
        @throws NetworkError
          If no response could be obtained at all.
        """

    def close(self):
        """
        Close any resources associated with the transport.
        """


class RequestsTransport(Transport):
    """
    A transport backed by a `requests.Session`.

    The mounted adapters never retry on their own: retrying is the executor's job,
    and it needs to see every attempt.
    """

    def __init__(self, session: requests.Session = None, pool_maxsize: int = 10) -> None:
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=0, pool_maxsize=pool_maxsize)
            session.mount('http://', adapter)
            session.mount('https://', adapter)
        self.session = session

    def send(self, request: TransportRequest) -> TransportResponse:
        try:
            prepared = requests.Request(method=request.method,
                                        url=request.url,
                                        headers=dict(request.headers),
                                        data=request.body).prepare()
            requests_response = self.session.send(prepared, timeout=request.timeout, allow_redirects=True)
        except Exception as e:
            error = map_exception(e)
            logger.info('Transport failed for {} {}: {}'.format(request.method, request.url, error.message))
            raise error from e

        try:
            return TransportResponse(status=requests_response.status_code,
                                     reason=requests_response.reason or '',
                                     headers=dict(requests_response.headers),
                                     body=requests_response.content or b'',
                                     url=requests_response.url or request.url)
        except requests.exceptions.RequestException as e:
            # Reading the body can still fail, e.g. on a dropped connection.
            raise map_exception(e) from e
        finally:
            requests_response.close()

    def close(self):
        self.session.close()
