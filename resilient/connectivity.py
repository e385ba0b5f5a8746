"""
Best-effort reachability tracking.

The monitor polls a probe on a worker thread and publishes status transitions to
any number of subscribers. The default probe looks at the host's network
interfaces through psutil.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import AsyncIterator, Callable, List, Optional

import psutil

logger = logging.getLogger(__name__)


class ConnectionType(Enum):
    WIFI = 'wifi'
    CELLULAR = 'cellular'
    WIRED = 'wired'
    OTHER = 'other'


@dataclass(frozen=True)
class NetworkStatus:
    state: str
    connection_type: Optional[ConnectionType] = None

    @classmethod
    def connected(cls, connection_type: ConnectionType = ConnectionType.OTHER) -> 'NetworkStatus':
        return cls('connected', connection_type)

    @property
    def is_connected(self) -> bool:
        return self.state == 'connected'

    def __str__(self):
        if self.connection_type is None:
            return self.state
        return '{}({})'.format(self.state, self.connection_type.value)


NetworkStatus.DISCONNECTED = NetworkStatus('disconnected')
NetworkStatus.UNKNOWN = NetworkStatus('unknown')

Probe = Callable[[], NetworkStatus]

_WIFI_PREFIXES = ('wl', 'wifi', 'ath')
_CELLULAR_PREFIXES = ('ww', 'rmnet', 'pdp_ip', 'ccmni', 'usb')
_WIRED_PREFIXES = ('en', 'eth', 'em')


def connection_type_for(interface: str) -> ConnectionType:
    name = interface.lower()
    if name.startswith(_WIFI_PREFIXES):
        return ConnectionType.WIFI
    if name.startswith(_CELLULAR_PREFIXES):
        return ConnectionType.CELLULAR
    if name.startswith(_WIRED_PREFIXES):
        return ConnectionType.WIRED
    return ConnectionType.OTHER


def interface_probe() -> NetworkStatus:
    """
    Derive the current status from the host's network interfaces.

    Any interface that is up and not a loopback counts as a path to the network.
    Wi-Fi wins over cellular, which wins over wired, which wins over anything else.
    """
    try:
        stats = psutil.net_if_stats()
    except (OSError, psutil.Error):
        logger.warning('Could not read network interface statistics', exc_info=True)
        return NetworkStatus.UNKNOWN

    kinds = set()
    for name, stat in stats.items():
        if not stat.isup or name.lower().startswith('lo'):
            continue
        kinds.add(connection_type_for(name))

    if not kinds:
        return NetworkStatus.DISCONNECTED
    for kind in (ConnectionType.WIFI, ConnectionType.CELLULAR, ConnectionType.WIRED, ConnectionType.OTHER):
        if kind in kinds:
            return NetworkStatus.connected(kind)


class ConnectivityMonitor:
    """
    Tracks the last observed network status.

    Monitoring is explicit: call `start()` (or use the monitor as an async context
    manager) to begin polling, and `stop()` to release the polling task. Without
    a poll task, every `is_connected()` check looks at the network anew.

    @param probe
      A blocking callable returning the current status. Runs on a worker thread.
    @param interval
      The number of seconds between two probes.
    """

    def __init__(self, probe: Optional[Probe] = None, interval: float = 2.0) -> None:
        self.__probe = probe or interface_probe
        self.__interval = interval
        self.__status = NetworkStatus.UNKNOWN
        self.__subscribers: List[asyncio.Queue] = []
        self.__task: Optional[asyncio.Task] = None

    @property
    def status(self) -> NetworkStatus:
        return self.__status

    @property
    def is_monitoring(self) -> bool:
        return self.__task is not None and not self.__task.done()

    async def is_connected(self) -> bool:
        """
        Whether the current status allows requests.

        While monitoring, this is the last status the poll task observed.
        Otherwise every check looks at the network anew. An `unknown` status does
        not block requests.
        """
        if not self.is_monitoring:
            await self.refresh()
        return self.__status != NetworkStatus.DISCONNECTED

    async def refresh(self) -> NetworkStatus:
        loop = asyncio.get_running_loop()
        try:
            status = await loop.run_in_executor(None, self.__probe)
        except Exception:
            logger.warning('Connectivity probe failed', exc_info=True)
            status = NetworkStatus.UNKNOWN
        self._update(status)
        return status

    def start(self) -> None:
        if self.is_monitoring:
            return
        logger.info('Starting connectivity monitoring')
        self.__task = asyncio.get_running_loop().create_task(self._poll())

    async def stop(self) -> None:
        task, self.__task = self.__task, None
        if task is None:
            return
        logger.info('Stopping connectivity monitoring')
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def statuses(self) -> AsyncIterator[NetworkStatus]:
        """
        Yield the current status, then every transition after it.
        """
        queue = asyncio.Queue()
        queue.put_nowait(self.__status)
        self.__subscribers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self.__subscribers.remove(queue)

    async def _poll(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.__interval)

    def _update(self, status: NetworkStatus) -> None:
        if status == self.__status:
            return
        logger.info('Network status changed from {} to {}'.format(self.__status, status))
        self.__status = status
        for queue in self.__subscribers:
            queue.put_nowait(status)

    async def __aenter__(self) -> 'ConnectivityMonitor':
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()


class StaticConnectivity(ConnectivityMonitor):
    """
    A monitor that always reports the status it was given.
    """

    def __init__(self, status: NetworkStatus = NetworkStatus.connected()) -> None:
        super().__init__(probe=lambda: self.status)
        self._update(status)

    def set_status(self, status: NetworkStatus) -> None:
        self._update(status)
