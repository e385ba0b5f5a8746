import asyncio
from collections import namedtuple
from ddt import ddt, data, unpack
from mockito import unstub, when
from unittest import IsolatedAsyncioTestCase, TestCase

import psutil

from fakes import ScriptedStatuses

from resilient.connectivity import ConnectionType, ConnectivityMonitor, NetworkStatus, StaticConnectivity, \
    connection_type_for, interface_probe

Stats = namedtuple('Stats', ['isup'])


@ddt
class TestInterfaceProbe(TestCase):
    def tearDown(self):
        unstub()

    @data(
        ('wlan0', ConnectionType.WIFI),
        ('wlp3s0', ConnectionType.WIFI),
        ('rmnet_data0', ConnectionType.CELLULAR),
        ('pdp_ip0', ConnectionType.CELLULAR),
        ('eth0', ConnectionType.WIRED),
        ('enp0s31f6', ConnectionType.WIRED),
        ('tun0', ConnectionType.OTHER),
        ('utun2', ConnectionType.OTHER),
    )
    @unpack
    def test_connection_type_for(self, name, expected):
        self.assertIs(expected, connection_type_for(name))

    def test_interfaces_that_are_up(self):
        when(psutil).net_if_stats().thenReturn({'lo': Stats(True), 'eth0': Stats(True), 'wlan0': Stats(False)})

        self.assertEqual(NetworkStatus.connected(ConnectionType.WIRED), interface_probe())

    def test_wifi_wins_over_wired(self):
        when(psutil).net_if_stats().thenReturn({'eth0': Stats(True), 'wlan0': Stats(True)})

        self.assertEqual(NetworkStatus.connected(ConnectionType.WIFI), interface_probe())

    def test_only_loopback_means_disconnected(self):
        when(psutil).net_if_stats().thenReturn({'lo': Stats(True), 'eth0': Stats(False)})

        self.assertEqual(NetworkStatus.DISCONNECTED, interface_probe())

    def test_unreadable_interfaces_mean_unknown(self):
        when(psutil).net_if_stats().thenRaise(OSError('no /sys'))

        self.assertEqual(NetworkStatus.UNKNOWN, interface_probe())


class TestNetworkStatus(TestCase):
    def test_str(self):
        self.assertEqual('connected(wifi)', str(NetworkStatus.connected(ConnectionType.WIFI)))
        self.assertEqual('unknown', str(NetworkStatus.UNKNOWN))

    def test_is_connected(self):
        self.assertTrue(NetworkStatus.connected().is_connected)
        self.assertFalse(NetworkStatus.UNKNOWN.is_connected)
        self.assertFalse(NetworkStatus.DISCONNECTED.is_connected)


class TestConnectivityMonitor(IsolatedAsyncioTestCase):
    async def test_every_check_without_monitoring_is_fresh(self):
        statuses = ScriptedStatuses(NetworkStatus.DISCONNECTED, NetworkStatus.connected())
        monitor = ConnectivityMonitor(statuses)

        self.assertEqual(NetworkStatus.UNKNOWN, monitor.status)
        self.assertFalse(await monitor.is_connected())
        self.assertTrue(await monitor.is_connected())
        self.assertEqual(2, statuses.calls)

    async def test_checks_while_monitoring_use_the_last_observed_status(self):
        statuses = ScriptedStatuses(NetworkStatus.DISCONNECTED)
        monitor = ConnectivityMonitor(statuses, interval=60)

        async with monitor:
            while monitor.status == NetworkStatus.UNKNOWN:
                await asyncio.sleep(0.005)
            self.assertFalse(await monitor.is_connected())
            self.assertFalse(await monitor.is_connected())
            self.assertEqual(1, statuses.calls)

    async def test_unknown_status_allows_requests(self):
        self.assertTrue(await ConnectivityMonitor(ScriptedStatuses(NetworkStatus.UNKNOWN)).is_connected())

    async def test_failing_probe_reports_unknown(self):
        def probe():
            raise RuntimeError('probe crashed')

        monitor = ConnectivityMonitor(probe)

        self.assertEqual(NetworkStatus.UNKNOWN, await monitor.refresh())
        self.assertTrue(await monitor.is_connected())

    async def test_transitions_are_published(self):
        wired = NetworkStatus.connected(ConnectionType.WIRED)
        wifi = NetworkStatus.connected(ConnectionType.WIFI)
        monitor = ConnectivityMonitor(ScriptedStatuses(wired, wired, NetworkStatus.DISCONNECTED, wifi), interval=0.01)
        stream = monitor.statuses()

        self.assertEqual(NetworkStatus.UNKNOWN, await stream.__anext__())
        monitor.start()
        seen = [await asyncio.wait_for(stream.__anext__(), timeout=2) for _ in range(3)]
        await monitor.stop()
        await stream.aclose()

        self.assertEqual([wired, NetworkStatus.DISCONNECTED, wifi], seen)
        self.assertEqual(wifi, monitor.status)

    async def test_every_subscriber_sees_transitions(self):
        monitor = StaticConnectivity(NetworkStatus.connected())
        first, second = monitor.statuses(), monitor.statuses()
        await first.__anext__()
        await second.__anext__()

        monitor.set_status(NetworkStatus.DISCONNECTED)

        self.assertEqual(NetworkStatus.DISCONNECTED, await asyncio.wait_for(first.__anext__(), timeout=1))
        self.assertEqual(NetworkStatus.DISCONNECTED, await asyncio.wait_for(second.__anext__(), timeout=1))
        await first.aclose()
        await second.aclose()

    async def test_context_manager_controls_monitoring(self):
        monitor = ConnectivityMonitor(ScriptedStatuses(NetworkStatus.connected()), interval=0.01)

        async with monitor:
            self.assertTrue(monitor.is_monitoring)
        self.assertFalse(monitor.is_monitoring)

    async def test_stop_without_start(self):
        await ConnectivityMonitor(ScriptedStatuses(NetworkStatus.connected())).stop()


class TestStaticConnectivity(IsolatedAsyncioTestCase):
    async def test_reports_the_given_status(self):
        monitor = StaticConnectivity()
        self.assertTrue(await monitor.is_connected())

        monitor.set_status(NetworkStatus.DISCONNECTED)
        self.assertFalse(await monitor.is_connected())

        monitor.set_status(NetworkStatus.UNKNOWN)
        self.assertTrue(await monitor.is_connected())

    async def test_refresh_keeps_the_status(self):
        monitor = StaticConnectivity(NetworkStatus.DISCONNECTED)

        self.assertEqual(NetworkStatus.DISCONNECTED, await monitor.refresh())
