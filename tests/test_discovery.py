"""
Tests for subnet discovery and port scanning.
"""

import ipaddress
import logging

import pytest

from netpulse_agent.domain import DeviceStatus, DeviceType, NetworkInfo, ScanStatus
from netpulse_agent.errors import DeviceNotFoundError, NetworkEnvironmentError
from netpulse_agent.events import SCAN_COMPLETED, SCAN_STARTED

MAC_A = "aa:00:00:00:00:0a"
MAC_B = "aa:00:00:00:00:0b"
MAC_C = "aa:00:00:00:00:0c"
MAC_D = "aa:00:00:00:00:0d"


class TestDiscover:
    """Registry reconciliation from the neighbor table."""

    def test_creates_devices(self, services, probes, repos):
        """New devices get vendor, hostname, gateway flag and a type."""
        probes.neighbor_reads = [[("192.168.1.1", MAC_A), ("192.168.1.5", MAC_B)]]
        probes.vendors = {MAC_B: "Seiko Epson Corporation"}
        probes.hostnames = {"192.168.1.5": "printer-office"}

        result = services.discovery.discover(triggered_by="manual")

        assert result.devices_found == 2
        assert result.new_devices == 2
        gateway = repos.devices.find_by_mac(MAC_A)
        assert gateway.is_gateway
        assert gateway.device_type == DeviceType.ROUTER
        printer = repos.devices.find_by_mac(MAC_B)
        assert printer.vendor == "Seiko Epson Corporation"
        assert printer.hostname == "printer-office"
        assert printer.device_type == DeviceType.PRINTER
        assert not printer.is_gateway

    def test_rediscovery_is_idempotent(self, services, probes, repos):
        """A second run over the same table creates nothing new."""
        probes.neighbor_reads = [[("192.168.1.1", MAC_A), ("192.168.1.5", MAC_B)]]

        services.discovery.discover()
        second = services.discovery.discover()

        assert second.new_devices == 0
        assert second.devices_found == 2
        assert len(repos.devices.find_all()) == 2

    def test_reconciles_registry(self, services, probes, repos, add_device):
        """Table {A, B, C} against registry {A, B, D}: C created, D offline, nothing deleted."""
        add_device(ip="192.168.1.2", mac=MAC_A, status=DeviceStatus.OFFLINE)
        add_device(ip="192.168.1.3", mac=MAC_B)
        add_device(ip="192.168.1.5", mac=MAC_D)
        probes.neighbor_reads = [[
            ("192.168.1.2", MAC_A),
            ("192.168.1.3", MAC_B),
            ("192.168.1.4", MAC_C),
        ]]

        result = services.discovery.discover()

        assert result.devices_found == 3
        assert result.new_devices == 1
        assert repos.devices.find_by_mac(MAC_A).status == DeviceStatus.ONLINE
        assert repos.devices.find_by_mac(MAC_B).status == DeviceStatus.ONLINE
        assert repos.devices.find_by_mac(MAC_C) is not None
        assert repos.devices.find_by_mac(MAC_D).status == DeviceStatus.OFFLINE
        assert len(repos.devices.find_all()) == 4

    def test_refreshes_ip_and_last_seen(self, services, probes, repos, add_device, clock):
        device = add_device(ip="192.168.1.2", mac=MAC_A)
        probes.neighbor_reads = [[("192.168.1.6", MAC_A)]]

        services.discovery.discover()

        refreshed = repos.devices.find_by_id(device.id)
        assert refreshed.ip_address == "192.168.1.6"
        assert refreshed.last_seen == clock()
        assert refreshed.first_seen == device.first_seen

    def test_merges_both_neighbor_reads(self, services, probes, repos):
        """Late responders from the second read are kept; the later address wins."""
        probes.neighbor_reads = [
            [("192.168.1.2", MAC_A)],
            [("192.168.1.7", MAC_A), ("192.168.1.3", MAC_B)],
        ]

        result = services.discovery.discover()

        assert result.devices_found == 2
        assert repos.devices.find_by_mac(MAC_A).ip_address == "192.168.1.7"
        assert repos.devices.find_by_mac(MAC_B) is not None

    def test_sweeps_every_host_address(self, services, probes):
        services.discovery.discover()
        # 192.168.1.0/29 has six host addresses
        assert sorted(probes.probed) == [f"192.168.1.{i}" for i in range(1, 7)]

    def test_sweep_is_capped(self, services, probes, config, caplog):
        config.max_sweep_hosts = 5
        probes.network = NetworkInfo(
            local_ip="10.0.0.10", subnet=ipaddress.ip_network("10.0.0.0/24"), gateway_ip="10.0.0.1",
        )
        with caplog.at_level(logging.WARNING, logger="netpulse_agent.discovery"):
            services.discovery.discover()
        assert len(probes.probed) == 5
        assert "sweeping only the first 5" in caplog.text

    def test_small_subnet_sweeps_without_warning(self, services, probes, caplog):
        with caplog.at_level(logging.WARNING, logger="netpulse_agent.discovery"):
            services.discovery.discover()
        assert len(probes.probed) == 6
        assert "sweeping only" not in caplog.text

    def test_sweep_respects_concurrency_limit(self, services, probes, config):
        config.sweep_concurrency = 3
        probes.delay = 0.02

        services.discovery.discover()

        assert len(probes.probed) == 6
        assert 1 <= probes.peak_in_flight <= 3

    def test_probe_failures_do_not_abort(self, services, probes, repos):
        probes.failing = {"192.168.1.2", "192.168.1.3"}
        probes.neighbor_reads = [[("192.168.1.1", MAC_A)]]

        result = services.discovery.discover()

        assert result.devices_found == 1
        assert repos.scans.find_recent()[0].status == ScanStatus.COMPLETED

    def test_no_network_fails_the_scan(self, services, probes, repos):
        probes.network = None

        with pytest.raises(NetworkEnvironmentError):
            services.discovery.discover()

        scan = repos.scans.find_recent()[0]
        assert scan.status == ScanStatus.FAILED
        assert "subnet" in scan.error_message

    def test_emits_scan_events(self, services, probes, events):
        probes.neighbor_reads = [[("192.168.1.1", MAC_A)]]
        services.discovery.discover()

        started = events.of_type(SCAN_STARTED)
        completed = events.of_type(SCAN_COMPLETED)
        assert len(started) == 1
        assert completed == [{
            "type": "discovery",
            "scan_id": started[0]["scan_id"],
            "devices_found": 1,
            "new_devices": 1,
        }]


class TestScanPorts:
    """TCP port scan of a single device."""

    def test_stores_open_ports_and_reclassifies(self, services, probes, add_device):
        device = add_device(ip="192.168.1.20")
        probes.open_ports = {"192.168.1.20": {9100, 80}}

        updated = services.discovery.scan_ports(device.id)

        assert updated.open_ports == [80, 9100]
        assert updated.device_type == DeviceType.PRINTER

    def test_known_type_is_kept(self, services, probes, add_device):
        device = add_device(ip="192.168.1.20", device_type="nas")
        probes.open_ports = {"192.168.1.20": {9100}}

        assert services.discovery.scan_ports(device.id).device_type == DeviceType.NAS

    def test_custom_port_list(self, services, probes, add_device):
        device = add_device(ip="192.168.1.20")
        probes.open_ports = {"192.168.1.20": {22, 8000}}

        assert services.discovery.scan_ports(device.id, ports=[8000, 8001]).open_ports == [8000]

    def test_unknown_device(self, services):
        with pytest.raises(DeviceNotFoundError):
            services.discovery.scan_ports("missing")
