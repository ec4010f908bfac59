import concurrent.futures
import itertools
import logging
import time
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from .classifier import classify_device
from .config import AgentConfig
from .domain import Device, DeviceStatus, DeviceType, DiscoveryResult, now_utc
from .errors import DeviceNotFoundError, NetworkEnvironmentError
from .events import SCAN_COMPLETED, SCAN_STARTED, EventSink

logger = logging.getLogger(__name__)

DEFAULT_PORTS = [
    21, 22, 23, 25, 53, 80, 110, 135, 139, 143, 443, 445, 515, 548, 554, 631,
    993, 995, 1433, 3306, 3389, 5000, 5001, 5432, 5900, 8080, 8443, 9100,
]
MAX_PORTS = 1000


class DiscoveryEngine:
    """
    Builds and refreshes the device registry from a sweep of the local subnet.

    The sweep only exists to make hosts answer ARP; the device list itself
    comes from the neighbor table, read twice with a pause in between so
    late responders are not lost.
    """

    def __init__(self, repos, probes, events: Optional[EventSink] = None, config: Optional[AgentConfig] = None,
                 clock=now_utc, sleep=time.sleep):
        self.repos = repos
        self.probes = probes
        self.events = events or EventSink()
        self.config = config or AgentConfig()
        self.clock = clock
        self.sleep = sleep

    def discover(self, triggered_by: str = "scheduled") -> DiscoveryResult:
        scan = self.repos.scans.start("discovery", triggered_by, started_at=self.clock())
        logger.info(f"Starting discovery scan ({triggered_by})")
        self.events.emit(SCAN_STARTED, {"type": "discovery", "scan_id": scan.id, "triggered_by": triggered_by})

        try:
            network = self.probes.detect_network()
            if network is None:
                raise NetworkEnvironmentError("Could not determine the local subnet")
            logger.info(f"Network detected: {network.subnet}, gateway {network.gateway_ip}, local IP {network.local_ip}")

            self._sweep(network.subnet.hosts())
            seen = self._read_neighbors()

            devices, new_count = self._reconcile(seen, network.gateway_ip)
            self._mark_unseen_offline(seen)
        except Exception as e:
            self.repos.scans.fail(scan.id, str(e), completed_at=self.clock())
            logger.error(f"Discovery scan failed: {e}")
            raise

        self.repos.scans.complete(scan.id, len(seen), new_count, completed_at=self.clock())
        logger.info(f"Discovery completed: {len(seen)} devices found, {new_count} new")
        self.events.emit(SCAN_COMPLETED, {
            "type": "discovery",
            "scan_id": scan.id,
            "devices_found": len(seen),
            "new_devices": new_count,
        })
        return DiscoveryResult(devices_found=len(seen), new_devices=new_count, devices=devices)

    def _sweep(self, hosts: Iterable):
        """Ping every host address once, at most `sweep_concurrency` at a time."""
        limit = self.config.max_sweep_hosts
        addresses = [str(ip) for ip in itertools.islice(hosts, limit + 1)]
        if len(addresses) > limit:
            addresses = addresses[:limit]
            logger.warning(f"Subnet has more than {limit} host addresses, sweeping only the first {limit}")
        if not addresses:
            return
        workers = max(1, min(self.config.sweep_concurrency, len(addresses)))
        timeout = self.config.sweep_timeout_sec
        responded = 0

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.probes.probe_reachability, ip, 1, timeout): ip
                for ip in addresses
            }
            for future in concurrent.futures.as_completed(futures):
                try:
                    if future.result().is_reachable:
                        responded += 1
                except Exception as e:
                    logger.warning(f"Sweep probe of {futures[future]} failed: {e}")

        logger.debug(f"Ping sweep: {responded}/{len(addresses)} addresses answered")

    def _read_neighbors(self) -> Dict[str, str]:
        """Two neighbor-table reads merged by MAC, later read wins. Returns mac -> ip."""
        first = self.probes.read_neighbor_table()
        logger.info(f"First neighbor table read: {len(first)} entries")
        self.sleep(self.config.arp_settle_sec)
        second = self.probes.read_neighbor_table()

        seen = {}
        for ip, mac in list(first) + list(second):
            seen[mac] = ip
        logger.info(f"Neighbor table: {len(seen)} entries after merge")
        return seen

    def _reconcile(self, seen: Dict[str, str], gateway_ip: Optional[str]):
        devices = []
        new_count = 0
        for mac, ip in seen.items():
            now = self.clock()
            existing = self.repos.devices.find_by_mac(mac)
            if existing:
                devices.append(self._mark_seen(existing, ip, now))
                continue

            device = self._create_device(mac, ip, gateway_ip, now)
            if device is None:
                # Another run created it between our lookup and insert.
                devices.append(self._mark_seen(self.repos.devices.find_by_mac(mac), ip, now))
                continue
            devices.append(device)
            new_count += 1
        return devices, new_count

    def _mark_seen(self, device: Device, ip: str, now) -> Device:
        fields = {"status": DeviceStatus.ONLINE, "last_seen": now}
        if device.ip_address != ip:
            logger.info(f"Device {device.mac_address} changed IP {device.ip_address} -> {ip}")
            fields["ip_address"] = ip
        return self.repos.devices.update(device.id, **fields)

    def _create_device(self, mac: str, ip: str, gateway_ip: Optional[str], now) -> Optional[Device]:
        hostname = self.probes.reverse_resolve(ip)
        vendor = self.probes.resolve_vendor(mac)
        is_gateway = gateway_ip is not None and ip == gateway_ip
        device_type = classify_device(vendor, hostname, None, is_gateway, mac)

        try:
            device = self.repos.devices.create(
                ip_address=ip,
                mac_address=mac,
                hostname=hostname,
                vendor=vendor,
                device_type=device_type,
                is_gateway=is_gateway,
                seen_at=now,
            )
        except IntegrityError:
            logger.info(f"Device {mac} was registered concurrently")
            return None

        logger.info(f"New device: {ip} ({vendor or 'unknown vendor'}) [{device_type.value}]")
        return device

    def _mark_unseen_offline(self, seen: Dict[str, str]):
        for device in self.repos.devices.find_all():
            if device.mac_address not in seen and device.status != DeviceStatus.OFFLINE:
                logger.info(f"Device offline: {device.mac_address} ({device.display_name})")
                self.repos.devices.update(device.id, status=DeviceStatus.OFFLINE)

    def scan_ports(self, device_id: str, ports: Optional[List[int]] = None, triggered_by: str = "manual") -> Device:
        """TCP-connect scan of one device; re-classifies it if it is still unknown."""
        device = self.repos.devices.find_by_id(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)

        to_scan = sorted(set(ports or DEFAULT_PORTS))[:MAX_PORTS]
        scan = self.repos.scans.start("ports", triggered_by, started_at=self.clock())
        logger.info(f"Scanning {len(to_scan)} ports on {device.ip_address}")

        workers = max(1, min(self.config.port_scan_concurrency, len(to_scan)))
        timeout = self.config.port_timeout_sec
        try:
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
                states = list(executor.map(
                    lambda port: self.probes.probe_tcp_port(device.ip_address, port, timeout), to_scan
                ))
            open_ports = [port for port, is_open in zip(to_scan, states) if is_open]

            fields = {"open_ports": open_ports}
            if device.device_type == DeviceType.UNKNOWN:
                device_type = classify_device(
                    device.vendor, device.hostname, open_ports, device.is_gateway, device.mac_address
                )
                if device_type != DeviceType.UNKNOWN:
                    fields["device_type"] = device_type
            updated = self.repos.devices.update(device.id, **fields)
        except Exception as e:
            self.repos.scans.fail(scan.id, str(e), completed_at=self.clock())
            logger.error(f"Port scan of {device.ip_address} failed: {e}")
            raise

        self.repos.scans.complete(scan.id, 1, 0, completed_at=self.clock())
        logger.info(f"Port scan of {device.ip_address}: {len(open_ports)} open ({open_ports})")
        return updated
