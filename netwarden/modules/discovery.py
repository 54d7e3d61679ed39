"""
Network Discovery Module

Finds the devices on the local /24 and turns them into classified
``Device`` records.

Architecture:
    - Accelerated strategies:  ``HelperScanStrategy`` (privileged helper
      binary, ``ip|mac`` output) and ``NativeScanStrategy`` (scapy ARP
      sweep).  Tried in order; the first one that returns hosts ends the
      scan.
    - Stimulation techniques:  best-effort traffic that makes the kernel
      populate its neighbor cache (nmap ping sweep, arp-scan, TCP connects
      to common ports, route lookups, broadcast ping).  Run concurrently,
      each bounded and individually optional.
    - DiscoveryEngine:  privilege check, subnet detection, accelerated scan
      or stimulation + neighbor-table read, vendor/type resolution, reverse
      hostname lookup, current-device marking.  Also builds the topology
      view and answers reachability checks.

A failing strategy or technique is logged and skipped.  Only an exception
escaping the whole pass is reported as a NETWORK_SCAN failure.
"""

import logging
import re
import socket
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from config import (
    DEFAULT_SCAN_TIMEOUT,
    ENABLE_ARP_SCAN,
    ENABLE_BROADCAST_PING,
    ENABLE_NMAP_SWEEP,
    ENABLE_ROUTE_LOOKUPS,
    ENABLE_TCP_PROBE,
    FALLBACK_INTERFACES,
    HELPER_SCAN_TIMEOUT,
    HOSTNAME_LOOKUP_TIMEOUT,
    NMAP_PING_SWEEP_ARGS,
    PING_TIMEOUT,
    REACHABLE_NEIGHBOR_STATES,
    SETTLE_DELAY,
    STIMULATION_TIMEOUT,
    TCP_PROBE_PORTS,
    TCP_PROBE_TIMEOUT,
    TCP_PROBE_WORKERS,
)

from .classifier import classify
from .errors import ErrorKind, Result, failure, success
from .helper import RootHelper, parse_scan_output
from .interfaces import RouteInfo, get_route_info
from .native import NativeNetworkOps
from .neighbors import NeighborEntry, NeighborTableReader, is_valid_ipv4
from .privilege import PrivilegeDetector
from .process import elevated, run_command
from .vendor import VendorResolver, get_default_resolver

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., Tuple[str, str, int]]

NSLOOKUP_NAME_PATTERN = re.compile(r"name\s*=\s*(\S+)", re.IGNORECASE)
HOSTNAME_WORKERS = 8


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class Device:
    """One host seen during a discovery pass."""
    ip: str
    mac: str
    hostname: Optional[str] = None
    vendor: Optional[str] = None
    device_type: Optional[str] = None
    hw_type: Optional[str] = None
    mask: Optional[str] = None
    interface: Optional[str] = None
    is_blocked: bool = False
    is_pinned: bool = False
    name: Optional[str] = None
    is_current: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.hostname or self.vendor or self.ip

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["display_name"] = self.display_name
        return data

    def __repr__(self) -> str:
        return f"Device(ip={self.ip}, mac={self.mac}, vendor={self.vendor})"


@dataclass
class NetworkTopology:
    """Devices grouped by type label, plus the gateway if it was seen."""
    gateway: Optional[Device] = None
    devices: List[Device] = field(default_factory=list)
    groups: Dict[str, List[Device]] = field(default_factory=dict)
    unknown: List[Device] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "gateway": self.gateway.to_dict() if self.gateway else None,
            "device_count": len(self.devices),
            "groups": {
                label: [d.ip for d in members]
                for label, members in self.groups.items()
            },
            "unknown": [d.ip for d in self.unknown],
        }


# ---------------------------------------------------------------------------
# Accelerated scan strategies
# ---------------------------------------------------------------------------

class AcceleratedScanStrategy:
    """A fast path that may produce (ip, mac) pairs directly."""

    name = "accelerated"

    def attempt(
        self, route: RouteInfo, interface: str, timeout: int
    ) -> Optional[List[Tuple[str, str]]]:
        """Return discovered pairs, or None when this path has nothing."""
        raise NotImplementedError


class HelperScanStrategy(AcceleratedScanStrategy):
    name = "helper"

    def __init__(self, helper: Optional[RootHelper], runner: Optional[CommandRunner] = None):
        self.helper = helper
        self._runner = runner

    def attempt(self, route, interface, timeout):
        if self.helper is None:
            logger.debug("No root helper available - skipping helper scan")
            return None
        runner = self._runner or run_command
        cmd = self.helper.scan_argv(interface, route.subnet_prefix, timeout)
        stdout, stderr, returncode = runner(
            cmd, timeout=max(HELPER_SCAN_TIMEOUT, timeout + 5)
        )
        if returncode != 0:
            logger.warning(f"Helper scan failed (rc={returncode}): {stderr.strip()}")
        pairs = parse_scan_output(stdout or "")
        return pairs or None


class NativeScanStrategy(AcceleratedScanStrategy):
    name = "native"

    def __init__(self, native: Optional[NativeNetworkOps]):
        self.native = native

    def attempt(self, route, interface, timeout):
        if self.native is None or not self.native.is_available():
            return None
        pairs = self.native.scan(interface, route.subnet_cidr, timeout=min(float(timeout), 3.0))
        return pairs or None


# ---------------------------------------------------------------------------
# Neighbor-cache stimulation
# ---------------------------------------------------------------------------

class StimulationTechnique:
    """Generates traffic so the kernel learns neighbor addresses."""

    name = "technique"

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = STIMULATION_TIMEOUT):
        self._runner = runner
        self.timeout = timeout

    def _run(self, cmd: List[str]) -> int:
        runner = self._runner or run_command
        _stdout, stderr, returncode = runner(cmd, timeout=self.timeout)
        if returncode != 0:
            logger.debug(f"{self.name} exited rc={returncode}: {stderr.strip()[:200]}")
        return returncode

    def run(self, route: RouteInfo, interface: str) -> None:
        raise NotImplementedError


class NmapSweep(StimulationTechnique):
    name = "nmap-sweep"

    def run(self, route, interface):
        self._run(["nmap", *NMAP_PING_SWEEP_ARGS, route.subnet_cidr])


class ArpScanTool(StimulationTechnique):
    name = "arp-scan"

    def run(self, route, interface):
        self._run(elevated(f"arp-scan --localnet --interface {interface}"))


class RouteLookups(StimulationTechnique):
    name = "route-lookups"

    def run(self, route, interface):
        # One shell for the whole /24 instead of 254 processes
        loop = (
            f"for i in $(seq 1 254); do "
            f"ip route get {route.subnet_prefix}.$i >/dev/null 2>&1; done"
        )
        self._run(["sh", "-c", loop])


class BroadcastPing(StimulationTechnique):
    name = "broadcast-ping"

    def run(self, route, interface):
        self._run(["ping", "-b", "-c", "1", "-W", "1", route.broadcast_address])


class TcpConnectProbe(StimulationTechnique):
    """Connect attempts to common ports on every host in the /24.

    Hosts that drop ICMP still answer ARP for the SYN, which is all that is
    needed here; the connection result itself is ignored.
    """

    name = "tcp-probe"

    def __init__(
        self,
        ports: Optional[List[int]] = None,
        workers: int = TCP_PROBE_WORKERS,
        connect_timeout: float = TCP_PROBE_TIMEOUT,
        timeout: float = STIMULATION_TIMEOUT,
    ):
        super().__init__(timeout=timeout)
        self.ports = list(ports) if ports is not None else list(TCP_PROBE_PORTS)
        self.workers = workers
        self.connect_timeout = connect_timeout

    def _touch(self, target: Tuple[str, int]) -> bool:
        try:
            with socket.create_connection(target, timeout=self.connect_timeout):
                return True
        except OSError:
            return False

    def run(self, route, interface):
        targets = [(host, port) for host in route.host_addresses() for port in self.ports]
        deadline = time.monotonic() + self.timeout
        opened = 0
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="tcp-probe") as pool:
            futures = [pool.submit(self._touch, t) for t in targets]
            for future in futures:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    continue
                try:
                    opened += bool(future.result(timeout=remaining))
                except FutureTimeoutError:
                    future.cancel()
        logger.debug(f"TCP probe touched {len(targets)} endpoints, {opened} open")


def default_techniques(runner: Optional[CommandRunner] = None) -> List[StimulationTechnique]:
    """Stimulation techniques enabled in the configuration."""
    techniques: List[StimulationTechnique] = []
    if ENABLE_NMAP_SWEEP:
        techniques.append(NmapSweep(runner))
    if ENABLE_ARP_SCAN:
        techniques.append(ArpScanTool(runner))
    if ENABLE_TCP_PROBE:
        techniques.append(TcpConnectProbe())
    if ENABLE_ROUTE_LOOKUPS:
        techniques.append(RouteLookups(runner))
    if ENABLE_BROADCAST_PING:
        techniques.append(BroadcastPing(runner))
    return techniques


# ---------------------------------------------------------------------------
# Discovery Engine
# ---------------------------------------------------------------------------

class DiscoveryEngine:
    """Runs discovery passes and derived queries (topology, reachability)."""

    def __init__(
        self,
        privilege: Optional[PrivilegeDetector] = None,
        resolver: Optional[VendorResolver] = None,
        neighbor_reader: Optional[NeighborTableReader] = None,
        helper: Optional[RootHelper] = None,
        native: Optional[NativeNetworkOps] = None,
        runner: Optional[CommandRunner] = None,
        route_provider: Optional[Callable[[], RouteInfo]] = None,
        techniques: Optional[List[StimulationTechnique]] = None,
        settle_delay: float = SETTLE_DELAY,
        resolve_hostnames: bool = True,
    ):
        """
        Args:
            privilege: Root detector; a default one is built if omitted
            resolver: Vendor resolver; the process-wide one if omitted
            neighbor_reader: Neighbor table reader sharing ``runner``
            helper: Located helper binary, or None when not installed
            native: scapy layer, or None to skip native sweeps
            runner: Command runner used for every external command
            route_provider: Returns the current RouteInfo
            techniques: Stimulation techniques (configured defaults if None)
            settle_delay: Seconds to wait after stimulation
            resolve_hostnames: Do reverse lookups for discovered devices
        """
        self._runner = runner
        self.privilege = privilege or PrivilegeDetector()
        self.resolver = resolver or get_default_resolver()
        self.neighbor_reader = neighbor_reader or NeighborTableReader(runner=runner)
        self.helper = helper
        self.native = native
        self._route_provider = route_provider or (lambda: get_route_info(self._runner))
        self.strategies: List[AcceleratedScanStrategy] = [
            HelperScanStrategy(helper, runner),
            NativeScanStrategy(native),
        ]
        self.techniques = techniques if techniques is not None else default_techniques(runner)
        self.settle_delay = settle_delay
        self.resolve_hostnames = resolve_hostnames

    def _run(self, cmd: List[str], timeout: float) -> Tuple[str, str, int]:
        runner = self._runner or run_command
        return runner(cmd, timeout=timeout)

    # -- scan ----------------------------------------------------------------

    def scan(
        self,
        interface: Optional[str] = None,
        timeout: int = DEFAULT_SCAN_TIMEOUT,
    ) -> Result[List[Device]]:
        """
        Discover devices on the local /24.

        Args:
            interface: Interface to scan on (default: the subnet's interface)
            timeout: Time limit handed to the accelerated paths

        Returns:
            Success(list of Device); an empty list when root is unavailable
            or no subnet could be determined.
        """
        result, _route = self._scan_with_route(interface, timeout)
        return result

    def _scan_with_route(
        self,
        interface: Optional[str],
        timeout: int,
    ) -> Tuple[Result[List[Device]], Optional[RouteInfo]]:
        """One discovery pass, plus the route it was run against."""
        route = None
        try:
            rooted = self.privilege.is_privileged()
            if not rooted.ok or not rooted.value:
                logger.warning("Root access unavailable - scan returns no devices")
                return success([]), None

            route = self._route_provider()
            if not route.subnet_prefix:
                logger.warning("No /24 subnet in the routing table - scan returns no devices")
                return success([]), route

            iface = interface or route.interface or FALLBACK_INTERFACES[0]
            logger.info(f"Scanning {route.subnet_cidr} on {iface}")

            pairs = self._accelerated_scan(route, iface, timeout)
            if pairs:
                devices = [self._build_device(ip, mac, interface=iface) for ip, mac in pairs]
            else:
                self._stimulate(route, iface)
                devices = [self._device_from_entry(e) for e in self.neighbor_reader.read()]

            if self.resolve_hostnames:
                self._resolve_hostnames(devices)
            self._mark_current(devices, route.local_ip)

            logger.info(f"Scan found {len(devices)} devices")
            return success(devices), route
        except Exception as e:
            logger.error(f"Network scan failed: {e}", exc_info=True)
            return failure(ErrorKind.NETWORK_SCAN, e), route

    def _accelerated_scan(
        self, route: RouteInfo, interface: str, timeout: int
    ) -> Optional[List[Tuple[str, str]]]:
        for strategy in self.strategies:
            try:
                pairs = strategy.attempt(route, interface, timeout)
            except Exception as e:
                logger.warning(f"{strategy.name} scan failed: {e}")
                continue
            if pairs:
                logger.info(f"{strategy.name} scan found {len(pairs)} hosts")
                return pairs
        return None

    def _stimulate(self, route: RouteInfo, interface: str) -> None:
        """Run every stimulation technique concurrently, then settle."""
        if self.techniques:
            pool = ThreadPoolExecutor(
                max_workers=len(self.techniques), thread_name_prefix="stimulate"
            )
            futures = {pool.submit(t.run, route, interface): t for t in self.techniques}
            deadline = time.monotonic() + STIMULATION_TIMEOUT + 1
            for future, technique in futures.items():
                try:
                    future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeoutError:
                    logger.warning(f"{technique.name} did not finish in time")
                except Exception as e:
                    logger.warning(f"{technique.name} failed: {e}")
            # Stragglers are bounded by their own command timeouts
            pool.shutdown(wait=False)

        if self.settle_delay > 0:
            time.sleep(self.settle_delay)

    # -- device construction -------------------------------------------------

    def _build_device(
        self,
        ip: str,
        mac: str,
        interface: Optional[str] = None,
        hw_type: Optional[str] = None,
        mask: Optional[str] = None,
    ) -> Device:
        device = Device(
            ip=ip,
            mac=mac.lower(),
            vendor=self.resolver.vendor_for(mac),
            hw_type=hw_type,
            mask=mask,
            interface=interface,
        )
        device.device_type = classify(device)
        return device

    def _device_from_entry(self, entry: NeighborEntry) -> Device:
        return self._build_device(
            entry.ip,
            entry.mac,
            interface=entry.interface,
            hw_type=entry.hw_type,
            mask=entry.mask,
        )

    def lookup_hostname(self, ip: str) -> Optional[str]:
        """Reverse lookup via nslookup; None on any failure."""
        try:
            stdout, _stderr, returncode = self._run(["nslookup", ip], timeout=HOSTNAME_LOOKUP_TIMEOUT)
        except Exception as e:
            logger.debug(f"Hostname lookup for {ip} failed: {e}")
            return None
        if returncode != 0 or not stdout:
            return None
        match = NSLOOKUP_NAME_PATTERN.search(stdout)
        if not match:
            return None
        return match.group(1).rstrip(".") or None

    def _resolve_hostnames(self, devices: List[Device]) -> None:
        if not devices:
            return
        with ThreadPoolExecutor(
            max_workers=min(HOSTNAME_WORKERS, len(devices)), thread_name_prefix="rdns"
        ) as pool:
            names = list(pool.map(self.lookup_hostname, [d.ip for d in devices]))
        for device, hostname in zip(devices, names):
            device.hostname = hostname

    @staticmethod
    def _mark_current(devices: List[Device], local_ip: Optional[str]) -> None:
        if not local_ip:
            logger.debug("Local IP unknown - no device marked as current")
            return
        for device in devices:
            device.is_current = device.ip == local_ip
        if not any(d.is_current for d in devices):
            # The local address may have changed since the route query
            logger.debug(f"Local IP {local_ip} not among scan results")

    # -- topology ------------------------------------------------------------

    def map_topology(self) -> Result[NetworkTopology]:
        """Scan, then group devices by type and locate the gateway."""
        result, route = self._scan_with_route(None, DEFAULT_SCAN_TIMEOUT)
        if not result.ok:
            return result
        try:
            devices = result.value
            gateway_ip = route.gateway_ip if route else None

            groups: Dict[str, List[Device]] = defaultdict(list)
            unknown: List[Device] = []
            for device in devices:
                label = device.device_type or classify(device)
                if label:
                    groups[label].append(device)
                else:
                    unknown.append(device)

            gateway = next((d for d in devices if gateway_ip and d.ip == gateway_ip), None)
            topology = NetworkTopology(
                gateway=gateway,
                devices=devices,
                groups=dict(groups),
                unknown=unknown,
            )
            logger.debug(
                f"Topology: {len(groups)} groups, {len(unknown)} unknown, "
                f"gateway={'found' if gateway else 'not seen'}"
            )
            return success(topology)
        except Exception as e:
            logger.error(f"Topology mapping failed: {e}")
            return failure(ErrorKind.NETWORK_SCAN, e)

    # -- reachability --------------------------------------------------------

    def test_reachability(self, device) -> Result[bool]:
        """
        Check whether a device answers.

        One ICMP echo first; hosts that filter ICMP count as reachable when
        their neighbor entry is REACHABLE, DELAY or PROBE.

        Args:
            device: Device or plain IP string
        """
        ip = getattr(device, "ip", device)
        if not is_valid_ipv4(ip):
            return failure(ErrorKind.INVALID_IP_ADDRESS, detail=str(ip))
        try:
            _stdout, _stderr, returncode = self._run(
                ["ping", "-c", "1", "-W", "1", ip], timeout=PING_TIMEOUT
            )
            if returncode == 0:
                return success(True)
            state = self.neighbor_reader.state_for(ip)
            logger.debug(f"Ping to {ip} failed (rc={returncode}), neighbor state {state}")
            return success(state in REACHABLE_NEIGHBOR_STATES)
        except Exception as e:
            logger.error(f"Reachability check for {ip} failed: {e}")
            return failure(ErrorKind.COMMAND_EXECUTION, e)
