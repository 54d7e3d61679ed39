"""
Network Monitor

Caller-facing facade.  Every operation runs on a small I/O worker pool so
the calling thread never spawns or waits on a child process itself:
``submit()`` returns a Future, the named methods wait on it.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from config import DEFAULT_SCAN_TIMEOUT, ENABLE_NATIVE_SCAN, IO_THREAD_POOL_SIZE

from .access_control import AccessController
from .discovery import Device, DiscoveryEngine, NetworkTopology
from .errors import ErrorKind, Result, failure, success
from .helper import RootHelper
from .native import NativeNetworkOps
from .neighbors import NeighborTableReader
from .privilege import PrivilegeDetector
from .redirect import DhcpSpoofManager, DnsSpoofManager
from .vendor import VendorResolver, get_default_resolver

logger = logging.getLogger(__name__)


class NetworkMonitor:
    """Discovery, access control and redirection behind one object."""

    def __init__(
        self,
        privilege: Optional[PrivilegeDetector] = None,
        resolver: Optional[VendorResolver] = None,
        helper: Optional[RootHelper] = None,
        native: Optional[NativeNetworkOps] = None,
        discovery: Optional[DiscoveryEngine] = None,
        access: Optional[AccessController] = None,
        dns: Optional[DnsSpoofManager] = None,
        dhcp: Optional[DhcpSpoofManager] = None,
        workers: int = IO_THREAD_POOL_SIZE,
        locate_helper: bool = True,
    ):
        """
        Components not supplied are built from configuration; the helper
        binary is located on disk unless ``locate_helper`` is False.
        """
        self.privilege = privilege or PrivilegeDetector()
        if helper is None and locate_helper:
            helper = RootHelper.locate()
            if helper is None:
                logger.warning("Root helper binary not found - block/spoof unavailable")
        self.helper = helper
        if native is None and ENABLE_NATIVE_SCAN:
            native = NativeNetworkOps()
        self.native = native

        neighbor_reader = NeighborTableReader()
        self.discovery = discovery or DiscoveryEngine(
            privilege=self.privilege,
            resolver=resolver or get_default_resolver(),
            neighbor_reader=neighbor_reader,
            helper=helper,
            native=native,
        )
        self.access = access or AccessController(
            privilege=self.privilege,
            helper=helper,
            neighbor_reader=neighbor_reader,
            native=native,
        )
        self.dns = dns or DnsSpoofManager(privilege=self.privilege, helper=helper)
        self.dhcp = dhcp or DhcpSpoofManager(privilege=self.privilege, helper=helper)

        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="netwarden-io")
        self._closed = False

    # -- execution -----------------------------------------------------------

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Run ``fn`` on the I/O pool."""
        if self._closed:
            raise RuntimeError("NetworkMonitor has been shut down")
        return self._executor.submit(fn, *args, **kwargs)

    def _call(self, fn: Callable, *args, **kwargs) -> Result:
        try:
            return self.submit(fn, *args, **kwargs).result()
        except Exception as e:
            logger.error(f"{getattr(fn, '__name__', fn)} raised: {e}", exc_info=True)
            return failure(ErrorKind.UNKNOWN, e)

    # -- operations ----------------------------------------------------------

    def is_device_rooted(self) -> Result[bool]:
        return self._call(self.privilege.is_privileged)

    def scan(self, interface: Optional[str] = None, timeout: int = DEFAULT_SCAN_TIMEOUT) -> Result[List[Device]]:
        result = self._call(self.discovery.scan, interface, timeout)
        if result.ok:
            for device in result.value:
                device.is_blocked = self.access.is_blocked(device.ip)
        return result

    def map_topology(self) -> Result[NetworkTopology]:
        result = self._call(self.discovery.map_topology)
        if result.ok:
            for device in result.value.devices:
                device.is_blocked = self.access.is_blocked(device.ip)
        return result

    def test_ping(self, device) -> Result[bool]:
        return self._call(self.discovery.test_reachability, device)

    def block(self, device) -> Result[bool]:
        result = self._call(self.access.block, device)
        if result.ok and isinstance(device, Device):
            device.is_blocked = True
        return result

    def unblock(self, device) -> Result[bool]:
        result = self._call(self.access.unblock, device)
        if result.ok and isinstance(device, Device):
            device.is_blocked = False
        return result

    def is_blocked(self, ip: str) -> Result[bool]:
        return success(self.access.is_blocked(ip))

    def start_dns_spoof(self, domain: str, spoofed_ip: str, interface: Optional[str] = None) -> Result[bool]:
        return self._call(self.dns.start_spoof, domain, spoofed_ip, interface)

    def stop_dns_spoof(self, domain: str) -> Result[bool]:
        return self._call(self.dns.stop_spoof, domain)

    def is_dns_spoof_active(self, domain: str) -> bool:
        return self.dns.is_active(domain)

    def start_dhcp_spoof(
        self,
        interface: str,
        target_macs: Sequence[str],
        spoofed_ips: Sequence[str],
        gateway_ips: Sequence[str],
        dns_servers: Sequence[str],
        subnet_masks: Optional[Sequence[str]] = None,
    ) -> Result[bool]:
        return self._call(
            self.dhcp.start_spoof,
            interface, target_macs, spoofed_ips, gateway_ips, dns_servers, subnet_masks,
        )

    def stop_dhcp_spoof(self, interface: Optional[str] = None) -> Result[bool]:
        return self._call(self.dhcp.stop_spoof, interface)

    def is_dhcp_spoof_active(self, interface: Optional[str] = None) -> bool:
        return self.dhcp.is_active(interface)

    # -- lifecycle -----------------------------------------------------------

    def shutdown(self) -> None:
        """Stop every tracked session (best-effort) and the worker pool."""
        if self._closed:
            return
        self._closed = True
        stopped = 0
        for component in (self.access, self.dns, self.dhcp):
            try:
                stopped += component.shutdown()
            except Exception as e:
                logger.error(f"Error during shutdown of {type(component).__name__}: {e}")
        self._executor.shutdown(wait=True)
        logger.info(f"NetworkMonitor shut down ({stopped} sessions stopped)")

    def __enter__(self) -> "NetworkMonitor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
