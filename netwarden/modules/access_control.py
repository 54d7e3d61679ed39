"""
Access Control Module

Blocks and unblocks individual devices by running the helper's ``block``
action as a long-lived elevated process, one per target IP.

The tracked handle is the elevation shell, not the helper itself, so
unblocking kills the helper by name first and then the handle.  When
enabled, the helper's ``unblock`` action then re-announces the real
gateway and target addresses so the target recovers immediately.
"""

import logging
from typing import Callable, List, Optional, Tuple

from config import FALLBACK_INTERFACES, RESTORE_ARP_ON_UNBLOCK, RESTORE_TIMEOUT

from .errors import ErrorKind, Result, failure, success
from .helper import BLOCK_STARTED, UNBLOCK_FINISHED, RootHelper
from .interfaces import RouteInfo, get_route_info, resolve_our_mac
from .native import NativeNetworkOps
from .neighbors import MAC_PATTERN, NeighborTableReader, is_acceptable_mac, is_valid_ipv4
from .privilege import PrivilegeDetector
from .process import ProcessSession, SessionRegistry, kill_by_pattern, run_command

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., Tuple[str, str, int]]
SessionFactory = Callable[..., ProcessSession]


def _target_ip(device) -> str:
    return getattr(device, "ip", device)


class AccessController:
    """Tracks one blocking session per target IP."""

    def __init__(
        self,
        privilege: Optional[PrivilegeDetector] = None,
        helper: Optional[RootHelper] = None,
        neighbor_reader: Optional[NeighborTableReader] = None,
        native: Optional[NativeNetworkOps] = None,
        runner: Optional[CommandRunner] = None,
        route_provider: Optional[Callable[[], RouteInfo]] = None,
        mac_resolver: Callable[[Optional[str]], Tuple[Optional[str], Optional[str]]] = resolve_our_mac,
        session_factory: SessionFactory = ProcessSession.start,
        killer: Callable[[str], bool] = kill_by_pattern,
        restore_arp: bool = RESTORE_ARP_ON_UNBLOCK,
    ):
        self._runner = runner
        self.privilege = privilege or PrivilegeDetector()
        self.helper = helper
        self.neighbor_reader = neighbor_reader or NeighborTableReader(runner=runner)
        self.native = native
        self._route_provider = route_provider or (lambda: get_route_info(self._runner))
        self._mac_resolver = mac_resolver
        self._session_factory = session_factory
        self._killer = killer
        self.restore_arp = restore_arp
        self.sessions = SessionRegistry("block")

    def _run(self, cmd: List[str], timeout: float) -> Tuple[str, str, int]:
        runner = self._runner or run_command
        return runner(cmd, timeout=timeout)

    # -- block ---------------------------------------------------------------

    def block(self, device) -> Result[bool]:
        """
        Cut a device off the network.

        Args:
            device: Device or plain IP string

        Returns:
            Success(True) once the block process is running or was already
            running for this IP.
        """
        ip = _target_ip(device)
        if not is_valid_ipv4(ip):
            return failure(ErrorKind.INVALID_IP_ADDRESS, detail=str(ip))

        rooted = self.privilege.is_privileged()
        if not rooted.ok:
            return rooted
        if not rooted.value:
            logger.warning(f"Cannot block {ip}: root access unavailable")
            return failure(ErrorKind.DEVICE_NOT_ROOTED)

        if self.sessions.is_active(ip):
            logger.info(f"{ip} is already blocked")
            return success(True)

        if self.helper is None:
            return failure(ErrorKind.NATIVE_LIBRARY, detail="root helper binary not found")

        route = self._route_provider()
        if not route.gateway_ip:
            logger.error(f"Cannot block {ip}: default gateway unknown")
            return failure(ErrorKind.NETWORK_ACCESS, detail="default gateway not found")

        interface = route.interface or FALLBACK_INTERFACES[0]
        mac_iface, our_mac = self._mac_resolver(interface)
        if not our_mac:
            return failure(ErrorKind.NETWORK_ACCESS, detail=f"no usable MAC for {interface}")

        argv = self.helper.block_argv(interface, ip, route.gateway_ip, our_mac)
        try:
            session, created = self.sessions.get_or_start(
                ip,
                lambda: self._session_factory(
                    ip, argv, label="block", markers=(BLOCK_STARTED,), keep_stdin_open=True
                ),
            )
        except OSError as e:
            logger.error(f"Failed to start block process for {ip}: {e}")
            return failure(ErrorKind.BLOCK_DEVICE, e)

        if created:
            logger.info(
                f"Blocking {ip} via {interface} (gateway {route.gateway_ip}, "
                f"our MAC {our_mac} from {mac_iface}), pid {session.pid}"
            )
        else:
            logger.info(f"{ip} was blocked concurrently; keeping existing session")
        return success(True)

    # -- unblock -------------------------------------------------------------

    def unblock(self, device) -> Result[bool]:
        """
        Stop blocking a device.  Unblocking an IP that is not blocked
        succeeds.
        """
        ip = _target_ip(device)
        if not is_valid_ipv4(ip):
            return failure(ErrorKind.INVALID_IP_ADDRESS, detail=str(ip))

        session = self.sessions.pop(ip)
        if session is None:
            logger.info(f"{ip} is not blocked - nothing to do")
            return success(True)

        try:
            self._stop_session(session)
        except OSError as e:
            logger.error(f"Failed to stop block process for {ip}: {e}")
            return failure(ErrorKind.UNBLOCK_DEVICE, e)

        if self.restore_arp:
            self._restore(ip)
        logger.info(f"Unblocked {ip}")
        return success(True)

    def _stop_session(self, session: ProcessSession) -> None:
        if self.helper is not None:
            self._killer(self.helper.block_pattern(session.key))
        session.terminate()

    def _restore(self, ip: str) -> bool:
        """Re-announce the real addresses after a block.  Best-effort."""
        if self.helper is None:
            return False
        route = self._route_provider()
        if not route.gateway_ip:
            logger.debug(f"Skipping ARP restore for {ip}: gateway unknown")
            return False
        interface = route.interface or FALLBACK_INTERFACES[0]
        target_mac = self.resolve_mac(interface, ip)
        gateway_mac = self.resolve_mac(interface, route.gateway_ip)
        if not target_mac or not gateway_mac:
            logger.debug(f"Skipping ARP restore for {ip}: MACs unknown")
            return False

        stdout, stderr, returncode = self._run(
            self.helper.unblock_argv(interface, ip, target_mac, route.gateway_ip, gateway_mac),
            timeout=RESTORE_TIMEOUT,
        )
        if returncode == 0 or UNBLOCK_FINISHED in stdout:
            logger.debug(f"ARP tables restored for {ip}")
            return True
        logger.warning(f"ARP restore for {ip} failed (rc={returncode}): {stderr.strip()}")
        return False

    def resolve_mac(self, interface: str, ip: str) -> Optional[str]:
        """MAC for ``ip``: neighbor table, then the helper, then scapy."""
        mac = self.neighbor_reader.mac_for(ip)
        if mac:
            return mac

        if self.helper is not None:
            stdout, _stderr, returncode = self._run(self.helper.mac_argv(interface, ip), timeout=RESTORE_TIMEOUT)
            if returncode == 0:
                for token in stdout.split():
                    if MAC_PATTERN.match(token) and is_acceptable_mac(token):
                        return token.lower()

        if self.native is not None:
            return self.native.mac_for_ip(interface, ip)
        return None

    # -- state ---------------------------------------------------------------

    def is_blocked(self, ip: str) -> bool:
        return self.sessions.is_active(ip)

    def blocked_ips(self) -> List[str]:
        return self.sessions.active_keys()

    def shutdown(self) -> int:
        """Stop every block process.  Returns how many were tracked."""
        sessions = self.sessions.pop_all()
        for session in sessions:
            try:
                self._stop_session(session)
            except Exception as e:
                logger.error(f"Error stopping block for {session.key}: {e}")
        if sessions:
            logger.info(f"Stopped {len(sessions)} block sessions")
        return len(sessions)
