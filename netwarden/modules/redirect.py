"""
Traffic Redirect Module

DNS and DHCP response spoofing, each run by the helper as a long-lived
elevated process.  DNS sessions are keyed by domain and DHCP sessions by
interface; starting a session for a key that already has one terminates
the old process first.

Startup is confirmed heuristically: after a short wait the process must
still be alive.
"""

import logging
import time
from typing import Callable, Iterable, List, Optional, Sequence

from config import FALLBACK_INTERFACES, SPOOF_STARTUP_WAIT

from .errors import ErrorKind, Failure, Result, failure, success
from .helper import (
    DHCP_SPOOF_STARTED,
    DHCP_SPOOF_STATUS,
    DNS_SPOOF_STARTED,
    DNS_SPOOF_STATUS,
    RootHelper,
)
from .neighbors import MAC_PATTERN, is_valid_ipv4
from .privilege import PrivilegeDetector
from .process import ProcessSession, SessionRegistry, kill_by_pattern

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., ProcessSession]


class _SpoofManager:
    """Shared launch/stop logic for helper-backed spoofing sessions."""

    label = "spoof"
    markers: Sequence[str] = ()

    def __init__(
        self,
        privilege: Optional[PrivilegeDetector] = None,
        helper: Optional[RootHelper] = None,
        session_factory: SessionFactory = ProcessSession.start,
        killer: Callable[[str], bool] = kill_by_pattern,
        startup_wait: float = SPOOF_STARTUP_WAIT,
    ):
        self.privilege = privilege or PrivilegeDetector()
        self.helper = helper
        self._session_factory = session_factory
        self._killer = killer
        self.startup_wait = startup_wait
        self.sessions = SessionRegistry(self.label)

    def _check_ready(self) -> Optional[Failure]:
        rooted = self.privilege.is_privileged()
        if not rooted.ok:
            return rooted
        if not rooted.value:
            logger.warning(f"Cannot start {self.label}: root access unavailable")
            return failure(ErrorKind.DEVICE_NOT_ROOTED)
        if self.helper is None:
            logger.error(f"Cannot start {self.label}: root helper binary not found")
            return failure(ErrorKind.NATIVE_LIBRARY, detail="root helper binary not found")
        return None

    def _launch(self, key: str, argv: List[str]) -> Result[bool]:
        if key in self.sessions:
            # The elevated helper outlives its shell handle
            pattern = self._kill_pattern(key)
            if pattern:
                self._killer(pattern)
        try:
            session = self.sessions.replace(
                key,
                lambda: self._session_factory(
                    key, argv, label=self.label, markers=self.markers
                ),
            )
        except OSError as e:
            logger.error(f"Failed to start {self.label} for {key}: {e}")
            return failure(ErrorKind.COMMAND_EXECUTION, e)

        if self.startup_wait > 0:
            time.sleep(self.startup_wait)

        if session.is_alive():
            logger.info(f"{self.label} started for {key} (pid {session.pid})")
            return success(True)

        returncode = session.returncode
        self.sessions.remove_if(key, session)
        logger.error(f"{self.label} for {key} exited during startup (rc={returncode})")
        return failure(ErrorKind.COMMAND_EXECUTION, detail=f"{self.label} exited with {returncode}")

    def _kill_pattern(self, key: str) -> Optional[str]:
        """pkill pattern for the helper process serving ``key``."""
        raise NotImplementedError

    def _stop_session(self, session: ProcessSession) -> None:
        pattern = self._kill_pattern(session.key)
        if pattern:
            self._killer(pattern)
        session.terminate()

    def _stop(self, key: str) -> Result[bool]:
        session = self.sessions.pop(key)
        if session is None:
            return success(False)
        try:
            self._stop_session(session)
        except OSError as e:
            logger.error(f"Failed to stop {self.label} for {key}: {e}")
            return failure(ErrorKind.COMMAND_EXECUTION, e)
        logger.info(f"{self.label} stopped for {key}")
        return success(True)

    def active_keys(self) -> List[str]:
        return self.sessions.active_keys()

    def shutdown(self) -> int:
        """Stop every session.  Returns how many were tracked."""
        sessions = self.sessions.pop_all()
        for session in sessions:
            try:
                self._stop_session(session)
            except Exception as e:
                logger.error(f"Error stopping {self.label} for {session.key}: {e}")
        return len(sessions)


class DnsSpoofManager(_SpoofManager):
    """Answers DNS queries for chosen domains with a chosen address."""

    label = "dns-spoof"
    markers = (DNS_SPOOF_STARTED, DNS_SPOOF_STATUS)

    def start_spoof(
        self,
        domain: str,
        spoofed_ip: str,
        interface: Optional[str] = None,
    ) -> Result[bool]:
        """
        Start answering queries for ``domain`` with ``spoofed_ip``.

        An existing session for the same domain is terminated first.

        Args:
            domain: Domain to spoof
            spoofed_ip: Address returned for it
            interface: Interface to listen on (default: first fallback)
        """
        domain = (domain or "").strip().lower()
        if not domain:
            return failure(ErrorKind.COMMAND_EXECUTION, detail="domain is empty")
        if not is_valid_ipv4(spoofed_ip):
            return failure(ErrorKind.INVALID_IP_ADDRESS, detail=str(spoofed_ip))

        not_ready = self._check_ready()
        if not_ready is not None:
            return not_ready

        interface = interface or FALLBACK_INTERFACES[0]
        argv = self.helper.dns_spoof_argv(interface, domain, spoofed_ip)
        logger.info(f"Spoofing DNS for {domain} -> {spoofed_ip} on {interface}")
        return self._launch(domain, argv)

    def _kill_pattern(self, key: str) -> Optional[str]:
        if self.helper is None:
            return None
        return self.helper.dns_spoof_pattern(key)

    def stop_spoof(self, domain: str) -> Result[bool]:
        """Success(False) when no session exists for ``domain``."""
        return self._stop((domain or "").strip().lower())

    def is_active(self, domain: str) -> bool:
        return self.sessions.is_active((domain or "").strip().lower())


class DhcpSpoofManager(_SpoofManager):
    """Answers DHCP requests from chosen clients with chosen leases."""

    label = "dhcp-spoof"
    markers = (DHCP_SPOOF_STARTED, DHCP_SPOOF_STATUS)

    def start_spoof(
        self,
        interface: str,
        target_macs: Sequence[str],
        spoofed_ips: Sequence[str],
        gateway_ips: Sequence[str],
        dns_servers: Sequence[str],
        subnet_masks: Optional[Sequence[str]] = None,
    ) -> Result[bool]:
        """
        Start a DHCP spoofing session on ``interface``.

        The per-target lists must have equal length; the helper serves the
        first target.  A running session on the same interface is replaced.
        """
        interface = interface or FALLBACK_INTERFACES[0]
        lists = [target_macs, spoofed_ips, gateway_ips, dns_servers]
        if subnet_masks is not None:
            lists.append(subnet_masks)
        lengths = {len(values) for values in lists}
        if len(lengths) != 1 or 0 in lengths:
            logger.error(f"DHCP spoof target lists have mismatched lengths: {sorted(lengths)}")
            return failure(ErrorKind.COMMAND_EXECUTION, detail="mismatched DHCP target lists")

        bad_mac = self._first_invalid(target_macs, lambda m: bool(MAC_PATTERN.match(m or "")))
        if bad_mac is not None:
            return failure(ErrorKind.INVALID_MAC_ADDRESS, detail=str(bad_mac))
        bad_ip = self._first_invalid(
            [*spoofed_ips, *gateway_ips, *dns_servers], is_valid_ipv4
        )
        if bad_ip is not None:
            return failure(ErrorKind.INVALID_IP_ADDRESS, detail=str(bad_ip))

        not_ready = self._check_ready()
        if not_ready is not None:
            return not_ready

        if len(target_macs) > 1:
            logger.warning(
                f"DHCP spoof got {len(target_macs)} targets; only {target_macs[0]} is served"
            )
        argv = self.helper.dhcp_spoof_argv(
            interface,
            target_macs[0].lower(),
            spoofed_ips[0],
            gateway_ips[0],
            dns_servers[0],
        )
        logger.info(f"Spoofing DHCP for {target_macs[0]} -> {spoofed_ips[0]} on {interface}")
        return self._launch(interface, argv)

    @staticmethod
    def _first_invalid(values: Iterable[str], check: Callable[[str], bool]) -> Optional[str]:
        for value in values:
            if not check(value):
                return value
        return None

    def _kill_pattern(self, key: str) -> Optional[str]:
        if self.helper is None:
            return None
        return self.helper.dhcp_spoof_pattern(key)

    def stop_spoof(self, interface: Optional[str] = None) -> Result[bool]:
        """Stop the session on ``interface``, or every session when None."""
        if interface is not None:
            return self._stop(interface)
        stopped = self.shutdown()
        return success(stopped > 0)

    def is_active(self, interface: Optional[str] = None) -> bool:
        if interface is None:
            return bool(self.sessions.active_keys())
        return self.sessions.is_active(interface)
