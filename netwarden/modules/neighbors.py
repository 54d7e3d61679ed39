"""
Neighbor Table Reader

Reads the kernel IP <-> MAC neighbor cache from two independent sources and
merges them, de-duplicating by MAC address:

    Format A - ``ip neigh show``:
        192.168.1.1 dev wlan0 lladdr b4:8c:9d:8c:ef:09 REACHABLE
    Format B - ``/proc/net/arp``:
        IP address  HW type  Flags  HW address         Mask  Device
        192.168.1.1 0x1      0x2    b4:8c:9d:8c:ef:09  *     wlan0

Either source may be missing or time out; the reader returns whatever the
other one produced.  Format A wins when both report the same MAC.
"""

import logging
import re
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from config import NEIGHBOR_READ_TIMEOUT

from .process import elevated, run_command

logger = logging.getLogger(__name__)

IPV4_PATTERN = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")
NULL_MAC = "00:00:00:00:00:00"
INCOMPLETE_MARKERS = ("<incomplete>", "incomplete", "(incomplete)")

IP_NEIGH_CMD = ["ip", "neigh", "show"]
PROC_ARP_CMD = ["cat", "/proc/net/arp"]

CommandRunner = Callable[..., Tuple[str, str, int]]


class NeighborEntry(NamedTuple):
    """One accepted neighbor-table row."""
    ip: str
    mac: str
    interface: Optional[str] = None
    state: Optional[str] = None
    hw_type: Optional[str] = None
    mask: Optional[str] = None
    source: str = "ip_neigh"


def is_valid_ipv4(ip: Optional[str]) -> bool:
    if not ip or not IPV4_PATTERN.match(ip):
        return False
    return all(0 <= int(octet) <= 255 for octet in ip.split("."))


def is_acceptable_mac(mac: Optional[str]) -> bool:
    """Six hex octet pairs, not all-zero, not an incomplete placeholder."""
    if not mac or mac.lower() in INCOMPLETE_MARKERS:
        return False
    if not MAC_PATTERN.match(mac):
        return False
    return mac != NULL_MAC


def _field_after(parts: List[str], keyword: str) -> Optional[str]:
    try:
        index = parts.index(keyword)
    except ValueError:
        return None
    return parts[index + 1] if index + 1 < len(parts) else None


def parse_ip_neigh(output: str) -> List[NeighborEntry]:
    """Parse ``ip neigh show`` output (Format A)."""
    entries: List[NeighborEntry] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        ip = parts[0]
        mac = _field_after(parts, "lladdr")
        if not is_valid_ipv4(ip) or not is_acceptable_mac(mac):
            logger.debug(f"Skipping neighbor row: {line.strip()}")
            continue
        state = parts[-1] if parts[-1].isupper() else None
        entries.append(NeighborEntry(
            ip=ip,
            mac=mac.lower(),
            interface=_field_after(parts, "dev"),
            state=state,
            source="ip_neigh",
        ))
    return entries


def parse_proc_arp(output: str) -> List[NeighborEntry]:
    """Parse ``/proc/net/arp`` content (Format B)."""
    entries: List[NeighborEntry] = []
    for line in output.splitlines()[1:]:  # skip header
        parts = line.split()
        if len(parts) != 6:
            continue
        ip, hw_type, _flags, mac, mask, interface = parts
        if not is_valid_ipv4(ip) or not is_acceptable_mac(mac):
            logger.debug(f"Skipping ARP row: {line.strip()}")
            continue
        entries.append(NeighborEntry(
            ip=ip,
            mac=mac.lower(),
            interface=interface,
            hw_type=hw_type,
            mask=mask,
            source="proc_arp",
        ))
    return entries


def merge_entries(primary: List[NeighborEntry], secondary: List[NeighborEntry]) -> List[NeighborEntry]:
    """Concatenate, keeping the first row seen for every MAC."""
    merged: Dict[str, NeighborEntry] = {}
    for entry in list(primary) + list(secondary):
        if entry.mac not in merged:
            merged[entry.mac] = entry
    return list(merged.values())


class NeighborTableReader:
    """Runs both neighbor-table commands and merges their rows."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        timeout: float = NEIGHBOR_READ_TIMEOUT,
        use_elevation: bool = False,
    ):
        self._runner = runner
        self.timeout = timeout
        self.use_elevation = use_elevation

    def _run(self, argv: List[str]) -> Optional[str]:
        runner = self._runner or run_command
        cmd = elevated(" ".join(argv)) if self.use_elevation else argv
        stdout, stderr, returncode = runner(cmd, timeout=self.timeout)
        if returncode != 0:
            logger.debug(f"{' '.join(argv)} unavailable (rc={returncode}): {stderr.strip()}")
            return None
        return stdout

    def read_ip_neigh(self) -> List[NeighborEntry]:
        try:
            output = self._run(IP_NEIGH_CMD)
        except Exception as e:
            logger.warning(f"ip neigh read failed: {e}")
            return []
        return parse_ip_neigh(output) if output else []

    def read_proc_arp(self) -> List[NeighborEntry]:
        try:
            output = self._run(PROC_ARP_CMD)
        except Exception as e:
            logger.warning(f"/proc/net/arp read failed: {e}")
            return []
        return parse_proc_arp(output) if output else []

    def read(self) -> List[NeighborEntry]:
        """Return the merged neighbor table, one entry per MAC."""
        primary = self.read_ip_neigh()
        secondary = self.read_proc_arp()
        entries = merge_entries(primary, secondary)
        logger.debug(
            f"Neighbor table: {len(primary)} ip-neigh rows, "
            f"{len(secondary)} arp rows, {len(entries)} unique"
        )
        return entries

    def state_for(self, ip: str) -> Optional[str]:
        """Neighbor state (REACHABLE, STALE, ...) reported for ``ip``."""
        output = self._run(IP_NEIGH_CMD + [ip])
        if not output:
            return None
        for line in output.splitlines():
            parts = line.split()
            if parts and parts[0] == ip:
                return parts[-1] if parts[-1].isupper() else None
        return None

    def mac_for(self, ip: str) -> Optional[str]:
        for entry in self.read():
            if entry.ip == ip:
                return entry.mac
        return None
