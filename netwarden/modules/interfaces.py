"""
Interface and Route Module

Local network facts the engine needs: the active /24, the interface it
lives on, our own address on it, the default gateway, and interface
hardware addresses.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import netifaces

from config import FALLBACK_INTERFACES, ROUTE_QUERY_TIMEOUT

from .neighbors import NULL_MAC, is_acceptable_mac
from .process import elevated, run_command

logger = logging.getLogger(__name__)

SUBNET_PATTERN = re.compile(r"^(\d{1,3}\.\d{1,3}\.\d{1,3})\.0/24\b")
GATEWAY_PATTERN = re.compile(r"^default\s+via\s+(\d+\.\d+\.\d+\.\d+)")
SRC_PATTERN = re.compile(r"\bsrc\s+(\d+\.\d+\.\d+\.\d+)")
DEV_PATTERN = re.compile(r"\bdev\s+(\S+)")

CommandRunner = Callable[..., Tuple[str, str, int]]


@dataclass
class RouteInfo:
    """What the routing table says about the local network."""
    subnet_prefix: Optional[str] = None   # "192.168.1"
    interface: Optional[str] = None
    local_ip: Optional[str] = None
    gateway_ip: Optional[str] = None

    @property
    def subnet_cidr(self) -> Optional[str]:
        return f"{self.subnet_prefix}.0/24" if self.subnet_prefix else None

    def host_addresses(self) -> List[str]:
        if not self.subnet_prefix:
            return []
        return [f"{self.subnet_prefix}.{i}" for i in range(1, 255)]

    @property
    def broadcast_address(self) -> Optional[str]:
        return f"{self.subnet_prefix}.255" if self.subnet_prefix else None


def parse_route_table(output: str) -> RouteInfo:
    """
    Parse ``ip route`` output.

    The first ``a.b.c.0/24`` entry gives the subnet, its interface and the
    locally bound source address; the ``default via`` entry gives the
    gateway.
    """
    info = RouteInfo()
    for line in output.splitlines():
        line = line.strip()
        gateway_match = GATEWAY_PATTERN.match(line)
        if gateway_match and info.gateway_ip is None:
            info.gateway_ip = gateway_match.group(1)
            if info.local_ip is None:
                src = SRC_PATTERN.search(line)
                if src:
                    info.local_ip = src.group(1)
            continue

        subnet_match = SUBNET_PATTERN.match(line)
        if subnet_match and info.subnet_prefix is None:
            info.subnet_prefix = subnet_match.group(1)
            dev = DEV_PATTERN.search(line)
            if dev:
                info.interface = dev.group(1)
            src = SRC_PATTERN.search(line)
            if src:
                info.local_ip = src.group(1)
    return info


def get_route_info(runner: Optional[CommandRunner] = None) -> RouteInfo:
    """
    Query the routing table, directly first and then through the elevation
    shell.  Missing gateway or local address are filled from netifaces.

    Returns:
        RouteInfo, with None fields for anything that could not be found.
    """
    runner = runner or run_command
    info = RouteInfo()
    for cmd in (["ip", "route"], elevated("ip route")):
        stdout, stderr, returncode = runner(cmd, timeout=ROUTE_QUERY_TIMEOUT)
        if returncode == 0 and stdout:
            info = parse_route_table(stdout)
            if info.subnet_prefix:
                break
        else:
            logger.debug(f"Route query {cmd[0]} failed (rc={returncode}): {stderr.strip()}")

    if info.gateway_ip is None:
        gateway, gateway_iface = get_default_gateway()
        info.gateway_ip = gateway
        if info.interface is None:
            info.interface = gateway_iface

    if info.local_ip is None and info.interface:
        addresses = get_interface_ip_addresses(info.interface)
        if addresses:
            info.local_ip = addresses[0]

    if info.subnet_prefix:
        logger.debug(f"Detected subnet {info.subnet_cidr} on {info.interface}")
    else:
        logger.warning("Could not determine the active /24 subnet")
    return info


def get_default_gateway() -> Tuple[Optional[str], Optional[str]]:
    """Default IPv4 gateway and its interface according to netifaces."""
    try:
        default = netifaces.gateways().get("default", {})
        entry = default.get(netifaces.AF_INET)
        if entry:
            return entry[0], entry[1]
    except (OSError, ValueError, KeyError) as e:
        logger.debug(f"netifaces gateway lookup failed: {e}")
    return None, None


def get_gateway_ip(runner: Optional[CommandRunner] = None) -> Optional[str]:
    """Detect the default gateway/router IP from the system routing table."""
    gateway = get_route_info(runner).gateway_ip
    if gateway:
        logger.debug(f"Detected gateway IP: {gateway}")
    else:
        logger.warning("Could not detect default gateway")
    return gateway


def get_interface_mac(interface_name: str) -> Optional[str]:
    """
    Get MAC address for a network interface.

    Args:
        interface_name: Network interface name

    Returns:
        MAC address or None if not available
    """
    try:
        addrs = netifaces.ifaddresses(interface_name)
        if netifaces.AF_LINK in addrs:
            mac = addrs[netifaces.AF_LINK][0].get('addr')
            if mac:
                return mac.lower()
    except (ValueError, KeyError, IndexError):
        pass

    # Fallback: read from sysfs
    mac_path = Path(f"/sys/class/net/{interface_name}/address")
    if mac_path.exists():
        try:
            return mac_path.read_text().strip().lower()
        except OSError:
            pass

    return None


def get_interface_ip_addresses(interface_name: str) -> List[str]:
    """IPv4 addresses assigned to an interface."""
    try:
        addrs = netifaces.ifaddresses(interface_name)
    except ValueError:
        return []
    return [a["addr"] for a in addrs.get(netifaces.AF_INET, []) if a.get("addr")]


def resolve_our_mac(
    primary: Optional[str],
    fallbacks: Iterable[str] = FALLBACK_INTERFACES,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Find a usable hardware address for ourselves.

    Tries ``primary`` first, then each fallback interface.  All-zero and
    malformed addresses are skipped.

    Returns:
        (interface, mac) or (None, None)
    """
    candidates: List[str] = []
    for name in [primary, *fallbacks]:
        if name and name not in candidates:
            candidates.append(name)

    for name in candidates:
        mac = get_interface_mac(name)
        if mac and mac != NULL_MAC and is_acceptable_mac(mac):
            if name != primary:
                logger.info(f"Using fallback interface {name} for our MAC ({mac})")
            return name, mac
    logger.warning(f"No usable MAC on any of: {', '.join(candidates)}")
    return None, None
