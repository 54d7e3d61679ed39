"""
Root Helper Module

Locates the privileged helper binary, makes sure it is executable, and
builds/parses its command lines.  The helper itself performs the packet
work; this module only knows its calling convention:

    <path> scan <iface> <subnet_prefix> [timeout]     -> "ip|mac" lines
    <path> mac <iface> <ip>                           -> one MAC line
    <path> block <iface> <ip> <gateway_ip> <our_mac>  -> BLOCK_STARTED, runs forever
    <path> unblock <iface> <ip> <mac> <gw_ip> <gw_mac>
    <path> dns_spoof <iface> <domain> <ip>            -> DNS_SPOOF_STARTED, runs forever
    <path> dhcp_spoof <iface> <mac> <ip> <gw_ip> <dns> -> DHCP_SPOOF_STARTED, runs forever
"""

import logging
import os
import re
import shlex
import shutil
import stat
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from config import (
    HELPER_ABI_SUBDIRS,
    HELPER_BINARY_NAME,
    HELPER_PATH_OVERRIDE,
    HELPER_SEARCH_DIRS,
)

from .neighbors import is_acceptable_mac, is_valid_ipv4
from .process import elevated

logger = logging.getLogger(__name__)

# Output markers
BLOCK_STARTED = "BLOCK_STARTED"
UNBLOCK_FINISHED = "UNBLOCK_FINISHED"
DNS_SPOOF_STARTED = "DNS_SPOOF_STARTED"
DNS_SPOOF_STATUS = "DNS_SPOOF_STATUS"
DHCP_SPOOF_STARTED = "DHCP_SPOOF_STARTED"
DHCP_SPOOF_STATUS = "DHCP_SPOOF_STATUS"

# Characters with a meaning in POSIX extended regexes (pkill -f)
_ERE_SPECIAL = re.compile(r"([.^$*+?()\[\]{}|\\])")


def ere_escape(text: str) -> str:
    return _ERE_SPECIAL.sub(r"\\\1", text)


def _candidate_names(name: str) -> List[str]:
    # Android packaging ships the helper as lib<name>.so
    return [name, f"lib{name}.so"]


def find_helper_path(
    name: str = HELPER_BINARY_NAME,
    search_dirs: Iterable[str] = HELPER_SEARCH_DIRS,
    override: str = HELPER_PATH_OVERRIDE,
) -> Optional[str]:
    """
    Locate the helper binary.

    Order: explicit override, each search directory and its ABI
    sub-directories, then PATH.

    Returns:
        Absolute path, or None when the helper is not installed.
    """
    if override:
        if Path(override).is_file():
            return override
        logger.warning(f"Configured helper path does not exist: {override}")

    checked: List[str] = []
    for directory in search_dirs:
        for sub in ["", *HELPER_ABI_SUBDIRS]:
            base = Path(directory) / sub if sub else Path(directory)
            for candidate in _candidate_names(name):
                path = base / candidate
                checked.append(str(path))
                if path.is_file():
                    return str(path)

    for candidate in _candidate_names(name):
        found = shutil.which(candidate)
        if found:
            return found

    logger.debug(f"Root helper not found. Checked: {checked} and PATH")
    return None


def ensure_executable(path: str) -> bool:
    """Add the executable bits to the helper if they are missing."""
    try:
        mode = os.stat(path).st_mode
        wanted = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        if mode & wanted == wanted:
            return True
        os.chmod(path, mode | wanted)
        logger.info(f"Set executable permission on {path}")
        return True
    except OSError as e:
        logger.warning(f"Could not make {path} executable: {e}")
        return False


def parse_scan_output(output: str) -> List[Tuple[str, str]]:
    """Extract ``ip|mac`` pairs from helper scan output, skipping noise."""
    results: List[Tuple[str, str]] = []
    seen = set()
    for line in output.splitlines():
        line = line.strip()
        if "|" not in line:
            continue
        ip, _, mac = line.partition("|")
        ip, mac = ip.strip(), mac.strip().lower()
        if not is_valid_ipv4(ip) or not is_acceptable_mac(mac) or mac in seen:
            logger.debug(f"Ignoring helper scan line: {line}")
            continue
        seen.add(mac)
        results.append((ip, mac))
    return results


class RootHelper:
    """A located helper binary and the elevated command lines for it."""

    def __init__(self, path: str):
        self.path = path

    @classmethod
    def locate(cls) -> Optional["RootHelper"]:
        path = find_helper_path()
        if path is None:
            return None
        ensure_executable(path)
        return cls(path)

    @property
    def process_name(self) -> str:
        return os.path.basename(self.path)

    def _command(self, *args: str) -> List[str]:
        line = " ".join([shlex.quote(self.path), *(shlex.quote(str(a)) for a in args)])
        return elevated(line)

    def scan_argv(self, interface: str, subnet_prefix: str, timeout: int) -> List[str]:
        return self._command("scan", interface, subnet_prefix, str(timeout))

    def mac_argv(self, interface: str, ip: str) -> List[str]:
        return self._command("mac", interface, ip)

    def block_argv(self, interface: str, target_ip: str, gateway_ip: str, our_mac: str) -> List[str]:
        return self._command("block", interface, target_ip, gateway_ip, our_mac)

    def unblock_argv(
        self, interface: str, target_ip: str, target_mac: str,
        gateway_ip: str, gateway_mac: str,
    ) -> List[str]:
        return self._command("unblock", interface, target_ip, target_mac, gateway_ip, gateway_mac)

    def dns_spoof_argv(self, interface: str, domain: str, spoofed_ip: str) -> List[str]:
        return self._command("dns_spoof", interface, domain, spoofed_ip)

    def dhcp_spoof_argv(
        self, interface: str, target_mac: str, spoofed_ip: str,
        gateway_ip: str, dns_server: str,
    ) -> List[str]:
        return self._command("dhcp_spoof", interface, target_mac, spoofed_ip, gateway_ip, dns_server)

    def action_pattern(self, action: str, *fields: Optional[str]) -> str:
        """pkill -f pattern for one running helper action.

        Each field matches exactly one argument: ``None`` matches any
        argument, anything else matches literally.  The trailing space
        stops ``a.com`` from matching ``a.com.au``.
        """
        parts = [ere_escape(self.process_name), action]
        parts.extend("[^ ]+" if f is None else ere_escape(f) for f in fields)
        return " ".join(parts) + " "

    def block_pattern(self, target_ip: str) -> str:
        return self.action_pattern("block", None, target_ip)

    def dns_spoof_pattern(self, domain: str) -> str:
        return self.action_pattern("dns_spoof", None, domain)

    def dhcp_spoof_pattern(self, interface: str) -> str:
        return self.action_pattern("dhcp_spoof", interface)

    def __repr__(self) -> str:
        return f"<RootHelper {self.path}>"
