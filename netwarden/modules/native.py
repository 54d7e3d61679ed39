"""
Native Network Operations

In-process alternative to the helper binary for the read-only operations:
an ARP sweep of the local /24 and single-address MAC resolution, both via
scapy.  Raw sockets need root or CAP_NET_RAW; without them (or without
scapy) every call returns an empty result and the caller falls back.
"""

import ipaddress
import logging
from typing import List, Optional, Tuple

from .neighbors import is_acceptable_mac

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Attempt to import scapy.  If unavailable the layer reports itself as
# unavailable and discovery uses the neighbor table instead.
# ---------------------------------------------------------------------------
try:
    from scapy.all import ARP, Ether, srp
    SCAPY_AVAILABLE = True
except ImportError:
    SCAPY_AVAILABLE = False
    logger.info("scapy is not installed - native ARP operations disabled")


class NativeNetworkOps:
    """ARP sweep and MAC resolution over scapy raw sockets."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def is_available(self) -> bool:
        return self.enabled and SCAPY_AVAILABLE

    def scan(
        self,
        interface: Optional[str],
        network_cidr: str,
        timeout: float = 2.0,
    ) -> List[Tuple[str, str]]:
        """Perform an active ARP sweep.

        Args:
            interface: Interface to send on, or None for scapy's default
            network_cidr: e.g. "192.168.1.0/24"
            timeout: Seconds to wait for replies

        Returns:
            List of (ip, mac) tuples for hosts that responded.
        """
        if not self.is_available():
            return []

        results: List[Tuple[str, str]] = []
        try:
            net = ipaddress.IPv4Network(network_cidr, strict=False)
            hosts = [str(h) for h in net.hosts()]
            if not hosts:
                return results

            answered = self._send(hosts, interface, timeout)
            seen = set()
            for _sent, received in answered:
                ip = received.psrc
                mac = received.hwsrc.lower()
                if is_acceptable_mac(mac) and mac not in seen:
                    seen.add(mac)
                    results.append((ip, mac))

            logger.debug("Native ARP sweep of %s found %d hosts", network_cidr, len(results))
        except PermissionError:
            logger.warning("Native ARP sweep requires root/CAP_NET_RAW - skipping")
            return []
        except Exception as e:
            logger.error("Native ARP sweep failed: %s", e)
            return []

        return results

    def mac_for_ip(self, interface: Optional[str], ip: str, timeout: float = 2.0) -> Optional[str]:
        """Resolve one address with a single who-has."""
        if not self.is_available():
            return None
        try:
            for _sent, received in self._send([ip], interface, timeout):
                mac = received.hwsrc.lower()
                if is_acceptable_mac(mac):
                    return mac
        except PermissionError:
            logger.debug("Native MAC resolution for %s needs CAP_NET_RAW", ip)
        except Exception as e:
            logger.debug("Native MAC resolution for %s failed: %s", ip, e)
        return None

    @staticmethod
    def _send(targets: List[str], interface: Optional[str], timeout: float):
        request = Ether(dst="ff:ff:ff:ff:ff:ff") / ARP(pdst=targets)
        kwargs = {"timeout": timeout, "verbose": 0}
        if interface:
            kwargs["iface"] = interface
        answered, _ = srp(request, **kwargs)
        return answered
