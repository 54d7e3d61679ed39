"""
NetWarden Modules Package

Discovery, classification and access-control engine.
"""

from .errors import (
    ErrorKind, NetworkError, NetworkOperationError,
    Success, Failure, Result, success, failure,
)
from .process import ProcessSession, SessionRegistry, run_command, elevated
from .privilege import PrivilegeDetector
from .vendor import VendorResolver, OuiDatabase, lookup_vendor, MAC_VENDOR_AVAILABLE
from .classifier import classify, classify_vendor
from .neighbors import NeighborEntry, NeighborTableReader
from .interfaces import RouteInfo, get_route_info, get_gateway_ip, get_interface_mac
from .helper import RootHelper, find_helper_path
from .native import NativeNetworkOps, SCAPY_AVAILABLE
from .discovery import Device, NetworkTopology, DiscoveryEngine
from .access_control import AccessController
from .redirect import DnsSpoofManager, DhcpSpoofManager
from .monitor import NetworkMonitor

__all__ = [
    "ErrorKind",
    "NetworkError",
    "NetworkOperationError",
    "Success",
    "Failure",
    "Result",
    "success",
    "failure",
    "ProcessSession",
    "SessionRegistry",
    "run_command",
    "elevated",
    "PrivilegeDetector",
    "VendorResolver",
    "OuiDatabase",
    "lookup_vendor",
    "MAC_VENDOR_AVAILABLE",
    "classify",
    "classify_vendor",
    "NeighborEntry",
    "NeighborTableReader",
    "RouteInfo",
    "get_route_info",
    "get_gateway_ip",
    "get_interface_mac",
    "RootHelper",
    "find_helper_path",
    "NativeNetworkOps",
    "SCAPY_AVAILABLE",
    "Device",
    "NetworkTopology",
    "DiscoveryEngine",
    "AccessController",
    "DnsSpoofManager",
    "DhcpSpoofManager",
    "NetworkMonitor",
]
