#!/usr/bin/env python3
"""
NetWarden - Network Discovery and Access Control

Command-line entry point.

Commands:
    rooted       Report whether root execution is available
    scan         Discover devices on the local /24
    topology     Group discovered devices by type and find the gateway
    ping         Check whether one device answers
    block        Block a device until interrupted
    dns-spoof    Spoof one domain until interrupted
    dhcp-spoof   Spoof DHCP leases for one client until interrupted
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import List, Optional

from config import (
    DEFAULT_SCAN_TIMEOUT,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILE,
    LOG_FORMAT,
    LOG_MAX_BYTES,
    DEBUG_MODE,
)

from modules import Device, NetworkMonitor, NetworkTopology, Result

# Setup logging
from logging.handlers import RotatingFileHandler

VERSION = "1.0.0"


def setup_logging(verbose: bool = False) -> None:
    """
    Setup application logging.

    Args:
        verbose: Enable debug logging
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    # File handler with rotation
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Suppress noisy libraries
    logging.getLogger('scapy.runtime').setLevel(logging.WARNING)

    logging.info("Logging initialized")


logger = logging.getLogger(__name__)


def report_failure(result: Result, verbose: bool) -> int:
    error = result.error
    print(f"Error: {error.message}", file=sys.stderr)
    if verbose:
        print(error.detailed_report(), file=sys.stderr)
    return 1


def print_devices(devices: List[Device]) -> None:
    if not devices:
        print("No devices found")
        return
    print(f"{'IP':<16} {'MAC':<18} {'VENDOR':<28} {'TYPE':<24} HOSTNAME")
    for device in sorted(devices, key=lambda d: tuple(int(o) for o in d.ip.split("."))):
        marker = " *" if device.is_current else ""
        print(
            f"{device.ip:<16} {device.mac:<18} {(device.vendor or '-')[:27]:<28} "
            f"{(device.device_type or '-'):<24} {device.hostname or '-'}{marker}"
        )


def print_topology(topology: NetworkTopology) -> None:
    gateway = topology.gateway
    print(f"Gateway: {gateway.ip + ' (' + gateway.mac + ')' if gateway else 'not seen'}")
    for label, members in sorted(topology.groups.items()):
        print(f"{label}:")
        for device in members:
            print(f"  {device.ip:<16} {device.vendor or '-'}")
    if topology.unknown:
        print("Unknown:")
        for device in topology.unknown:
            print(f"  {device.ip:<16} {device.mac}")


def wait_for_interrupt() -> None:
    """Block until SIGINT or SIGTERM."""
    stop = threading.Event()

    def signal_handler(sig, frame):
        logger.info("Shutdown signal received (%s)", signal.Signals(sig).name)
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    print("Running - press Ctrl-C to stop")
    while not stop.wait(1.0):
        pass


def dispatch(args: argparse.Namespace, monitor: NetworkMonitor) -> int:
    """Dispatch one sub-command; returns the process exit code."""
    if args.command == "rooted":
        result = monitor.is_device_rooted()
        if not result.ok:
            return report_failure(result, args.verbose)
        print("Root access: " + ("available" if result.value else "not available"))
        return 0 if result.value else 2

    if args.command == "scan":
        result = monitor.scan(interface=args.interface, timeout=args.timeout)
        if not result.ok:
            return report_failure(result, args.verbose)
        if args.json:
            print(json.dumps([d.to_dict() for d in result.value], indent=2))
        else:
            print_devices(result.value)
        return 0

    if args.command == "topology":
        result = monitor.map_topology()
        if not result.ok:
            return report_failure(result, args.verbose)
        if args.json:
            print(json.dumps(result.value.to_dict(), indent=2))
        else:
            print_topology(result.value)
        return 0

    if args.command == "ping":
        result = monitor.test_ping(args.ip)
        if not result.ok:
            return report_failure(result, args.verbose)
        print(f"{args.ip} is {'reachable' if result.value else 'not reachable'}")
        return 0 if result.value else 2

    if args.command == "block":
        result = monitor.block(args.ip)
        if not result.ok:
            return report_failure(result, args.verbose)
        print(f"Blocking {args.ip}")
        wait_for_interrupt()
        monitor.unblock(args.ip)
        print(f"Unblocked {args.ip}")
        return 0

    if args.command == "dns-spoof":
        result = monitor.start_dns_spoof(args.domain, args.ip, args.interface)
        if not result.ok:
            return report_failure(result, args.verbose)
        print(f"Spoofing {args.domain} -> {args.ip}")
        wait_for_interrupt()
        monitor.stop_dns_spoof(args.domain)
        return 0

    if args.command == "dhcp-spoof":
        result = monitor.start_dhcp_spoof(
            args.interface,
            [args.mac],
            [args.ip],
            [args.gateway],
            [args.dns],
            [args.mask] if args.mask else None,
        )
        if not result.ok:
            return report_failure(result, args.verbose)
        print(f"Spoofing DHCP for {args.mac} -> {args.ip}")
        wait_for_interrupt()
        monitor.stop_dhcp_spoof(args.interface)
        return 0

    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NetWarden - Network Discovery and Access Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py rooted
  python main.py scan --interface wlan0 --json
  python main.py block 192.168.1.23
  python main.py dns-spoof example.com 192.168.1.10 -i wlan0
        """
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        default=DEBUG_MODE,
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'NetWarden {VERSION}'
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("rooted", help="Check for root access")

    scan = subparsers.add_parser("scan", help="Discover devices")
    scan.add_argument('-i', '--interface', type=str, default=None,
                      help='Network interface to use (default: auto-detect)')
    scan.add_argument('-t', '--timeout', type=int, default=DEFAULT_SCAN_TIMEOUT,
                      help=f'Scan timeout in seconds (default: {DEFAULT_SCAN_TIMEOUT})')
    scan.add_argument('--json', action='store_true', help='Print JSON')

    topology = subparsers.add_parser("topology", help="Group devices and find the gateway")
    topology.add_argument('--json', action='store_true', help='Print JSON')

    ping = subparsers.add_parser("ping", help="Check whether a device answers")
    ping.add_argument('ip', help='Target IP address')

    block = subparsers.add_parser("block", help="Block a device until interrupted")
    block.add_argument('ip', help='Target IP address')

    dns = subparsers.add_parser("dns-spoof", help="Spoof a domain until interrupted")
    dns.add_argument('domain', help='Domain to spoof')
    dns.add_argument('ip', help='Address to answer with')
    dns.add_argument('-i', '--interface', type=str, default=None,
                     help='Network interface to listen on')

    dhcp = subparsers.add_parser("dhcp-spoof", help="Spoof DHCP leases until interrupted")
    dhcp.add_argument('-i', '--interface', type=str, required=True,
                      help='Network interface to serve on')
    dhcp.add_argument('--mac', required=True, help='Client MAC address')
    dhcp.add_argument('--ip', required=True, help='Address to lease')
    dhcp.add_argument('--gateway', required=True, help='Gateway to hand out')
    dhcp.add_argument('--dns', required=True, help='DNS server to hand out')
    dhcp.add_argument('--mask', default=None, help='Subnet mask to hand out')

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    monitor: Optional[NetworkMonitor] = None
    try:
        monitor = NetworkMonitor()
        exit_code = dispatch(args, monitor)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        exit_code = 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        exit_code = 1
    finally:
        if monitor is not None:
            monitor.shutdown()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
