"""
NetWarden Configuration Module

Contains all configuration constants and default values for the engine.
"""

import os
from pathlib import Path
from typing import List

# Project Paths
PROJECT_ROOT = Path(__file__).parent
LOGS_DIR = PROJECT_ROOT / "logs"
DATA_DIR = PROJECT_ROOT / "data"

# Ensure directories exist
LOGS_DIR.mkdir(exist_ok=True)


# Environment Variable Overrides
def get_env_int(key: str, default: int) -> int:
    """Get integer from environment variable with fallback to default."""
    try:
        return int(os.getenv(key, default))
    except (ValueError, TypeError):
        return default

def get_env_float(key: str, default: float) -> float:
    """Get float from environment variable with fallback to default."""
    try:
        return float(os.getenv(key, default))
    except (ValueError, TypeError):
        return default

def get_env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable with fallback to default."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")

def get_env_str(key: str, default: str) -> str:
    """Get string from environment variable with fallback to default."""
    value = os.getenv(key)
    return value.strip() if value else default

def get_env_list(key: str, default: List[str]) -> List[str]:
    """Get list from comma-separated environment variable."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


# Privilege Elevation
ELEVATION_SHELL = get_env_str("NETWARDEN_SU", "su")
SUPERUSER_ID_MARKER = "uid=0"
ELEVATION_MANAGERS = get_env_list("NETWARDEN_ELEVATION_MANAGERS", ["magisk"])
ELEVATION_BINARY_PATHS = get_env_list(
    "NETWARDEN_ELEVATION_PATHS",
    ["/system/xbin/su", "/system/bin/su", "/data/adb/magisk/magisk"],
)
PRIVILEGE_CACHE_SECONDS = get_env_int("NETWARDEN_PRIVILEGE_CACHE", 60)

# Privileged Helper Binary
HELPER_BINARY_NAME = get_env_str("NETWARDEN_HELPER_NAME", "harpy_root_helper")
HELPER_PATH_OVERRIDE = get_env_str("NETWARDEN_HELPER_PATH", "")
HELPER_SEARCH_DIRS = get_env_list(
    "NETWARDEN_HELPER_DIRS",
    [str(PROJECT_ROOT / "bin"), "/usr/local/lib/netwarden", "/usr/lib/netwarden"],
)
HELPER_ABI_SUBDIRS = ["arm64-v8a", "arm64", "x86_64", "armeabi-v7a"]

# Command Timeouts (seconds)
PRIVILEGE_PROBE_TIMEOUT = get_env_int("NETWARDEN_PRIVILEGE_TIMEOUT", 3)
ROUTE_QUERY_TIMEOUT = 5
NEIGHBOR_READ_TIMEOUT = 5
HELPER_SCAN_TIMEOUT = get_env_int("NETWARDEN_HELPER_SCAN_TIMEOUT", 25)
STIMULATION_TIMEOUT = get_env_int("NETWARDEN_STIMULATION_TIMEOUT", 10)
SETTLE_DELAY = get_env_float("NETWARDEN_SETTLE_DELAY", 2.0)
HOSTNAME_LOOKUP_TIMEOUT = 3
PING_TIMEOUT = 2
SPOOF_STARTUP_WAIT = get_env_float("NETWARDEN_SPOOF_STARTUP_WAIT", 1.0)
KILL_TIMEOUT = 5
RESTORE_TIMEOUT = 10

# Network Scanning Configuration
DEFAULT_SCAN_TIMEOUT = get_env_int("NETWARDEN_SCAN_TIMEOUT", 10)
ENABLE_NMAP_SWEEP = get_env_bool("NETWARDEN_NMAP_SWEEP", True)
NMAP_PING_SWEEP_ARGS = ["-sn", "-T4", "-n"]
ENABLE_ARP_SCAN = get_env_bool("NETWARDEN_ARP_SCAN", True)
ENABLE_TCP_PROBE = get_env_bool("NETWARDEN_TCP_PROBE", True)
TCP_PROBE_PORTS = [int(p) for p in get_env_list("NETWARDEN_TCP_PORTS", ["22", "80", "443"])]
TCP_PROBE_TIMEOUT = 0.1
TCP_PROBE_WORKERS = get_env_int("NETWARDEN_TCP_WORKERS", 64)
ENABLE_ROUTE_LOOKUPS = get_env_bool("NETWARDEN_ROUTE_LOOKUPS", True)
ENABLE_BROADCAST_PING = get_env_bool("NETWARDEN_BROADCAST_PING", True)
ENABLE_NATIVE_SCAN = get_env_bool("NETWARDEN_NATIVE_SCAN", True)
REACHABLE_NEIGHBOR_STATES = ["REACHABLE", "DELAY", "PROBE"]

# Access Control
FALLBACK_INTERFACES = get_env_list(
    "NETWARDEN_FALLBACK_INTERFACES", ["wlan0", "wlan1", "eth0", "rndis0"]
)
RESTORE_ARP_ON_UNBLOCK = get_env_bool("NETWARDEN_RESTORE_ARP", True)

# MAC Vendor Lookup
OUI_DATABASE_PATH = Path(get_env_str("NETWARDEN_OUI_DB", str(DATA_DIR / "oui.txt")))
ENABLE_MAC_VENDOR_LOOKUP = get_env_bool("NETWARDEN_MAC_VENDOR_LOOKUP", True)

# Worker Pool
IO_THREAD_POOL_SIZE = get_env_int("NETWARDEN_IO_THREADS", 4)

# Logging Configuration
LOG_FILE = LOGS_DIR / "netwarden.log"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEBUG_MODE = get_env_bool("NETWARDEN_DEBUG", False)
