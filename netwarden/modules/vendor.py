"""
Vendor Resolver

Maps a MAC address to a manufacturer name.

Lookup order:
    1. Process-lifetime cache keyed by the 3-octet OUI
    2. Small built-in table of common OUIs
    3. Bundled OUI database, trying the 5-octet (MA-S), 4-octet (MA-M) and
       3-octet (MA-L) prefix in that order
    4. The mac-vendor-lookup offline database, when installed and enabled

Any hit from tiers 2-4 is written back to the cache under the 3-octet OUI,
so repeat lookups for the same OUI never touch a database again.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

from config import ENABLE_MAC_VENDOR_LOOKUP, OUI_DATABASE_PATH

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Optional library tier.  Missing library just disables the tier.
# ---------------------------------------------------------------------------
try:
    from mac_vendor_lookup import MacLookup
    MAC_VENDOR_AVAILABLE = True
except ImportError:
    MacLookup = None
    MAC_VENDOR_AVAILABLE = False
    logger.info("mac-vendor-lookup not installed - library vendor tier disabled")


COMMON_VENDORS: Dict[str, str] = {
    "00:50:43": "Siemens",
    "00:50:C2": "IEEE Registration Authority",
    "00:60:2F": "Hewlett Packard",
    "00:A0:C9": "Intel Corporation",
    "00:E0:4C": "Realtek Semiconductor Corp.",
    "08:00:27": "Oracle VirtualBox",
    "1C:69:7A": "AcSiP Technology Corp.",
    "24:4B:03": "Samsung Electronics Co., Ltd",
    "28:C6:3F": "Apple, Inc.",
    "38:4F:F0": "Samsung Electronics Co., Ltd",
    "40:B0:FA": "LG Electronics (Mobile Communications)",
    "44:D9:E7": "Ubiquiti Networks Inc.",
    "5C:F9:DD": "Dell Inc.",
    "6C:EC:5A": "Hon Hai Precision Ind. Co.,Ltd.",
    "78:4F:43": "Apple, Inc.",
    "80:A5:89": "AzureWave Technology Inc.",
    "8C:1F:64": "Intel Corporate",
    "9C:93:4E": "ASUSTek Computer, Inc.",
    "AC:DE:48": "Intel Corporate",
    "B8:27:EB": "Raspberry Pi Foundation",
    "BC:5F:F4": "Dell Inc.",
    "C8:60:00": "Apple, Inc.",
    "D8:3B:BF": "Samsung Electronics Co., Ltd",
    "DC:A6:32": "Raspberry Pi Trading Ltd",
    "E4:5D:52": "Intel Corporate",
    "EC:26:CA": "TP-Link Technologies Co., Ltd.",
    "F0:18:98": "Apple, Inc.",
    "F4:8C:50": "Intel Corporate",
}

# "(hex)" / "(base 16)" columns in IEEE-style listings
_RADIX_TOKEN = re.compile(r"^\((?:hex|base 16)\)\s*", re.IGNORECASE)


class OuiDatabase:
    """Prefix-to-vendor text database.

    Each line reads ``XX-XX-XX[-XX[-XX]] <whitespace> vendor name``; the
    first line starting with the requested prefix wins.  Lines are loaded
    lazily on the first query and kept for the process lifetime.
    """

    def __init__(self, path: Path = OUI_DATABASE_PATH):
        self.path = Path(path)
        self.query_count = 0
        self._lines: Optional[List[str]] = None
        self._lock = threading.Lock()

    def _load(self) -> List[str]:
        with self._lock:
            if self._lines is None:
                try:
                    with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                        self._lines = [
                            line.strip() for line in f
                            if line.strip() and not line.startswith("#")
                        ]
                    logger.debug(f"Loaded {len(self._lines)} OUI entries from {self.path}")
                except OSError as e:
                    logger.warning(f"Could not read OUI database {self.path}: {e}")
                    self._lines = []
            return self._lines

    def query(self, prefix: str) -> Optional[str]:
        """Return the vendor for a colon- or dash-delimited prefix."""
        self.query_count += 1
        formatted = prefix.replace(":", "-").upper()
        for line in self._load():
            if not line.upper().startswith(formatted):
                continue
            parts = line.split(None, 1)
            if len(parts) < 2:
                continue
            vendor = _RADIX_TOKEN.sub("", parts[1].strip()).strip()
            if vendor:
                logger.debug(f"Found vendor for {formatted}: {vendor}")
                return vendor
        return None


class LibraryVendorDatabase:
    """Adapter over mac-vendor-lookup's offline IEEE database."""

    def __init__(self):
        self._lookup = MacLookup() if MAC_VENDOR_AVAILABLE else None

    def lookup(self, mac: str) -> Optional[str]:
        if self._lookup is None:
            return None
        try:
            return self._lookup.lookup(mac)
        except Exception as e:
            logger.debug(f"mac-vendor-lookup miss for {mac}: {e}")
            return None


class VendorResolver:
    """Tiered MAC -> vendor resolution with a process-lifetime OUI cache."""

    def __init__(
        self,
        database: Optional[OuiDatabase] = None,
        library: Optional[LibraryVendorDatabase] = None,
        builtin: Optional[Dict[str, str]] = None,
    ):
        self.database = database if database is not None else OuiDatabase()
        self.library = library
        self.builtin = dict(COMMON_VENDORS if builtin is None else builtin)
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(mac: str) -> str:
        return mac.strip().replace("-", ":").upper()

    def vendor_for(self, mac: Optional[str]) -> Optional[str]:
        """
        Look up the vendor name for a MAC address.

        Args:
            mac: MAC address, at least 8 characters (one full OUI)

        Returns:
            Vendor name, or None if the address is too short or unknown.
        """
        if not mac or len(mac) < 8:
            return None

        mac = self._normalize(mac)
        oui = mac[:8]

        with self._lock:
            cached = self._cache.get(oui)
        if cached is not None:
            return cached

        vendor = self.builtin.get(oui)
        if vendor is None:
            vendor = self._query_database(mac)
        if vendor is None and self.library is not None:
            vendor = self.library.lookup(mac)

        if vendor is not None:
            with self._lock:
                self._cache[oui] = vendor
        return vendor

    def _query_database(self, mac: str) -> Optional[str]:
        # 5 octets (MA-S), 4 octets (MA-M), then 3 octets (MA-L)
        for length in (14, 11, 8):
            if len(mac) < length:
                continue
            vendor = self.database.query(mac[:length])
            if vendor is not None:
                return vendor
        return None

    def add_custom_vendor(self, mac_prefix: str, vendor_name: str) -> None:
        """Pin a vendor name for an OUI (e.g. for local network devices)."""
        if len(mac_prefix) < 8:
            raise ValueError(f"MAC prefix too short: {mac_prefix!r}")
        oui = self._normalize(mac_prefix)[:8]
        with self._lock:
            self._cache[oui] = vendor_name
        logger.debug(f"Added custom vendor mapping: {oui} -> {vendor_name}")

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("Vendor cache cleared")

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)


_default_resolver: Optional[VendorResolver] = None
_default_lock = threading.Lock()


def get_default_resolver() -> VendorResolver:
    """Process-wide resolver built from configuration."""
    global _default_resolver
    with _default_lock:
        if _default_resolver is None:
            library = LibraryVendorDatabase() if ENABLE_MAC_VENDOR_LOOKUP and MAC_VENDOR_AVAILABLE else None
            _default_resolver = VendorResolver(library=library)
        return _default_resolver


def lookup_vendor(mac: str) -> Optional[str]:
    """Look up vendor from MAC OUI prefix using the default resolver."""
    return get_default_resolver().vendor_for(mac)
