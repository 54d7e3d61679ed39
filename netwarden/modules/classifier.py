"""
Device Classifier

Derives a coarse device-type label from the vendor name, falling back to
the link type.  Rules are evaluated top to bottom and the first match wins,
so the order of ``DEVICE_TYPE_RULES`` is part of the contract.
"""

from typing import Optional, Sequence, Tuple

# (vendor substrings, label) - case-insensitive containment
DEVICE_TYPE_RULES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("apple",), "iPhone/iPad"),
    (("samsung",), "Samsung Phone/Tablet"),
    (("intel",), "Computer"),
    (("dell",), "Dell Computer"),
    (("hp", "hewlett"), "HP Computer/Printer"),
    (("raspberry",), "Raspberry Pi"),
    (("tp-link", "ubiquiti"), "Router/Network Equipment"),
    (("realtek",), "Network Device"),
    (("mediatek",), "Mobile Device"),
    (("azurewave",), "WiFi Module/Adapter"),
    (("broadcom",), "WiFi Module"),
)

# (link-type substrings, label) - consulted only when no vendor rule matched
LINK_TYPE_RULES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("wifi",), "Wireless Device"),
    (("ethernet",), "Wired Device"),
)


def _first_match(value: Optional[str], rules) -> Optional[str]:
    if not value:
        return None
    lowered = value.lower()
    for needles, label in rules:
        if any(needle in lowered for needle in needles):
            return label
    return None


def classify_vendor(vendor: Optional[str], hw_type: Optional[str] = None) -> Optional[str]:
    """Label from a vendor string and optional link type, or None."""
    return _first_match(vendor, DEVICE_TYPE_RULES) or _first_match(hw_type, LINK_TYPE_RULES)


def classify(device) -> Optional[str]:
    """Label for any object exposing ``vendor`` and ``hw_type`` attributes."""
    return classify_vendor(
        getattr(device, "vendor", None),
        getattr(device, "hw_type", None),
    )
