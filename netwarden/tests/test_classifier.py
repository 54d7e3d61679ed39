"""
Unit tests for the device classifier.
"""

from types import SimpleNamespace

import pytest

from modules.classifier import DEVICE_TYPE_RULES, classify, classify_vendor


class TestClassifier:
    """Tests for vendor/link-type classification."""

    @pytest.mark.parametrize("vendor,label", [
        ("Apple, Inc.", "iPhone/iPad"),
        ("Samsung Electronics Co.,Ltd", "Samsung Phone/Tablet"),
        ("Intel Corporate", "Computer"),
        ("Dell Inc.", "Dell Computer"),
        ("Hewlett Packard", "HP Computer/Printer"),
        ("Raspberry Pi Foundation", "Raspberry Pi"),
        ("TP-Link Technologies Co., Ltd.", "Router/Network Equipment"),
        ("Ubiquiti Networks Inc.", "Router/Network Equipment"),
        ("Realtek Semiconductor Corp.", "Network Device"),
        ("MediaTek Inc.", "Mobile Device"),
        ("AzureWave Technology Inc.", "WiFi Module/Adapter"),
        ("Broadcom Inc.", "WiFi Module"),
    ])
    def test_vendor_rules(self, vendor, label):
        assert classify_vendor(vendor) == label

    def test_case_insensitive(self):
        assert classify_vendor("APPLE") == "iPhone/iPad"

    def test_first_matching_rule_wins(self):
        # Matches both the Apple and the Intel rule; Apple is listed first
        assert classify_vendor("Apple Intel Joint Venture") == "iPhone/iPad"
        # Matches both Samsung and Broadcom; Samsung is listed first
        assert classify_vendor("Samsung Broadcom Module") == "Samsung Phone/Tablet"

    def test_rule_order_is_fixed(self):
        labels = [label for _needles, label in DEVICE_TYPE_RULES]
        assert labels[0] == "iPhone/iPad"
        assert labels.index("Computer") < labels.index("Dell Computer")
        assert labels[-1] == "WiFi Module"

    def test_link_type_fallback(self):
        assert classify_vendor("Unknown Corp", "WiFi") == "Wireless Device"
        assert classify_vendor(None, "Ethernet") == "Wired Device"

    def test_vendor_rule_beats_link_type(self):
        assert classify_vendor("Dell Inc.", "WiFi") == "Dell Computer"

    def test_no_match(self):
        assert classify_vendor(None) is None
        assert classify_vendor("Acme Widgets", "0x1") is None

    def test_classify_reads_attributes(self):
        device = SimpleNamespace(vendor="Raspberry Pi Trading Ltd", hw_type=None)
        assert classify(device) == "Raspberry Pi"
        assert classify(SimpleNamespace()) is None
