"""
Unit tests for the vendor resolver and the OUI database.
"""

from unittest.mock import MagicMock

import pytest

from modules.vendor import COMMON_VENDORS, OuiDatabase, VendorResolver

OUI_TEXT = """\
# test database
11-22-33\t(hex)\t\tLarge Block Co
11-22-33-44\t(hex)\t\tMedium Block Co
11-22-33-44-55\t(hex)\t\tSmall Block Co
A4-83-E7\t(hex)\t\tApple, Inc.
DE-AD-BE     Dead Beef Industries
"""


@pytest.fixture
def oui_db(tmp_path):
    path = tmp_path / "oui.txt"
    path.write_text(OUI_TEXT)
    return OuiDatabase(path)


@pytest.fixture
def resolver(oui_db):
    return VendorResolver(database=oui_db, library=None)


class TestOuiDatabase:
    """Tests for the text prefix database."""

    def test_query_strips_radix_column(self, oui_db):
        assert oui_db.query("A4-83-E7") == "Apple, Inc."

    def test_query_accepts_colons(self, oui_db):
        assert oui_db.query("a4:83:e7") == "Apple, Inc."

    def test_plain_whitespace_format(self, oui_db):
        assert oui_db.query("DE:AD:BE") == "Dead Beef Industries"

    def test_miss(self, oui_db):
        assert oui_db.query("00:00:01") is None

    def test_missing_file(self, tmp_path):
        db = OuiDatabase(tmp_path / "nope.txt")
        assert db.query("A4:83:E7") is None

    def test_counts_queries(self, oui_db):
        oui_db.query("A4:83:E7")
        oui_db.query("00:00:01")
        assert oui_db.query_count == 2

    def test_bundled_database(self):
        assert OuiDatabase().query("3C:22:FB") == "Apple, Inc."


class TestVendorResolver:
    """Tests for tiered MAC -> vendor lookup."""

    @pytest.mark.parametrize("mac", ["", "AA", "AA:BB", "AA:BB:C"])
    def test_short_mac_returns_none(self, mac):
        database = MagicMock()
        resolver = VendorResolver(database=database, library=None)
        assert resolver.vendor_for(mac) is None
        database.query.assert_not_called()

    def test_none_mac(self, resolver):
        assert resolver.vendor_for(None) is None

    def test_builtin_table_skips_database(self):
        database = MagicMock()
        resolver = VendorResolver(database=database, library=None)
        for oui, vendor in COMMON_VENDORS.items():
            assert resolver.vendor_for(f"{oui}:01:02:03") == vendor
        database.query.assert_not_called()

    def test_lowercase_and_dashes_normalized(self):
        resolver = VendorResolver(database=MagicMock(), library=None)
        assert resolver.vendor_for("b8-27-eb-12-34-56") == "Raspberry Pi Foundation"

    def test_cache_is_idempotent(self, resolver, oui_db):
        first = resolver.vendor_for("A4:83:E7:00:00:01")
        queries = oui_db.query_count
        second = resolver.vendor_for("A4:83:E7:99:99:99")

        assert first == second == "Apple, Inc."
        assert queries > 0
        assert oui_db.query_count == queries

    def test_five_octet_prefix_first(self, resolver):
        assert resolver.vendor_for("11:22:33:44:55:66") == "Small Block Co"

    def test_four_octet_prefix(self, resolver):
        assert resolver.vendor_for("11:22:33:44:99:66") == "Medium Block Co"

    def test_three_octet_prefix(self, resolver):
        assert resolver.vendor_for("11:22:33:77:88:99") == "Large Block Co"

    def test_cache_keyed_by_oui(self, resolver):
        resolver.vendor_for("11:22:33:44:55:66")
        # Same OUI, different longer prefix: served from cache
        assert resolver.vendor_for("11:22:33:77:88:99") == "Small Block Co"

    def test_unknown_vendor(self, resolver):
        assert resolver.vendor_for("02:00:00:00:00:01") is None
        assert resolver.cache_size == 0

    def test_library_tier_after_database(self, oui_db):
        library = MagicMock()
        library.lookup.return_value = "Library Vendor"
        resolver = VendorResolver(database=oui_db, library=library)

        assert resolver.vendor_for("02:00:00:00:00:01") == "Library Vendor"
        assert resolver.vendor_for("A4:83:E7:00:00:01") == "Apple, Inc."
        library.lookup.assert_called_once_with("02:00:00:00:00:01")

    def test_add_custom_vendor(self, resolver):
        resolver.add_custom_vendor("a4:83:e7", "My Laptop Maker")
        assert resolver.vendor_for("A4:83:E7:00:00:01") == "My Laptop Maker"

    def test_add_custom_vendor_rejects_short_prefix(self, resolver):
        with pytest.raises(ValueError):
            resolver.add_custom_vendor("A4:83", "Nope")

    def test_clear_cache(self, resolver, oui_db):
        resolver.vendor_for("A4:83:E7:00:00:01")
        assert resolver.cache_size == 1
        resolver.clear_cache()
        assert resolver.cache_size == 0

        before = oui_db.query_count
        resolver.vendor_for("A4:83:E7:00:00:01")
        assert oui_db.query_count > before
