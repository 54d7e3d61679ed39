"""
Unit tests for the DNS and DHCP redirect managers.
"""

import re
from unittest.mock import MagicMock, patch

import pytest

from modules.errors import ErrorKind
from modules.redirect import DhcpSpoofManager, DnsSpoofManager

from conftest import FakeSession, SessionFactory


@pytest.fixture
def dns(rooted, helper, session_factory, killer):
    return DnsSpoofManager(
        privilege=rooted,
        helper=helper,
        session_factory=session_factory,
        killer=killer,
        startup_wait=0,
    )


@pytest.fixture
def dhcp(rooted, helper, session_factory, killer):
    return DhcpSpoofManager(
        privilege=rooted,
        helper=helper,
        session_factory=session_factory,
        killer=killer,
        startup_wait=0,
    )


def dhcp_args(ip="192.168.1.200"):
    return dict(
        interface="wlan0",
        target_macs=["AA:BB:CC:DD:EE:01"],
        spoofed_ips=[ip],
        gateway_ips=["192.168.1.50"],
        dns_servers=["192.168.1.50"],
    )


class TestDnsSpoof:
    """Tests for DnsSpoofManager."""

    def test_start(self, dns, session_factory):
        result = dns.start_spoof("example.com", "10.0.0.9", "wlan0")

        assert result.ok and result.value is True
        session = session_factory.created[0]
        assert session.argv[2].split()[1:] == ["dns_spoof", "wlan0", "example.com", "10.0.0.9"]
        assert "DNS_SPOOF_STARTED" in session.markers
        assert dns.is_active("example.com")

    def test_replace_leaves_one_session(self, dns, session_factory, killer):
        dns.start_spoof("a.com", "10.0.0.1", "wlan0")
        dns.start_spoof("a.com", "10.0.0.2", "wlan0")

        first, second = session_factory.created
        assert first.terminated
        assert not second.terminated
        assert dns.active_keys() == ["a.com"]
        assert dns.sessions.get("a.com") is second
        assert second.argv[2].endswith("a.com 10.0.0.2")
        killer.assert_called_once()

    def test_domains_are_independent(self, dns):
        dns.start_spoof("a.com", "10.0.0.1")
        dns.start_spoof("b.com", "10.0.0.1")
        assert sorted(dns.active_keys()) == ["a.com", "b.com"]

    def test_process_dies_during_startup(self, rooted, helper, killer):
        manager = DnsSpoofManager(
            privilege=rooted,
            helper=helper,
            session_factory=SessionFactory(start_alive=False),
            killer=killer,
            startup_wait=0,
        )
        result = manager.start_spoof("a.com", "10.0.0.1")

        assert result.kind is ErrorKind.COMMAND_EXECUTION
        assert not manager.is_active("a.com")
        assert manager.active_keys() == []

    def test_stop_leaves_similar_domains_running(self, dns, session_factory, killer):
        dns.start_spoof("ba.com", "10.0.0.1", "wlan0")
        dns.start_spoof("a.com", "10.0.0.2", "wlan0")
        other, own = session_factory.created

        assert dns.stop_spoof("a.com").value is True

        pattern = killer.call_args[0][0]
        assert re.search(pattern, own.argv[2])
        assert not re.search(pattern, other.argv[2])
        assert dns.is_active("ba.com")

    def test_kill_pattern_is_exact_per_domain(self, dns, helper):
        pattern = dns._kill_pattern("a.com")
        for domain in ("ba.com", "xa.com", "a.com.au", "aXcom"):
            assert not re.search(pattern, helper.dns_spoof_argv("wlan0", domain, "10.0.0.1")[2])
        assert re.search(pattern, helper.dns_spoof_argv("eth0", "a.com", "10.0.0.1")[2])

    def test_startup_cleanup_keeps_concurrent_replacement(self, dns, session_factory):
        replacement = []

        class DiesWhileReplaced(FakeSession):
            def is_alive(self):
                if not replacement:
                    replacement.append(
                        dns.sessions.replace("a.com", lambda: FakeSession("a.com", ["new"]))
                    )
                return False

        dns._session_factory = lambda key, argv, **kwargs: DiesWhileReplaced(key, argv, **kwargs)
        with patch.object(dns.sessions, "remove_if", wraps=dns.sessions.remove_if) as remove_if:
            result = dns.start_spoof("a.com", "10.0.0.1")

        assert result.kind is ErrorKind.COMMAND_EXECUTION
        remove_if.assert_called_once()
        assert dns.sessions.get("a.com") is replacement[0]
        assert dns.is_active("a.com")

    def test_spawn_failure(self, dns):
        dns._session_factory = MagicMock(side_effect=OSError("no su"))
        assert dns.start_spoof("a.com", "10.0.0.1").kind is ErrorKind.COMMAND_EXECUTION

    def test_requires_root(self, dns, not_rooted):
        dns.privilege = not_rooted
        assert dns.start_spoof("a.com", "10.0.0.1").kind is ErrorKind.DEVICE_NOT_ROOTED

    def test_requires_helper(self, dns):
        dns.helper = None
        assert dns.start_spoof("a.com", "10.0.0.1").kind is ErrorKind.NATIVE_LIBRARY

    def test_invalid_input(self, dns):
        assert dns.start_spoof("a.com", "10.0.0.300").kind is ErrorKind.INVALID_IP_ADDRESS
        assert dns.start_spoof("  ", "10.0.0.1").kind is ErrorKind.COMMAND_EXECUTION

    def test_stop(self, dns, session_factory):
        dns.start_spoof("a.com", "10.0.0.1")
        result = dns.stop_spoof("a.com")

        assert result.ok and result.value is True
        assert session_factory.created[0].terminated
        assert not dns.is_active("a.com")

    def test_stop_without_session(self, dns):
        result = dns.stop_spoof("never.com")
        assert result.ok
        assert result.value is False

    def test_shutdown(self, dns, session_factory):
        dns.start_spoof("a.com", "10.0.0.1")
        dns.start_spoof("b.com", "10.0.0.1")
        assert dns.shutdown() == 2
        assert all(s.terminated for s in session_factory.created)


class TestDhcpSpoof:
    """Tests for DhcpSpoofManager."""

    def test_start_passes_first_target(self, dhcp, session_factory):
        result = dhcp.start_spoof(**dhcp_args())

        assert result.ok
        assert session_factory.created[0].argv[2].split()[1:] == [
            "dhcp_spoof", "wlan0", "aa:bb:cc:dd:ee:01",
            "192.168.1.200", "192.168.1.50", "192.168.1.50",
        ]
        assert dhcp.is_active("wlan0")
        assert dhcp.is_active()

    def test_multiple_targets_accepted(self, dhcp, session_factory):
        args = dhcp_args()
        args.update(
            target_macs=["aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:02"],
            spoofed_ips=["192.168.1.200", "192.168.1.201"],
            gateway_ips=["192.168.1.50"] * 2,
            dns_servers=["192.168.1.50"] * 2,
            subnet_masks=["255.255.255.0"] * 2,
        )
        assert dhcp.start_spoof(**args).ok
        assert len(session_factory.created) == 1

    def test_mismatched_lengths(self, dhcp, session_factory):
        args = dhcp_args()
        args["spoofed_ips"] = ["192.168.1.200", "192.168.1.201"]
        assert dhcp.start_spoof(**args).kind is ErrorKind.COMMAND_EXECUTION
        assert session_factory.created == []

    def test_empty_lists(self, dhcp):
        args = dhcp_args()
        args.update(target_macs=[], spoofed_ips=[], gateway_ips=[], dns_servers=[])
        assert dhcp.start_spoof(**args).kind is ErrorKind.COMMAND_EXECUTION

    def test_invalid_mac(self, dhcp):
        args = dhcp_args()
        args["target_macs"] = ["not-a-mac"]
        assert dhcp.start_spoof(**args).kind is ErrorKind.INVALID_MAC_ADDRESS

    def test_invalid_ip(self, dhcp):
        args = dhcp_args()
        args["dns_servers"] = ["8.8.8"]
        assert dhcp.start_spoof(**args).kind is ErrorKind.INVALID_IP_ADDRESS

    def test_second_start_replaces_on_same_interface(self, dhcp, session_factory):
        dhcp.start_spoof(**dhcp_args("192.168.1.200"))
        dhcp.start_spoof(**dhcp_args("192.168.1.201"))

        first, second = session_factory.created
        assert first.terminated
        assert dhcp.sessions.get("wlan0") is second
        assert dhcp.active_keys() == ["wlan0"]

    def test_stop_all(self, dhcp, session_factory):
        dhcp.start_spoof(**dhcp_args())
        args = dhcp_args()
        args["interface"] = "eth0"
        dhcp.start_spoof(**args)

        result = dhcp.stop_spoof()

        assert result.ok and result.value is True
        assert all(s.terminated for s in session_factory.created)
        assert not dhcp.is_active()

    def test_stop_all_when_idle(self, dhcp):
        result = dhcp.stop_spoof()
        assert result.ok and result.value is False

    def test_stop_one_interface(self, dhcp):
        dhcp.start_spoof(**dhcp_args())
        assert dhcp.stop_spoof("wlan0").value is True
        assert dhcp.stop_spoof("wlan0").value is False

    def test_stop_one_interface_spares_similar_names(self, dhcp, session_factory, killer):
        args = dhcp_args()
        args["interface"] = "wlan0.1"
        dhcp.start_spoof(**args)
        dhcp.start_spoof(**dhcp_args())
        other, own = session_factory.created

        dhcp.stop_spoof("wlan0")

        pattern = killer.call_args[0][0]
        assert re.search(pattern, own.argv[2])
        assert not re.search(pattern, other.argv[2])
        assert dhcp.is_active("wlan0.1")
