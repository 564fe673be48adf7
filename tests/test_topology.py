"""Tests for ClusterTopology and host URL parsing."""

import pytest

from chtop.errors import TopologyError
from chtop.topology import ClusterTopology, host_from_url, topology_from_urls
from chtop.types import Host, HostRole, HostState, HostStatus


class TestHostFromUrl:
    def test_default_http_port(self):
        host = host_from_url("http://ch-1")
        assert host.id == "ch-1:8123"
        assert host.address == "http://ch-1:8123"

    def test_default_https_port(self):
        host = host_from_url("https://ch-1")
        assert host.id == "ch-1:8443"
        assert host.address == "https://ch-1:8443"

    def test_scheme_optional(self):
        assert host_from_url("ch-1:9123").address == "http://ch-1:9123"

    def test_unparseable(self):
        with pytest.raises(TopologyError):
            host_from_url("http://")


class TestClusterTopology:
    def test_hosts_keep_insertion_order(self):
        topology = topology_from_urls(["http://b", "http://a", "http://c"])
        assert [h.id for h in topology] == ["b:8123", "a:8123", "c:8123"]
        assert [h.shard for h in topology] == [1, 2, 3]

    def test_duplicate_id_rejected(self):
        with pytest.raises(TopologyError, match="Duplicate"):
            topology_from_urls(["http://a", "http://a:8123"])

    def test_get_unknown_raises(self, topology):
        with pytest.raises(TopologyError, match="Unknown"):
            topology.get("z:8123")

    def test_contains(self, topology):
        assert "a:8123" in topology
        assert "z:8123" not in topology

    def test_new_hosts_start_unknown(self, topology):
        assert all(h.status is HostStatus.UNKNOWN for h in topology)
        assert topology.status_counts()[HostStatus.UNKNOWN] == 3


class TestRefresh:
    def test_refresh_adds_and_retires(self, topology):
        added, retired = topology.refresh(
            [Host("a:8123", "http://a:8123"), Host("d:8123", "http://d:8123")]
        )

        assert added == ["d:8123"]
        assert retired == ["b:8123", "c:8123"]
        assert [h.id for h in topology.active_hosts()] == ["a:8123", "d:8123"]
        # Retired hosts stay resolvable
        assert topology.get("b:8123").retired
        assert len(topology) == 4

    def test_refresh_reactivates_and_keeps_state(self, topology):
        host = topology.get("b:8123")
        host.state = HostState(HostStatus.DOWN, "boom")
        topology.refresh([Host("a:8123", "http://a:8123")])
        assert host.retired

        topology.refresh(
            [
                Host("a:8123", "http://a:8123"),
                Host("b:8123", "https://b:8123", role=HostRole.REPLICA, shard=2),
            ]
        )

        assert not host.retired
        assert host.role is HostRole.REPLICA
        assert host.address == "https://b:8123"
        assert host.status is HostStatus.DOWN

    def test_refresh_rejects_duplicate_discovery(self):
        topology = ClusterTopology()
        with pytest.raises(TopologyError):
            topology.refresh([Host("a:8123", "http://a:8123"), Host("a:8123", "http://a:8123")])
