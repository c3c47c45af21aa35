# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for node identity resolution."""

import pytest

from brokerboot.cluster.identity import IdentityResolver, NodeRole, PeerTarget
from brokerboot.config import BootstrapConfig
from brokerboot.exceptions import ConfigError


class TestSeedIdentity:
    """Tests for nodes without a join target."""

    def test_seed_role(self):
        identity = IdentityResolver(BootstrapConfig(hostname="rabbitmq1")).resolve()

        assert identity.role == NodeRole.SEED
        assert identity.is_seed
        assert identity.node_name == "rabbit@rabbitmq1"
        assert identity.join_target is None

    def test_blank_join_host_is_seed(self):
        """Test whitespace-only join host does not make a joiner."""
        config = BootstrapConfig(hostname="rabbitmq1", join_cluster_host="   ")

        assert IdentityResolver(config).resolve().role == NodeRole.SEED

    def test_system_hostname_fallback(self):
        resolver = IdentityResolver(BootstrapConfig(), hostname_lookup=lambda: "node-a\n")

        assert resolver.resolve().hostname == "node-a"

    def test_configured_hostname_wins(self):
        def lookup():
            raise AssertionError("system hostname should not be consulted")

        resolver = IdentityResolver(BootstrapConfig(hostname="rabbitmq1"), hostname_lookup=lookup)

        assert resolver.resolve().hostname == "rabbitmq1"


class TestJoinerIdentity:
    """Tests for nodes with a join target."""

    def test_joiner_role(self):
        config = BootstrapConfig(hostname="rabbitmq2", join_cluster_host="rabbitmq1")
        identity = IdentityResolver(config).resolve()

        assert identity.role == NodeRole.JOINER
        assert not identity.is_seed
        assert identity.join_target == PeerTarget(
            host="rabbitmq1", port=25672, node_name="rabbit@rabbitmq1"
        )
        assert identity.join_target.address == "rabbitmq1:25672"

    def test_custom_port_and_prefix(self):
        config = BootstrapConfig(
            hostname="b", join_cluster_host="a", join_cluster_port=4369, node_prefix="mq"
        )
        identity = IdentityResolver(config).resolve()

        assert identity.node_name == "mq@b"
        assert identity.join_target.node_name == "mq@a"
        assert identity.join_target.address == "a:4369"

    def test_to_dict(self):
        config = BootstrapConfig(hostname="rabbitmq2", join_cluster_host="rabbitmq1")

        assert IdentityResolver(config).resolve().to_dict() == {
            "hostname": "rabbitmq2",
            "node_name": "rabbit@rabbitmq2",
            "role": "joiner",
            "join_target": "rabbit@rabbitmq1",
        }


class TestIdentityErrors:
    """Tests for unresolvable identities."""

    def test_self_join_rejected(self):
        config = BootstrapConfig(hostname="rabbitmq1", join_cluster_host="rabbitmq1")

        with pytest.raises(ConfigError, match="is this node"):
            IdentityResolver(config).resolve()

    def test_empty_hostname(self):
        resolver = IdentityResolver(BootstrapConfig(), hostname_lookup=lambda: "")

        with pytest.raises(ConfigError):
            resolver.resolve()

    def test_hostname_lookup_failure(self):
        def lookup():
            raise OSError("no hostname")

        resolver = IdentityResolver(BootstrapConfig(), hostname_lookup=lookup)

        with pytest.raises(ConfigError, match="no hostname"):
            resolver.resolve()
