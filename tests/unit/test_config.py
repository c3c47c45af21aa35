# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for configuration loading."""

import pytest

from brokerboot.config import BootstrapConfig, ComposeConfig, ProxyConfig
from brokerboot.exceptions import ConfigError


class TestBootstrapConfig:
    """Tests for BootstrapConfig."""

    def test_defaults_are_seed(self):
        config = BootstrapConfig.from_env({})

        assert not config.is_joiner
        assert config.join_cluster_port == 25672
        assert config.peer_timeout == 30.0
        assert config.poll_interval == 1.0
        assert config.bootstrap_record is None

    def test_from_env(self):
        config = BootstrapConfig.from_env({
            "JOIN_CLUSTER_HOST": " rabbitmq1 ",
            "JOIN_CLUSTER_PORT": "4369",
            "HOSTNAME": "rabbitmq2",
            "RABBITMQ_ERLANG_COOKIE_FILE": "/tmp/cookie",
            "BROKERBOOT_PEER_TIMEOUT": "45",
            "BROKERBOOT_ADMIN_RETRIES": "7",
            "BROKERBOOT_SERVER_COMMAND": "rabbitmq-server -detached",
            "BROKERBOOT_BOOTSTRAP_RECORD": "/shared/bootstrap.json",
        })

        assert config.is_joiner
        assert config.join_cluster_host == "rabbitmq1"
        assert config.join_cluster_port == 4369
        assert config.hostname == "rabbitmq2"
        assert config.cookie_file == "/tmp/cookie"
        assert config.peer_timeout == 45.0
        assert config.admin_retries == 7
        assert config.server_command == ["rabbitmq-server", "-detached"]
        assert config.bootstrap_record == "/shared/bootstrap.json"

    def test_invalid_number(self):
        with pytest.raises(ConfigError, match="BROKERBOOT_PEER_TIMEOUT"):
            BootstrapConfig.from_env({"BROKERBOOT_PEER_TIMEOUT": "soon"})

    @pytest.mark.parametrize(
        "overrides",
        [{"peer_timeout": 0}, {"poll_interval": -1}, {"admin_retries": 0}, {"server_command": []}],
    )
    def test_validation(self, overrides):
        with pytest.raises(ConfigError):
            BootstrapConfig(**overrides)

    @pytest.mark.parametrize("value", ["abc123", "é" * 64, "g" * 64, "0" * 65])
    def test_invalid_secret_fingerprint(self, value):
        with pytest.raises(ConfigError, match="secret_fingerprint"):
            BootstrapConfig(secret_fingerprint=value)

    def test_secret_fingerprint_normalized(self):
        config = BootstrapConfig.from_env({"BROKERBOOT_SECRET_FINGERPRINT": " " + "AB" * 32 + " "})

        assert config.secret_fingerprint == "ab" * 32

    def test_node_paths(self):
        config = BootstrapConfig(mnesia_dir="/data/mnesia")

        assert config.node_name("rabbitmq1") == "rabbit@rabbitmq1"
        assert config.pid_file("rabbitmq1") == "/data/mnesia/rabbit@rabbitmq1.pid"


class TestProxyConfig:
    """Tests for ProxyConfig."""

    def test_cert_paths_from_domain(self):
        config = ProxyConfig(domain="mq.example.com")

        assert config.cert_dir == "/etc/letsencrypt/live/mq.example.com"
        assert config.certificate_path.endswith("mq.example.com/fullchain.pem")
        assert config.certificate_key_path.endswith("mq.example.com/privkey.pem")
        assert config.backend == "127.0.0.1:5672"

    def test_domain_required(self):
        with pytest.raises(ConfigError):
            ProxyConfig(domain="")


class TestComposeConfig:
    """Tests for ComposeConfig."""

    def test_defaults(self):
        config = ComposeConfig.from_env({})

        assert config.docker_compose == ["docker", "compose"]
        assert config.services == ["rabbitmq1", "rabbitmq2", "haproxy"]
        assert config.wait_timeout == 120.0

    def test_from_env(self):
        config = ComposeConfig.from_env({
            "COMPOSE_FILE": "stack.yml",
            "DOCKER_COMPOSE": "docker-compose",
            "BROKERBOOT_BROKER_SERVICES": "mq1,mq2,mq3",
            "BROKERBOOT_WAIT_ATTEMPTS": "10",
            "BROKERBOOT_WAIT_INTERVAL": "0.5",
        })

        assert config.compose_file == "stack.yml"
        assert config.docker_compose == ["docker-compose"]
        assert config.broker_services == ["mq1", "mq2", "mq3"]
        assert config.wait_timeout == 5.0
