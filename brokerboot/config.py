# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Configuration for brokerboot.

Every setting can be given through environment variables so that the
same image works for the seed and the joiners of a compose stack:

    JOIN_CLUSTER_HOST=rabbitmq1          # joiner only; absent on the seed
    JOIN_CLUSTER_PORT=25672              # port probed on the seed
    HOSTNAME=rabbitmq2                   # local identity override
    RABBITMQ_ERLANG_COOKIE_FILE=/var/lib/rabbitmq/.erlang.cookie
    BROKERBOOT_PEER_TIMEOUT=30
    BROKERBOOT_POLL_INTERVAL=1
    BROKERBOOT_ADMIN_RETRIES=5
    BROKERBOOT_ADMIN_BACKOFF=2
    BROKERBOOT_BOOTSTRAP_RECORD=/var/lib/rabbitmq/shared/bootstrap.json
    BROKERBOOT_SECRET_FINGERPRINT=<sha256 hex>
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from brokerboot.exceptions import ConfigError

DEFAULT_COOKIE_FILE = "/var/lib/rabbitmq/.erlang.cookie"
DEFAULT_MNESIA_DIR = "/var/lib/rabbitmq/mnesia"
DEFAULT_LOG_DIR = "/var/lib/rabbitmq"
DEFAULT_DISTRIBUTION_PORT = 25672
DEFAULT_SERVER_COMMAND = ["/usr/local/bin/docker-entrypoint.sh", "rabbitmq-server"]
FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


@dataclass
class BootstrapConfig:
    """Configuration for a node's cluster bootstrap.

    Attributes:
        join_cluster_host: Seed hostname to join; empty on the seed itself
        join_cluster_port: Port probed to decide the seed is reachable
        hostname: Local hostname override (falls back to the system hostname)
        node_prefix: Erlang node name prefix (``rabbit`` in ``rabbit@host``)
        cookie_file: Path of the shared Erlang cookie
        mnesia_dir: Directory holding ``<node>.pid`` files
        log_dir: Broker log directory
        server_command: Command that starts the broker server process
        peer_timeout: Seconds to wait for the seed to become reachable
        poll_interval: Fixed interval between reachability probes
        boot_timeout: Seconds to wait for the local node to boot
        admin_retries: Attempts for membership checks and start_app
        admin_backoff: Fixed backoff between admin retries
        admin_timeout: Timeout of a single admin command
        bootstrap_record: Shared path of the seed's bootstrap record
        secret_fingerprint: Known-good cookie fingerprint, overrides the record
    """
    join_cluster_host: str = ""
    join_cluster_port: int = DEFAULT_DISTRIBUTION_PORT
    hostname: str = ""
    node_prefix: str = "rabbit"
    cookie_file: str = DEFAULT_COOKIE_FILE
    mnesia_dir: str = DEFAULT_MNESIA_DIR
    log_dir: str = DEFAULT_LOG_DIR
    server_command: List[str] = field(default_factory=lambda: list(DEFAULT_SERVER_COMMAND))
    peer_timeout: float = 30.0
    poll_interval: float = 1.0
    boot_timeout: float = 120.0
    admin_retries: int = 5
    admin_backoff: float = 2.0
    admin_timeout: float = 60.0
    bootstrap_record: Optional[str] = None
    secret_fingerprint: Optional[str] = None

    def __post_init__(self) -> None:
        self.join_cluster_host = (self.join_cluster_host or "").strip()
        if self.peer_timeout <= 0:
            raise ConfigError("peer_timeout must be positive")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        if self.admin_retries < 1:
            raise ConfigError("admin_retries must be at least 1")
        if not self.server_command:
            raise ConfigError("server_command must not be empty")
        if self.secret_fingerprint is not None:
            self.secret_fingerprint = self.secret_fingerprint.strip().lower()
            if not FINGERPRINT_RE.match(self.secret_fingerprint):
                raise ConfigError("secret_fingerprint must be a SHA-256 hex digest")

    @property
    def is_joiner(self) -> bool:
        """Whether a join target is configured."""
        return bool(self.join_cluster_host)

    def node_name(self, host: str) -> str:
        """Get the Erlang node name for a host."""
        return f"{self.node_prefix}@{host}"

    def pid_file(self, host: str) -> str:
        """Get the pid file written by the local node once booted."""
        return os.path.join(self.mnesia_dir, f"{self.node_name(host)}.pid")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BootstrapConfig":
        """Create a configuration from environment variables."""
        env = os.environ if env is None else env
        server_command = env.get("BROKERBOOT_SERVER_COMMAND", "").split()
        return cls(
            join_cluster_host=env.get("JOIN_CLUSTER_HOST", ""),
            join_cluster_port=_env_int(env, "JOIN_CLUSTER_PORT", DEFAULT_DISTRIBUTION_PORT),
            hostname=env.get("HOSTNAME", ""),
            node_prefix=env.get("BROKERBOOT_NODE_PREFIX", "rabbit"),
            cookie_file=env.get("RABBITMQ_ERLANG_COOKIE_FILE", DEFAULT_COOKIE_FILE),
            mnesia_dir=env.get("RABBITMQ_MNESIA_BASE", DEFAULT_MNESIA_DIR),
            log_dir=env.get("BROKERBOOT_LOG_DIR", DEFAULT_LOG_DIR),
            server_command=server_command or list(DEFAULT_SERVER_COMMAND),
            peer_timeout=_env_float(env, "BROKERBOOT_PEER_TIMEOUT", 30.0),
            poll_interval=_env_float(env, "BROKERBOOT_POLL_INTERVAL", 1.0),
            boot_timeout=_env_float(env, "BROKERBOOT_BOOT_TIMEOUT", 120.0),
            admin_retries=_env_int(env, "BROKERBOOT_ADMIN_RETRIES", 5),
            admin_backoff=_env_float(env, "BROKERBOOT_ADMIN_BACKOFF", 2.0),
            admin_timeout=_env_float(env, "BROKERBOOT_ADMIN_TIMEOUT", 60.0),
            bootstrap_record=env.get("BROKERBOOT_BOOTSTRAP_RECORD") or None,
            secret_fingerprint=env.get("BROKERBOOT_SECRET_FINGERPRINT") or None,
        )


@dataclass
class ProxyConfig:
    """Configuration for the TLS stream proxy in front of the cluster.

    Attributes:
        domain: Public domain the certificate is issued for
        listen_port: Port Nginx listens on for TLS clients
        backend_host: Host of the load balancer behind Nginx
        backend_port: Port of the load balancer behind Nginx
        cert_dir: Directory holding fullchain.pem and privkey.pem
        output_path: Where the stream config is written
        nginx_binary: Nginx executable used for validation and reload
    """
    domain: str
    listen_port: int = 5671
    backend_host: str = "127.0.0.1"
    backend_port: int = 5672
    cert_dir: str = ""
    output_path: str = "/etc/nginx/stream.d/rabbitmq.conf"
    nginx_binary: str = "nginx"

    def __post_init__(self) -> None:
        if not self.domain:
            raise ConfigError("domain is required")
        if not self.cert_dir:
            self.cert_dir = f"/etc/letsencrypt/live/{self.domain}"

    @property
    def backend(self) -> str:
        """Get backend address in host:port form."""
        return f"{self.backend_host}:{self.backend_port}"

    @property
    def certificate_path(self) -> str:
        return os.path.join(self.cert_dir, "fullchain.pem")

    @property
    def certificate_key_path(self) -> str:
        return os.path.join(self.cert_dir, "privkey.pem")


@dataclass
class ComposeConfig:
    """Configuration for driving the Docker Compose stack.

    Attributes:
        compose_file: Compose file path
        docker_compose: Compose command (``docker compose`` or ``docker-compose``)
        broker_services: Services with broker healthchecks
        proxy_services: Load balancer services
        volumes: Named volumes removed by ``clean``
        env_file: Environment file used by the stack
        sample_env_file: Template copied to ``env_file`` when missing
        wait_attempts: Health polls per service
        wait_interval: Seconds between health polls
    """
    compose_file: str = "docker-compose.yml"
    docker_compose: List[str] = field(default_factory=lambda: ["docker", "compose"])
    broker_services: List[str] = field(default_factory=lambda: ["rabbitmq1", "rabbitmq2"])
    proxy_services: List[str] = field(default_factory=lambda: ["haproxy"])
    volumes: List[str] = field(default_factory=lambda: ["rabbitmq1-data", "rabbitmq2-data"])
    env_file: str = ".env"
    sample_env_file: str = "sample.env"
    wait_attempts: int = 60
    wait_interval: float = 2.0

    @property
    def services(self) -> List[str]:
        return self.broker_services + self.proxy_services

    @property
    def wait_timeout(self) -> float:
        """Per-service health timeout derived from attempts and interval."""
        return self.wait_attempts * self.wait_interval

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ComposeConfig":
        """Create a configuration from environment variables."""
        env = os.environ if env is None else env
        config = cls()
        config.compose_file = env.get("COMPOSE_FILE", config.compose_file)
        if env.get("DOCKER_COMPOSE"):
            config.docker_compose = env["DOCKER_COMPOSE"].split()
        if env.get("BROKERBOOT_BROKER_SERVICES"):
            config.broker_services = env["BROKERBOOT_BROKER_SERVICES"].split(",")
        if env.get("BROKERBOOT_VOLUMES"):
            config.volumes = env["BROKERBOOT_VOLUMES"].split(",")
        config.wait_attempts = _env_int(env, "BROKERBOOT_WAIT_ATTEMPTS", config.wait_attempts)
        config.wait_interval = _env_float(env, "BROKERBOOT_WAIT_INTERVAL", config.wait_interval)
        return config
