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

"""Node identity and role resolution."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from brokerboot.config import BootstrapConfig
from brokerboot.exceptions import ConfigError


class NodeRole(str, Enum):
    """Role of a node during bootstrap."""
    SEED = "seed"
    JOINER = "joiner"


@dataclass(frozen=True)
class PeerTarget:
    """The seed a joiner should cluster with."""
    host: str
    port: int
    node_name: str

    @property
    def address(self) -> str:
        """Get probe address."""
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class NodeIdentity:
    """Cluster identity of the local process.

    Attributes:
        hostname: Local hostname
        node_name: Erlang node name (``rabbit@hostname``)
        role: Seed or joiner, fixed for the process lifetime
        join_target: Seed to join, only set for joiners
    """
    hostname: str
    node_name: str
    role: NodeRole
    join_target: Optional[PeerTarget] = None

    @property
    def is_seed(self) -> bool:
        return self.role == NodeRole.SEED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hostname": self.hostname,
            "node_name": self.node_name,
            "role": self.role.value,
            "join_target": self.join_target.node_name if self.join_target else None,
        }


class IdentityResolver:
    """Determines the local node's identity and role from configuration.

    Example:
        >>> resolver = IdentityResolver(BootstrapConfig(join_cluster_host="rabbitmq1"))
        >>> identity = resolver.resolve()
        >>> identity.role
        <NodeRole.JOINER: 'joiner'>
    """

    def __init__(
        self,
        config: BootstrapConfig,
        hostname_lookup: Callable[[], str] = socket.gethostname,
    ) -> None:
        self.config = config
        self._hostname_lookup = hostname_lookup

    def _local_hostname(self) -> str:
        hostname = (self.config.hostname or "").strip()
        if hostname:
            return hostname
        try:
            hostname = (self._hostname_lookup() or "").strip()
        except OSError as e:
            raise ConfigError(f"Cannot determine local hostname: {e}")
        if not hostname:
            raise ConfigError("Cannot determine local hostname")
        return hostname

    def resolve(self) -> NodeIdentity:
        """Resolve the identity of this node.

        Returns:
            NodeIdentity with role SEED when no join target is configured,
            JOINER otherwise

        Raises:
            ConfigError: If the local hostname cannot be determined, or the
                join target names this node itself
        """
        hostname = self._local_hostname()
        node_name = self.config.node_name(hostname)

        if not self.config.is_joiner:
            return NodeIdentity(hostname=hostname, node_name=node_name, role=NodeRole.SEED)

        target_host = self.config.join_cluster_host
        if target_host == hostname:
            raise ConfigError(f"Join target {target_host} is this node")

        return NodeIdentity(
            hostname=hostname,
            node_name=node_name,
            role=NodeRole.JOINER,
            join_target=PeerTarget(
                host=target_host,
                port=self.config.join_cluster_port,
                node_name=self.config.node_name(target_host),
            ),
        )
