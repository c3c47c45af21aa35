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
Broker cluster bootstrap.

Architecture:
- IdentityResolver: decides seed vs joiner from configuration
- PeerProber: bounded TCP reachability polling of the seed
- MembershipClient: live membership queries through the admin interface
- JoinOrchestrator: the bootstrap state machine
- LocalServiceSupervisor: owns the broker server process
- HealthWaiter: concurrent health convergence across nodes

Example (container entrypoint):
    >>> from brokerboot.cluster import JoinOrchestrator, LocalServiceSupervisor, RabbitmqctlAdmin
    >>> from brokerboot.config import BootstrapConfig
    >>> config = BootstrapConfig.from_env()
    >>> supervisor = LocalServiceSupervisor(config.server_command)
    >>> result = await JoinOrchestrator(config, RabbitmqctlAdmin(), service=supervisor).run()
    >>> await supervisor.supervise()
"""

from brokerboot.cluster.admin import (
    BrokerAdmin,
    ClusterMembership,
    RabbitmqctlAdmin,
    parse_cluster_status,
)
from brokerboot.cluster.health import (
    AdminPingCheck,
    DockerHealthCheck,
    HealthCheck,
    HealthReport,
    HealthStatus,
    HealthWaiter,
    HttpHealthCheck,
)
from brokerboot.cluster.identity import IdentityResolver, NodeIdentity, NodeRole, PeerTarget
from brokerboot.cluster.membership import MembershipClient
from brokerboot.cluster.orchestrator import (
    BootstrapResult,
    BootstrapState,
    JoinAttempt,
    JoinFailureReason,
    JoinOrchestrator,
    JoinOutcome,
)
from brokerboot.cluster.policy import Clock, ManualClock, RetryHandler, RetryPolicy
from brokerboot.cluster.prober import PeerProber, parse_address
from brokerboot.cluster.secret import BootstrapRecord, ClusterSecret
from brokerboot.cluster.supervisor import LocalServiceSupervisor

__all__ = [
    # Identity
    "IdentityResolver",
    "NodeIdentity",
    "NodeRole",
    "PeerTarget",
    # Admin
    "BrokerAdmin",
    "ClusterMembership",
    "RabbitmqctlAdmin",
    "parse_cluster_status",
    "MembershipClient",
    # Reachability
    "PeerProber",
    "parse_address",
    # Orchestration
    "JoinOrchestrator",
    "BootstrapResult",
    "BootstrapState",
    "JoinAttempt",
    "JoinFailureReason",
    "JoinOutcome",
    "LocalServiceSupervisor",
    # Secret
    "BootstrapRecord",
    "ClusterSecret",
    # Health
    "HealthCheck",
    "HealthReport",
    "HealthStatus",
    "HealthWaiter",
    "DockerHealthCheck",
    "AdminPingCheck",
    "HttpHealthCheck",
    # Policies
    "Clock",
    "ManualClock",
    "RetryHandler",
    "RetryPolicy",
]
