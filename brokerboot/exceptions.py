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

"""Custom exceptions for brokerboot.

This module defines the exception hierarchy used throughout brokerboot.
All exceptions inherit from BrokerBootError for easy catching and handling.

Exception Hierarchy:
    BrokerBootError (base)
    ├── ConfigError - Fatal configuration errors, halt startup
    ├── ClusterError - Clustering errors (degrade to standalone)
    │   ├── PeerUnreachableError - Seed never accepted connections
    │   ├── AdminUnavailableError - Local admin interface unreachable
    │   ├── JoinRejectedError - Join command failed
    │   └── SecretMismatchError - Cluster secrets differ between nodes
    ├── PartialTimeoutError - Some nodes never became healthy
    ├── ProxyConfigError - Proxy config could not be validated or applied
    ├── CertificateError - Certificate acquisition failed
    └── ComposeError - Docker Compose command failed

Example:
    try:
        result = await orchestrator.run()
    except ConfigError:
        # Startup cannot continue
        raise
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from brokerboot.cluster.health import HealthReport


class BrokerBootError(Exception):
    """Base exception for all brokerboot errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(BrokerBootError):
    """Raised when required configuration is missing or invalid.

    This is the only bootstrap error that halts startup: without an
    identity the node cannot be started at all.
    """
    pass


class ClusterError(BrokerBootError):
    """Base exception for clustering errors."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        """Initialize the cluster error.

        Args:
            message: Error message
            retry_after: Optional seconds to wait before retrying
        """
        super().__init__(message)
        self.retry_after = retry_after


class PeerUnreachableError(ClusterError, TimeoutError):
    """Raised when the seed peer did not accept connections in time."""

    def __init__(
        self,
        address: str,
        timeout: float,
        attempts: int = 0,
        message: Optional[str] = None,
    ) -> None:
        """Initialize the unreachable error.

        Args:
            address: Peer address that was probed (host:port)
            timeout: Total time waited in seconds
            attempts: Number of probes made
            message: Optional custom error message
        """
        super().__init__(
            message or f"Peer {address} unreachable after {timeout:.1f}s ({attempts} probes)"
        )
        self.address = address
        self.timeout = timeout
        self.attempts = attempts


class AdminUnavailableError(ClusterError):
    """Raised when the local broker's administrative interface cannot be reached.

    This is not the same as "not a member": callers must never treat it as
    a signal that a join is needed.
    """

    def __init__(
        self,
        message: str = "Broker admin interface unavailable",
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
    ) -> None:
        super().__init__(message, retry_after=2.0)
        self.command = list(command) if command else []
        self.returncode = returncode


class JoinRejectedError(ClusterError):
    """Raised when the join command against a peer fails."""

    def __init__(
        self,
        peer: str,
        message: Optional[str] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(message or f"Join to {peer} rejected")
        self.peer = peer
        self.returncode = returncode
        self.output = output


class SecretMismatchError(ClusterError):
    """Raised when the local cluster secret differs from the seed's."""

    def __init__(
        self,
        expected: str,
        actual: str,
        message: Optional[str] = None,
    ) -> None:
        """Initialize the mismatch error.

        Args:
            expected: Fingerprint published by the seed
            actual: Fingerprint of the local secret
            message: Optional custom error message
        """
        super().__init__(
            message
            or f"Cluster secret mismatch (expected {expected[:12]}, found {actual[:12]})"
        )
        self.expected = expected
        self.actual = actual


class PartialTimeoutError(BrokerBootError, TimeoutError):
    """Raised when one or more nodes did not become healthy in time."""

    def __init__(
        self,
        timed_out: List[str],
        report: Optional["HealthReport"] = None,
        message: Optional[str] = None,
    ) -> None:
        """Initialize the partial timeout error.

        Args:
            timed_out: Nodes that did not report healthy
            report: Full health report of the wait cycle
            message: Optional custom error message
        """
        super().__init__(message or f"Nodes not healthy: {', '.join(timed_out)}")
        self.timed_out = list(timed_out)
        self.report = report

    @property
    def statuses(self) -> Dict[str, str]:
        """Per-node status values from the report, if present."""
        if self.report is None:
            return {}
        return {node: status.value for node, status in self.report.statuses.items()}


class ProxyConfigError(BrokerBootError):
    """Raised when a proxy config fails validation or reload."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class CertificateError(BrokerBootError):
    """Raised when certificate acquisition fails or files are missing."""
    pass


class ComposeError(BrokerBootError):
    """Raised when a Docker Compose command fails."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.command = list(command) if command else []
        self.returncode = returncode
