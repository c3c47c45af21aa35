# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""In-memory fakes of the broker admin interface, server process and prober."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from brokerboot.cluster.admin import BrokerAdmin, ClusterMembership
from brokerboot.exceptions import PeerUnreachableError


@dataclass
class RecordingAdmin(BrokerAdmin):
    """In-memory broker admin that records every call in order.

    ``failures`` maps an operation name to exceptions raised by its next calls,
    one per call.
    """
    members: Set[str] = field(default_factory=set)
    app_running: bool = True
    calls: List[str] = field(default_factory=list)
    failures: Dict[str, List[BaseException]] = field(default_factory=dict)

    def _maybe_fail(self, operation: str) -> None:
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def count(self, operation: str) -> int:
        return sum(1 for c in self.calls if c.split(":")[0] == operation)

    async def cluster_status(self) -> ClusterMembership:
        self.calls.append("cluster_status")
        self._maybe_fail("cluster_status")
        members = frozenset(self.members)
        return ClusterMembership(members=members, running=members if self.app_running else frozenset())

    async def stop_app(self) -> None:
        self.calls.append("stop_app")
        self._maybe_fail("stop_app")
        self.app_running = False

    async def start_app(self) -> None:
        self.calls.append("start_app")
        self._maybe_fail("start_app")
        self.app_running = True

    async def join_cluster(self, peer_node: str) -> None:
        self.calls.append(f"join_cluster:{peer_node}")
        self._maybe_fail("join_cluster")
        self.members.add(peer_node)

    async def ping(self, node: Optional[str] = None) -> None:
        self.calls.append("ping")
        self._maybe_fail("ping")

    async def wait_booted(self, pid_file: str, timeout: float) -> None:
        self.calls.append("wait_booted")
        self._maybe_fail("wait_booted")

    async def is_app_running(self) -> bool:
        return self.app_running


class FakeService:
    """Stands in for LocalServiceSupervisor."""

    def __init__(self, running_after_start: bool = True) -> None:
        self.running_after_start = running_after_start
        self.is_running = False
        self.starts = 0
        self.ensure_calls = 0

    async def start(self) -> None:
        self.starts += 1
        self.is_running = self.running_after_start

    async def ensure_running(self) -> None:
        self.ensure_calls += 1
        if not self.is_running:
            await self.start()
            self.is_running = True


class FakeProber:
    """Prober that is reachable or times out without waiting."""

    def __init__(self, reachable: bool = True) -> None:
        self.reachable = reachable
        self.addresses: List[str] = []

    async def wait_reachable(self, address: str, timeout: float, poll_interval: float) -> None:
        self.addresses.append(address)
        if not self.reachable:
            raise PeerUnreachableError(address, timeout, attempts=int(timeout / poll_interval))
