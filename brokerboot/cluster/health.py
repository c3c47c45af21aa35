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
Health convergence across broker nodes.

``HealthWaiter.wait_all`` polls every node concurrently, one task per node,
so total wall time is bounded by the slowest node rather than the sum. Each
node task bounds itself with its own timeout and is cancelled independently.
An optional caller-level deadline cancels everything still outstanding and
reports at once.

Health check backends:
- DockerHealthCheck: the container's Docker health status
- AdminPingCheck: ``rabbitmq-diagnostics ping`` against the node
- HttpHealthCheck: the management API alarm check
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from brokerboot.cluster.admin import BrokerAdmin
from brokerboot.exceptions import AdminUnavailableError, PartialTimeoutError
from brokerboot.utils.logger import logger
from brokerboot.utils.process import run_command


class HealthStatus(str, Enum):
    """Health of a single node."""
    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMED_OUT = "timed_out"


@dataclass
class HealthReport:
    """Combined outcome of a wait cycle."""
    statuses: Dict[str, HealthStatus] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def healthy(self) -> bool:
        return all(s == HealthStatus.HEALTHY for s in self.statuses.values())

    @property
    def unhealthy_nodes(self) -> List[str]:
        return [n for n, s in self.statuses.items() if s != HealthStatus.HEALTHY]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "elapsed": round(self.elapsed, 3),
            "statuses": {n: s.value for n, s in self.statuses.items()},
        }


class HealthCheck(ABC):
    """One health probe of one node."""

    @abstractmethod
    async def check(self, node: str) -> HealthStatus:
        """Probe ``node`` once and report its status."""


DOCKER_STATES = {
    "healthy": HealthStatus.HEALTHY,
    "starting": HealthStatus.STARTING,
    "unhealthy": HealthStatus.UNHEALTHY,
}


class DockerHealthCheck(HealthCheck):
    """Reads the health status Docker keeps for a container."""

    def __init__(self, docker: Sequence[str] = ("docker",), timeout: float = 10.0) -> None:
        self.docker = list(docker)
        self.timeout = timeout

    async def check(self, node: str) -> HealthStatus:
        command = self.docker + ["inspect", "-f", "{{json .State.Health.Status}}", node]
        try:
            result = await run_command(command, timeout=self.timeout)
        except FileNotFoundError:
            logger.warning(f"Docker CLI not found: {self.docker[0]}")
            return HealthStatus.UNKNOWN
        except asyncio.TimeoutError:
            logger.debug(f"docker inspect {node} timed out")
            return HealthStatus.UNKNOWN

        if not result.ok:
            logger.debug(f"docker inspect {node} failed: {result.output}")
            return HealthStatus.UNKNOWN
        try:
            state = json.loads(result.stdout.strip() or "null")
        except ValueError:
            state = result.stdout.strip().strip('"')
        return DOCKER_STATES.get(state or "", HealthStatus.UNKNOWN)


class AdminPingCheck(HealthCheck):
    """Pings a broker node through the admin interface."""

    def __init__(self, admin: BrokerAdmin) -> None:
        self.admin = admin

    async def check(self, node: str) -> HealthStatus:
        try:
            await self.admin.ping(node)
        except AdminUnavailableError as e:
            logger.debug(f"Ping {node} failed: {e}")
            return HealthStatus.STARTING
        return HealthStatus.HEALTHY


class HttpHealthCheck(HealthCheck):
    """Queries the management API alarm check of a node.

    Args:
        base_url: URL template with a ``{node}`` placeholder
        username: Management API user
        password: Management API password
        request_timeout: Per-request timeout in seconds
    """

    PATH = "/api/health/checks/alarms"

    def __init__(
        self,
        base_url: str = "http://{node}:15672",
        username: str = "guest",
        password: str = "guest",
        request_timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url
        self.auth = aiohttp.BasicAuth(username, password)
        self.request_timeout = request_timeout

    def url_for(self, node: str) -> str:
        return self.base_url.format(node=node).rstrip("/") + self.PATH

    async def check(self, node: str) -> HealthStatus:
        url = self.url_for(node)
        try:
            async with aiohttp.ClientSession(auth=self.auth) as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.request_timeout)
                ) as response:
                    if response.status == 200:
                        return HealthStatus.HEALTHY
                    if response.status == 503:
                        return HealthStatus.UNHEALTHY
                    logger.debug(f"{url} returned {response.status}")
                    return HealthStatus.STARTING
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"{url} not answering: {e}")
            return HealthStatus.STARTING


class HealthWaiter:
    """Waits for a set of nodes to become healthy.

    Example:
        >>> waiter = HealthWaiter(DockerHealthCheck())
        >>> report = await waiter.wait_all(["rabbitmq1", "rabbitmq2"], 120, 2)
    """

    def __init__(self, check: HealthCheck) -> None:
        self.check = check

    async def wait_all(
        self,
        nodes: Sequence[str],
        per_node_timeout: float,
        poll_interval: float,
        deadline: Optional[float] = None,
    ) -> HealthReport:
        """Poll all nodes concurrently until healthy or timed out.

        Args:
            nodes: Node identities to probe
            per_node_timeout: Seconds each node gets to become healthy
            poll_interval: Seconds between probes of one node
            deadline: Optional overall limit; outstanding probes are
                cancelled when it passes

        Returns:
            HealthReport with every node healthy

        Raises:
            PartialTimeoutError: Naming exactly the nodes that did not
                become healthy, with the full report attached
        """
        if per_node_timeout <= 0 or poll_interval <= 0:
            raise ValueError("per_node_timeout and poll_interval must be positive")

        loop = asyncio.get_running_loop()
        started = loop.time()
        ordered = list(dict.fromkeys(nodes))
        statuses: Dict[str, HealthStatus] = {n: HealthStatus.UNKNOWN for n in ordered}
        if not ordered:
            return HealthReport(statuses=statuses)

        logger.info(f"Waiting for {len(ordered)} nodes to become healthy: {', '.join(ordered)}")
        tasks = {
            node: asyncio.ensure_future(
                self._wait_node(node, per_node_timeout, poll_interval, statuses)
            )
            for node in ordered
        }

        _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
        if pending:
            logger.warning(f"Deadline of {deadline}s reached; cancelling {len(pending)} probes")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for node, task in tasks.items():
            if task.cancelled():
                statuses[node] = HealthStatus.TIMED_OUT
            else:
                task.result()

        report = HealthReport(statuses=statuses, elapsed=loop.time() - started)
        if not report.healthy:
            raise PartialTimeoutError(report.unhealthy_nodes, report=report)
        logger.info(f"All {len(ordered)} nodes healthy ({report.elapsed:.1f}s)")
        return report

    async def _wait_node(
        self,
        node: str,
        timeout: float,
        interval: float,
        statuses: Dict[str, HealthStatus],
    ) -> None:
        try:
            await asyncio.wait_for(self._poll(node, interval, statuses), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{node} not healthy after {timeout}s (last: {statuses[node].value})")
            statuses[node] = HealthStatus.TIMED_OUT

    async def _poll(self, node: str, interval: float, statuses: Dict[str, HealthStatus]) -> None:
        while True:
            status = await self.check.check(node)
            statuses[node] = status
            if status == HealthStatus.HEALTHY:
                logger.info(f"{node} is healthy")
                return
            await asyncio.sleep(interval)
