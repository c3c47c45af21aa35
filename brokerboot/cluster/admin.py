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
Broker administrative interface.

The broker is a black box reached through its admin tools. ``BrokerAdmin``
is the contract the bootstrap logic depends on; ``RabbitmqctlAdmin`` drives
``rabbitmqctl`` and ``rabbitmq-diagnostics`` for a local RabbitMQ node.

Failure classification:
- The admin tool missing, timing out, or exiting with 69 (EX_UNAVAILABLE)
  or 75 (EX_TEMPFAIL) means the admin interface itself is unreachable and
  raises AdminUnavailableError, as does cluster_status output naming no
  members.
- Any other non-zero exit of ``join_cluster`` raises JoinRejectedError.
"""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from brokerboot.exceptions import AdminUnavailableError, JoinRejectedError
from brokerboot.utils.logger import logger
from brokerboot.utils.process import CommandResult, run_command

EX_UNAVAILABLE = 69
EX_TEMPFAIL = 75
UNAVAILABLE_CODES = frozenset({EX_UNAVAILABLE, EX_TEMPFAIL})

NODE_NAME_RE = re.compile(r"^[\w.\-]+@[\w.\-]+$")


@dataclass(frozen=True)
class ClusterMembership:
    """Live snapshot of the cluster as seen by the local node.

    Attributes:
        members: All known member node names (disk and RAM nodes)
        running: Member node names currently running
    """
    members: FrozenSet[str] = frozenset()
    running: FrozenSet[str] = frozenset()

    def contains(self, node_name: str) -> bool:
        return node_name in self.members or node_name in self.running

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"members": sorted(self.members), "running": sorted(self.running)}


def parse_cluster_status(output: str) -> ClusterMembership:
    """Parse ``rabbitmqctl cluster_status`` output.

    JSON output (``--formatter json``) is preferred. Plain text output is
    parsed by its node sections for older brokers. A live node always lists
    itself, so output naming no members was not understood.

    Raises:
        AdminUnavailableError: If no member can be read from the output
    """
    try:
        data = json.loads(output)
    except ValueError:
        membership = _parse_cluster_status_text(output)
    else:
        membership = _parse_cluster_status_json(data)

    if not membership.members:
        raise AdminUnavailableError(
            f"Unrecognised cluster_status output: {output.strip()[:200]!r}"
        )
    return membership


def _parse_cluster_status_json(data: Any) -> ClusterMembership:
    if not isinstance(data, dict):
        return ClusterMembership()

    members = set(data.get("disk_nodes") or []) | set(data.get("ram_nodes") or [])
    running = set(data.get("running_nodes") or [])
    return ClusterMembership(members=frozenset(members | running), running=frozenset(running))


def _parse_cluster_status_text(output: str) -> ClusterMembership:
    members: set = set()
    running: set = set()
    section: Optional[str] = None

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        lowered = line.lower()
        if lowered.endswith("nodes"):
            section = "running" if lowered.startswith("running") else "members"
            continue
        if section is None:
            continue
        if NODE_NAME_RE.match(line):
            members.add(line)
            if section == "running":
                running.add(line)
        else:
            section = None

    return ClusterMembership(members=frozenset(members), running=frozenset(running))


class BrokerAdmin(ABC):
    """Administrative operations of the local broker node."""

    @abstractmethod
    async def cluster_status(self) -> ClusterMembership:
        """Get the live cluster view of the local node."""

    async def list_members(self) -> FrozenSet[str]:
        """Get the node names the local node lists as cluster members."""
        return (await self.cluster_status()).members

    @abstractmethod
    async def stop_app(self) -> None:
        """Stop the application layer, leaving the node process running."""

    @abstractmethod
    async def start_app(self) -> None:
        """Start the application layer."""

    @abstractmethod
    async def join_cluster(self, peer_node: str) -> None:
        """Join the cluster of ``peer_node``.

        Raises:
            JoinRejectedError: If the join command fails
            AdminUnavailableError: If the admin interface is unreachable
        """

    @abstractmethod
    async def ping(self, node: Optional[str] = None) -> None:
        """Check that a node answers.

        Raises:
            AdminUnavailableError: If the node does not answer
        """

    @abstractmethod
    async def wait_booted(self, pid_file: str, timeout: float) -> None:
        """Block until the local node has booted."""

    async def is_app_running(self) -> bool:
        """Whether the local application layer is running."""
        try:
            return bool((await self.cluster_status()).running)
        except AdminUnavailableError:
            return False


class RabbitmqctlAdmin(BrokerAdmin):
    """BrokerAdmin backed by ``rabbitmqctl`` and ``rabbitmq-diagnostics``.

    Example:
        >>> admin = RabbitmqctlAdmin(node="rabbit@rabbitmq2")
        >>> members = await admin.list_members()
    """

    def __init__(
        self,
        node: Optional[str] = None,
        ctl: str = "rabbitmqctl",
        diagnostics: str = "rabbitmq-diagnostics",
        timeout: float = 60.0,
    ) -> None:
        self.node = node
        self.ctl = ctl
        self.diagnostics = diagnostics
        self.timeout = timeout

    def _command(self, tool: str, *args: str, node: Optional[str] = None) -> List[str]:
        command = [tool]
        target = node or self.node
        if target:
            command += ["-n", target]
        return command + list(args)

    async def _run(self, command: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        try:
            result = await run_command(command, timeout=timeout or self.timeout)
        except FileNotFoundError as e:
            raise AdminUnavailableError(f"Admin tool not found: {e}", command=command)
        except asyncio.TimeoutError:
            raise AdminUnavailableError(
                f"Admin command timed out: {' '.join(command)}", command=command
            )

        if result.returncode in UNAVAILABLE_CODES:
            raise AdminUnavailableError(
                f"Admin interface unavailable ({result.returncode}): {result.output}",
                command=command,
                returncode=result.returncode,
            )
        return result

    async def _run_checked(self, command: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        result = await self._run(command, timeout=timeout)
        if not result.ok:
            raise AdminUnavailableError(
                f"Admin command failed ({result.returncode}): {result.output}",
                command=command,
                returncode=result.returncode,
            )
        return result

    async def cluster_status(self) -> ClusterMembership:
        result = await self._run_checked(
            self._command(self.ctl, "cluster_status", "--formatter", "json")
        )
        return parse_cluster_status(result.stdout)

    async def stop_app(self) -> None:
        logger.info("Stopping broker application layer")
        await self._run_checked(self._command(self.ctl, "stop_app"))

    async def start_app(self) -> None:
        logger.info("Starting broker application layer")
        await self._run_checked(self._command(self.ctl, "start_app"))

    async def join_cluster(self, peer_node: str) -> None:
        logger.info(f"Joining cluster {peer_node}")
        result = await self._run(self._command(self.ctl, "join_cluster", peer_node))
        if not result.ok:
            raise JoinRejectedError(
                peer_node,
                message=f"Join to {peer_node} rejected ({result.returncode}): {result.output}",
                returncode=result.returncode,
                output=result.output,
            )

    async def ping(self, node: Optional[str] = None) -> None:
        await self._run_checked(self._command(self.diagnostics, "-q", "ping", node=node))

    async def wait_booted(self, pid_file: str, timeout: float) -> None:
        logger.info(f"Waiting for local node to boot ({pid_file})")
        await self._run_checked(
            self._command(self.ctl, "wait", pid_file, "--timeout", str(int(timeout))),
            timeout=timeout + 10,
        )

    async def is_app_running(self) -> bool:
        try:
            result = await self._run(self._command(self.diagnostics, "-q", "check_running"))
        except AdminUnavailableError:
            return False
        return result.ok
