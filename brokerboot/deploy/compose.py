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
Docker Compose driver for the broker stack.

Lifecycle commands (up, down, restart, tail) run attached to the terminal;
status and logs are captured and returned. ``wait`` polls the Docker health
status of every broker service concurrently through the HealthWaiter and
names the services that did not become healthy.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from typing import List, Optional

from brokerboot.cluster.health import (
    DockerHealthCheck,
    HealthCheck,
    HealthReport,
    HealthStatus,
    HealthWaiter,
)
from brokerboot.config import ComposeConfig
from brokerboot.exceptions import ComposeError
from brokerboot.utils.logger import logger
from brokerboot.utils.process import CommandResult, run_command, run_passthrough


class ComposeServiceHealthCheck(HealthCheck):
    """Docker health status of a Compose service's container."""

    def __init__(self, driver: "ComposeDriver") -> None:
        self.driver = driver
        self.docker = DockerHealthCheck()

    async def check(self, node: str) -> HealthStatus:
        container = await self.driver.container_id(node)
        if not container:
            return HealthStatus.UNKNOWN
        return await self.docker.check(container)


class ComposeDriver:
    """Runs ``docker compose`` against the stack's compose file.

    Example:
        >>> driver = ComposeDriver(ComposeConfig.from_env())
        >>> await driver.deploy()
    """

    def __init__(self, config: ComposeConfig, timeout: float = 120.0) -> None:
        self.config = config
        self.timeout = timeout

    def command(self, *args: str) -> List[str]:
        return [*self.config.docker_compose, "-f", self.config.compose_file, *args]

    async def _attached(self, *args: str) -> None:
        command = self.command(*args)
        logger.info(f"Running: {' '.join(command)}")
        try:
            code = await run_passthrough(command)
        except FileNotFoundError:
            raise ComposeError(f"Compose not found: {self.config.docker_compose[0]}", command=command)
        if code != 0:
            raise ComposeError(f"'{' '.join(command)}' failed ({code})", command=command, returncode=code)

    async def _captured(self, *args: str) -> CommandResult:
        command = self.command(*args)
        try:
            result = await run_command(command, timeout=self.timeout)
        except FileNotFoundError:
            raise ComposeError(f"Compose not found: {self.config.docker_compose[0]}", command=command)
        except asyncio.TimeoutError:
            raise ComposeError(f"'{' '.join(command)}' timed out", command=command)
        if not result.ok:
            raise ComposeError(
                f"'{' '.join(command)}' failed ({result.returncode}): {result.output}",
                command=command,
                returncode=result.returncode,
            )
        return result

    # ==================== Lifecycle ====================

    async def up(self) -> None:
        """Start services in the background."""
        await self._attached("up", "-d")

    async def down(self) -> None:
        """Stop and remove containers, keeping volumes."""
        await self._attached("down")

    async def restart(self) -> None:
        await self._attached("restart")

    async def status(self) -> str:
        """Get ``docker compose ps`` output."""
        return (await self._captured("ps")).stdout

    async def logs(self, tail: int = 100) -> str:
        """Get the last ``tail`` log lines of all services."""
        return (await self._captured("logs", f"--tail={tail}")).stdout

    async def follow_logs(self) -> None:
        """Follow logs of all services until interrupted."""
        await self._attached("logs", "-f")

    async def container_id(self, service: str) -> Optional[str]:
        try:
            result = await self._captured("ps", "-q", service)
        except ComposeError as e:
            logger.debug(f"No container for {service}: {e}")
            return None
        lines = result.stdout.split()
        return lines[0] if lines else None

    # ==================== Health ====================

    async def wait(self, deadline: Optional[float] = None) -> HealthReport:
        """Wait for every broker service to report healthy.

        Raises:
            PartialTimeoutError: Naming the services that stayed unhealthy
        """
        waiter = HealthWaiter(ComposeServiceHealthCheck(self))
        return await waiter.wait_all(
            self.config.broker_services,
            per_node_timeout=self.config.wait_timeout,
            poll_interval=self.config.wait_interval,
            deadline=deadline,
        )

    # ==================== Environment ====================

    def init_env(self) -> bool:
        """Create the env file from the sample if it does not exist.

        Returns:
            True if the env file was created

        Raises:
            ComposeError: If neither file exists
        """
        if os.path.exists(self.config.env_file):
            logger.info(f"{self.config.env_file} already exists")
            return False
        if not os.path.exists(self.config.sample_env_file):
            raise ComposeError(
                f"{self.config.sample_env_file} not found; cannot create {self.config.env_file}"
            )
        shutil.copyfile(self.config.sample_env_file, self.config.env_file)
        logger.info(
            f"Created {self.config.env_file} from {self.config.sample_env_file}. "
            "Review and update secrets before production."
        )
        return True

    async def clean(self) -> List[str]:
        """Bring the stack down and remove its named volumes.

        Deletes persisted broker data.

        Returns:
            Volumes that were removed
        """
        await self.down()
        removed = []
        for volume in self.config.volumes:
            logger.info(f"Removing volume {volume} (if it exists)")
            command = ["docker", "volume", "rm", volume]
            try:
                result = await run_command(command, timeout=self.timeout)
            except FileNotFoundError:
                raise ComposeError("Docker CLI not found", command=command)
            except asyncio.TimeoutError:
                raise ComposeError(f"'{' '.join(command)}' timed out", command=command)
            if result.ok:
                removed.append(volume)
            else:
                logger.debug(f"Volume {volume} not removed: {result.output}")
        return removed

    async def deploy(self) -> HealthReport:
        """Ensure the env file, start the stack and wait for health."""
        self.init_env()
        await self.up()
        report = await self.wait()
        logger.info("Deployment completed successfully")
        return report
