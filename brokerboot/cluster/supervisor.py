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
Supervision of the local broker server process.

The entrypoint owns the broker process for its whole lifetime instead of
replacing itself with a log tail: it starts the server as a child, runs the
bootstrap sequence next to it, then waits on it in the foreground and
forwards termination signals to the whole process tree.
"""

from __future__ import annotations

import asyncio
import signal
from typing import List, Optional, Sequence

import psutil

from brokerboot.utils.logger import logger


class LocalServiceSupervisor:
    """Owns the broker server process.

    Example:
        >>> supervisor = LocalServiceSupervisor(["docker-entrypoint.sh", "rabbitmq-server"])
        >>> await supervisor.start()
        >>> exit_code = await supervisor.supervise()
    """

    def __init__(self, command: Sequence[str], stop_timeout: float = 30.0) -> None:
        self.command: List[str] = list(command)
        self.stop_timeout = stop_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stopping = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        """Whether the server process is alive."""
        return self._process is not None and self._process.returncode is None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    async def start(self) -> None:
        """Start the server process unless it is already running."""
        if self.is_running:
            return
        logger.info(f"Starting broker server: {' '.join(self.command)}")
        self._stopping = False
        self._process = await asyncio.create_subprocess_exec(*self.command)
        logger.info(f"Broker server started (pid={self._process.pid})")

    async def ensure_running(self) -> None:
        """Restart the server if it exited during bootstrap."""
        if self._process is not None and not self.is_running and not self._stopping:
            logger.warning(
                f"Broker server exited with {self._process.returncode} during bootstrap; restarting"
            )
        await self.start()

    async def wait(self) -> int:
        """Wait for the server process to exit and return its exit code."""
        if self._process is None:
            raise RuntimeError("Broker server was never started")
        return await self._process.wait()

    async def supervise(self) -> int:
        """Run in the foreground until the server exits.

        SIGTERM and SIGINT are forwarded to the server's process tree.

        Returns:
            The server's exit code
        """
        self.install_signal_handlers()
        code = await self.wait()
        logger.info(f"Broker server exited with {code}")
        return code

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.ensure_future(self.stop(s)))
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {sig.name}")

    def _process_tree(self) -> List[psutil.Process]:
        if self.pid is None:
            return []
        try:
            parent = psutil.Process(self.pid)
            return [parent] + parent.children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    async def stop(self, sig: signal.Signals = signal.SIGTERM) -> Optional[int]:
        """Signal the server's process tree and wait for it to exit.

        Processes still alive after ``stop_timeout`` are killed.

        Returns:
            The server's exit code, or None if it was never started
        """
        if self._process is None:
            return None
        if not self.is_running:
            return self._process.returncode

        self._stopping = True
        tree = self._process_tree()
        logger.info(f"Stopping broker server ({sig.name}, {len(tree)} processes)")
        for proc in tree:
            try:
                proc.send_signal(sig)
            except psutil.NoSuchProcess:
                pass

        # The direct child is reaped by asyncio; psutil only polls the descendants.
        try:
            code = await asyncio.wait_for(self._process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Killing broker server after {self.stop_timeout:.0f}s")
            self._process.kill()
            code = await self._process.wait()

        loop = asyncio.get_running_loop()
        _, alive = await loop.run_in_executor(
            None, lambda: psutil.wait_procs(tree[1:], timeout=1.0)
        )
        for proc in alive:
            logger.warning(f"Killing leftover process {proc.pid}")
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        return code
