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

"""Async execution of external commands."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from brokerboot.utils.logger import logger


@dataclass
class CommandResult:
    """Outcome of an external command."""
    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, stripped."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


async def run_command(
    args: Sequence[str],
    timeout: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
    stdin: Optional[str] = None,
) -> CommandResult:
    """Run a command and capture its output.

    The child is killed and reaped if ``timeout`` elapses or the caller is
    cancelled.

    Args:
        args: Program and arguments
        timeout: Seconds before the command is killed
        env: Optional environment for the child
        stdin: Optional text written to the child's stdin

    Returns:
        CommandResult with decoded output

    Raises:
        FileNotFoundError: If the program does not exist
        asyncio.TimeoutError: If the command did not finish in time
    """
    logger.debug(f"Running: {' '.join(args)}")
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env) if env is not None else None,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(stdin.encode() if stdin is not None else None),
            timeout=timeout,
        )
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    return CommandResult(
        args=list(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )


async def run_passthrough(args: Sequence[str]) -> int:
    """Run a command attached to this process's stdio and return its exit code.

    The child is terminated if the caller is cancelled.

    Raises:
        FileNotFoundError: If the program does not exist
    """
    logger.debug(f"Running: {' '.join(args)}")
    proc = await asyncio.create_subprocess_exec(*args)
    try:
        return await proc.wait()
    except BaseException:
        if proc.returncode is None:
            proc.terminate()
            await proc.wait()
        raise
