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
Peer reachability probing.

A joiner cannot join before the seed's distribution port accepts TCP
connections. The prober polls at a fixed interval; connection refusal is the
expected answer while the seed is booting and is never reported on its own.
Only the aggregate timeout is an error.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple

from brokerboot.cluster.policy import Clock
from brokerboot.exceptions import PeerUnreachableError
from brokerboot.utils.logger import logger

Connector = Callable[[str, int], Awaitable[Tuple[Any, asyncio.StreamWriter]]]


def parse_address(address: str, default_port: Optional[int] = None) -> Tuple[str, int]:
    """Split ``host:port``; bracketed IPv6 literals are accepted."""
    host, sep, port = address.rpartition(":")
    if not sep or "]" in port:
        if default_port is None:
            raise ValueError(f"Address {address!r} has no port")
        host, port = address, str(default_port)
    host = host.strip("[]")
    if not host:
        raise ValueError(f"Address {address!r} has no host")
    return host, int(port)


class PeerProber:
    """Polls a peer until it accepts TCP connections.

    Example:
        >>> prober = PeerProber()
        >>> await prober.wait_reachable("rabbitmq1:25672", timeout=30, poll_interval=1)
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        connector: Optional[Connector] = None,
        connect_timeout: float = 2.0,
    ) -> None:
        self.clock = clock or Clock()
        self._connector = connector or asyncio.open_connection
        self.connect_timeout = connect_timeout
        self.attempts = 0

    async def probe(self, host: str, port: int) -> bool:
        """Attempt a single connection.

        Returns:
            True if the peer accepted the connection
        """
        writer: Optional[asyncio.StreamWriter] = None
        try:
            _, writer = await asyncio.wait_for(
                self._connector(host, port), timeout=self.connect_timeout
            )
            return True
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Probe to {host}:{port} failed: {e}")
            return False
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

    async def wait_reachable(
        self,
        address: str,
        timeout: float,
        poll_interval: float,
    ) -> None:
        """Wait until ``address`` accepts a connection.

        Args:
            address: Peer address (host:port)
            timeout: Total seconds to wait
            poll_interval: Fixed seconds between probes

        Raises:
            PeerUnreachableError: If no probe succeeded within ``timeout``
        """
        host, port = parse_address(address)
        deadline = self.clock.monotonic() + timeout
        self.attempts = 0

        logger.info(f"Waiting for peer {address} (timeout={timeout:.0f}s)")
        while True:
            self.attempts += 1
            if await self.probe(host, port):
                logger.info(f"Peer {address} reachable after {self.attempts} probe(s)")
                return

            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                raise PeerUnreachableError(address, timeout, attempts=self.attempts)
            await self.clock.sleep(min(poll_interval, remaining))
