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
Nginx stream proxy configuration.

A change counts as applied only when the written file passes ``nginx -t``
and ``nginx -s reload`` succeeds. On validation failure the previous file
content is restored (or the new file removed) and reload is never issued.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import List, Optional

from brokerboot.config import ProxyConfig
from brokerboot.exceptions import ProxyConfigError
from brokerboot.proxy.templates import NGINX_STREAM_TEMPLATE, render
from brokerboot.utils.fs import atomic_write, read_text
from brokerboot.utils.logger import logger
from brokerboot.utils.process import CommandResult, run_command


def render_stream_config(config: ProxyConfig) -> str:
    """Render the stream config for ``config``."""
    return render(
        NGINX_STREAM_TEMPLATE,
        {
            "domain": config.domain,
            "backend": config.backend,
            "listen_port": config.listen_port,
            "certificate_path": config.certificate_path,
            "certificate_key_path": config.certificate_key_path,
        },
    )


@dataclass
class ApplyResult:
    """What ``NginxConfigurator.apply`` did."""
    path: str
    changed: bool
    reloaded: bool


class NginxConfigurator:
    """Writes, validates and reloads the Nginx stream config.

    Example:
        >>> configurator = NginxConfigurator(ProxyConfig(domain="queue.example.com"))
        >>> await configurator.apply()
    """

    def __init__(self, config: ProxyConfig, timeout: float = 30.0) -> None:
        self.config = config
        self.timeout = timeout

    def missing_certificates(self) -> List[str]:
        return [
            path
            for path in (self.config.certificate_path, self.config.certificate_key_path)
            if not os.path.isfile(path)
        ]

    async def _nginx(self, *args: str) -> CommandResult:
        command = [self.config.nginx_binary, *args]
        try:
            return await run_command(command, timeout=self.timeout)
        except FileNotFoundError:
            raise ProxyConfigError(f"Nginx not found: {self.config.nginx_binary}")
        except asyncio.TimeoutError:
            raise ProxyConfigError(f"'{' '.join(command)}' timed out after {self.timeout}s")

    async def validate(self) -> None:
        """Run ``nginx -t``.

        Raises:
            ProxyConfigError: If validation fails
        """
        result = await self._nginx("-t")
        if not result.ok:
            raise ProxyConfigError("Nginx config validation failed", output=result.output)

    async def reload(self) -> None:
        """Run ``nginx -s reload``.

        Raises:
            ProxyConfigError: If the reload signal fails
        """
        result = await self._nginx("-s", "reload")
        if not result.ok:
            raise ProxyConfigError("Nginx reload failed", output=result.output)
        logger.info("Nginx reloaded")

    def _restore(self, previous: Optional[str]) -> None:
        path = self.config.output_path
        if previous is None:
            if os.path.exists(path):
                os.unlink(path)
            logger.warning(f"Removed rejected config {path}")
        else:
            atomic_write(path, previous)
            logger.warning(f"Restored previous config {path}")

    async def apply(self, reload: bool = True) -> ApplyResult:
        """Write the config, validate it and reload Nginx.

        Args:
            reload: Send the reload signal after validation

        Returns:
            ApplyResult

        Raises:
            ProxyConfigError: If validation or reload fails
        """
        path = self.config.output_path
        content = render_stream_config(self.config)

        for missing in self.missing_certificates():
            logger.warning(f"Certificate file missing: {missing}")

        previous = read_text(path)
        atomic_write(path, content)
        logger.info(f"Wrote Nginx stream config {path}")

        try:
            await self.validate()
        except ProxyConfigError:
            self._restore(previous)
            raise

        if reload:
            await self.reload()
        return ApplyResult(path=path, changed=previous != content, reloaded=reload)
