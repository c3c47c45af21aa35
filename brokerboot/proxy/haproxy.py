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

"""HAProxy config with a static list of broker backends.

The backend list is fixed at render time. Adding or removing a node means
rendering again and restarting the load balancer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Sequence

from brokerboot.exceptions import ProxyConfigError
from brokerboot.proxy.templates import HAPROXY_TEMPLATE, render
from brokerboot.utils.fs import atomic_write
from brokerboot.utils.logger import logger

SERVER_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass
class HaproxyConfig:
    """Static load balancer settings."""
    backends: List[str] = field(default_factory=lambda: ["rabbitmq1", "rabbitmq2"])
    amqp_port: int = 5672
    management_port: int = 15672
    maxconn: int = 4096
    check_interval: str = "5s"
    cluster_name: str = "rabbitmq"

    def __post_init__(self) -> None:
        self.backends = [b.strip() for b in self.backends if b and b.strip()]
        if not self.backends:
            raise ProxyConfigError("At least one backend is required")
        if len(set(self.backends)) != len(self.backends):
            raise ProxyConfigError(f"Duplicate backends: {', '.join(self.backends)}")


def _server_lines(backends: Sequence[str], port: int, check_interval: str) -> str:
    lines = []
    for backend in backends:
        name = SERVER_NAME_RE.sub("_", backend)
        lines.append(
            f"    server {name} {backend}:{port} check inter {check_interval} rise 2 fall 3"
        )
    return "\n".join(lines)


def render_haproxy_config(config: HaproxyConfig) -> str:
    """Render ``haproxy.cfg`` for the static backend list."""
    return render(
        HAPROXY_TEMPLATE,
        {
            "cluster_name": config.cluster_name,
            "maxconn": config.maxconn,
            "amqp_port": config.amqp_port,
            "management_port": config.management_port,
            "amqp_servers": _server_lines(config.backends, config.amqp_port, config.check_interval),
            "management_servers": _server_lines(
                config.backends, config.management_port, config.check_interval
            ),
        },
    )


def write_haproxy_config(config: HaproxyConfig, path: str) -> str:
    """Render and atomically write ``haproxy.cfg``; returns the content."""
    content = render_haproxy_config(config)
    atomic_write(path, content)
    logger.info(f"Wrote HAProxy config {path} ({len(config.backends)} backends)")
    return content
