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
Config templates for the proxies in front of the cluster.

Templates use ``string.Template`` placeholders. Rendering fails with
ProxyConfigError when a placeholder has no value, so a half-filled config is
never produced.
"""

from __future__ import annotations

from string import Template
from typing import Any, Dict

from brokerboot.exceptions import ProxyConfigError

NGINX_STREAM_TEMPLATE = Template("""\
# Managed by brokerboot: TLS termination for AMQP clients of ${domain}
upstream rabbitmq_backend {
    server ${backend};
}

server {
    listen ${listen_port} ssl;
    proxy_pass rabbitmq_backend;
    proxy_connect_timeout 10s;
    proxy_timeout 3h;

    ssl_certificate ${certificate_path};
    ssl_certificate_key ${certificate_key_path};
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_session_cache shared:rabbitmq_tls:10m;
    ssl_session_timeout 10m;
}
""")

HAPROXY_TEMPLATE = Template("""\
# Managed by brokerboot: static backends for ${cluster_name}
global
    log 127.0.0.1 local0
    maxconn ${maxconn}

defaults
    log global
    mode tcp
    option tcplog
    option dontlognull
    timeout connect 5s
    timeout client 3h
    timeout server 3h

listen rabbitmq_amqp
    bind *:${amqp_port}
    balance roundrobin
${amqp_servers}

listen rabbitmq_management
    bind *:${management_port}
    balance roundrobin
${management_servers}
""")


def render(template: Template, values: Dict[str, Any]) -> str:
    """Fill every placeholder of ``template``.

    Raises:
        ProxyConfigError: If a placeholder has no value
    """
    try:
        return template.substitute(values)
    except KeyError as e:
        raise ProxyConfigError(f"Missing template value: {e.args[0]}")
    except ValueError as e:
        raise ProxyConfigError(f"Invalid template: {e}")
