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

"""TLS proxy and load balancer configuration for the broker cluster."""

from brokerboot.proxy.certbot import CertbotManager, DnsCheck, OsFamily, detect_os_family
from brokerboot.proxy.haproxy import HaproxyConfig, render_haproxy_config, write_haproxy_config
from brokerboot.proxy.nginx import ApplyResult, NginxConfigurator, render_stream_config

__all__ = [
    "ApplyResult",
    "CertbotManager",
    "DnsCheck",
    "HaproxyConfig",
    "NginxConfigurator",
    "OsFamily",
    "detect_os_family",
    "render_haproxy_config",
    "render_stream_config",
    "write_haproxy_config",
]
