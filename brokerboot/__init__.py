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
brokerboot - Cluster bootstrap and deployment tooling for RabbitMQ.

Bootstraps broker nodes into a cluster at container start (seed or joiner,
idempotent join, standalone fallback), waits for health convergence across
nodes, and generates the proxy and load balancer configuration in front of
the cluster.
"""

__version__ = "0.4.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"
