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

"""Cluster membership queries against the local node."""

from __future__ import annotations

from brokerboot.cluster.admin import BrokerAdmin, ClusterMembership
from brokerboot.utils.logger import logger


class MembershipClient:
    """Answers whether the local node is already clustered with a peer.

    Membership is matched by node name, never by network address, and is
    queried live on every call. ``AdminUnavailableError`` from the admin
    interface propagates unchanged: an unreachable admin interface says
    nothing about membership.
    """

    def __init__(self, admin: BrokerAdmin) -> None:
        self.admin = admin

    async def snapshot(self) -> ClusterMembership:
        """Get the current membership as seen by the local node."""
        return await self.admin.cluster_status()

    async def is_clustered_with(self, peer_identity: str) -> bool:
        """Check whether ``peer_identity`` is a member of the local node's cluster.

        Args:
            peer_identity: Peer node name (``rabbit@host``)

        Returns:
            True if the peer is listed as a member

        Raises:
            AdminUnavailableError: If the admin interface cannot be reached
        """
        membership = await self.snapshot()
        clustered = membership.contains(peer_identity)
        logger.debug(
            f"Membership of {peer_identity}: {clustered} "
            f"(members={sorted(membership.members)})"
        )
        return clustered
