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
Pydantic models for the node status API.

Example:
    >>> from brokerboot.service.models import BootstrapResponse
    >>> BootstrapResponse.from_result(result).model_dump_json()
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from brokerboot.cluster.orchestrator import BootstrapResult, JoinAttempt


class HealthResponse(BaseModel):
    """Liveness of the node and state of its application layer."""

    status: str = Field(..., description="healthy, degraded or unhealthy")
    version: str = Field(..., description="brokerboot version")
    uptime_seconds: float = Field(..., description="Seconds since the status API started")
    node_name: Optional[str] = Field(None, description="Broker node name")
    role: Optional[str] = Field(None, description="seed or joiner")
    bootstrap_state: str = Field(..., description="Current bootstrap state")
    process_running: bool = Field(..., description="Whether the broker process is alive")
    app_running: bool = Field(..., description="Whether the broker application layer is running")


class IdentityModel(BaseModel):
    hostname: str
    node_name: str
    role: str
    join_target: Optional[str] = Field(None, description="Seed node name for joiners")


class JoinAttemptModel(BaseModel):
    """One join attempt against the seed."""

    peer_node: str
    peer_address: str
    started_at: float
    outcome: str
    attempts: int = Field(0, ge=0, description="Join commands issued")
    reason: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_attempt(cls, attempt: JoinAttempt) -> "JoinAttemptModel":
        return cls(**attempt.to_dict())


class BootstrapResponse(BaseModel):
    """Outcome of the node's bootstrap run."""

    identity: IdentityModel
    state: str
    history: List[str]
    app_active: bool
    elapsed: float = Field(..., ge=0)
    joined: bool
    failure_reason: Optional[str] = None
    attempt: Optional[JoinAttemptModel] = None

    @classmethod
    def from_result(cls, result: BootstrapResult) -> "BootstrapResponse":
        identity = result.identity
        return cls(
            identity=IdentityModel(
                hostname=identity.hostname,
                node_name=identity.node_name,
                role=identity.role.value,
                join_target=identity.join_target.node_name if identity.join_target else None,
            ),
            state=result.state.value,
            history=[s.value for s in result.history],
            app_active=result.app_active,
            elapsed=result.elapsed,
            joined=result.joined,
            failure_reason=result.failure_reason.value if result.failure_reason else None,
            attempt=JoinAttemptModel.from_attempt(result.attempt) if result.attempt else None,
        )


class ErrorResponse(BaseModel):
    error: str
    message: str
