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
Node status API.

Endpoints:
- GET /health: liveness of the broker process and its application layer
- GET /bootstrap: the outcome of the bootstrap run

The app is served by uvicorn inside the entrypoint process, next to the
supervised broker. Signal handling stays with the supervisor.
"""

from __future__ import annotations

import contextlib
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response

from brokerboot import __version__
from brokerboot.cluster.admin import BrokerAdmin
from brokerboot.cluster.orchestrator import BootstrapResult, JoinOrchestrator
from brokerboot.cluster.supervisor import LocalServiceSupervisor
from brokerboot.service.models import BootstrapResponse, ErrorResponse, HealthResponse
from brokerboot.utils.logger import logger


class NodeStatus:
    """What the status API reports on, shared with the entrypoint."""

    def __init__(
        self,
        orchestrator: Optional[JoinOrchestrator] = None,
        admin: Optional[BrokerAdmin] = None,
        supervisor: Optional[LocalServiceSupervisor] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.admin = admin
        self.supervisor = supervisor
        self.result: Optional[BootstrapResult] = None
        self.started_at = time.time()

    @property
    def process_running(self) -> bool:
        return self.supervisor.is_running if self.supervisor else True

    async def app_running(self) -> bool:
        if self.admin is None:
            return False
        return await self.admin.is_app_running()


def create_app(status: NodeStatus) -> FastAPI:
    """Create the status API for one node."""
    app = FastAPI(
        title="brokerboot node status",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )
    app.state.status = status

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health(request: Request, response: Response) -> HealthResponse:
        node: NodeStatus = request.app.state.status
        process_running = node.process_running
        app_running = process_running and await node.app_running()

        if process_running and app_running:
            state = "healthy"
        elif process_running:
            state = "degraded"
        else:
            state = "unhealthy"
            response.status_code = 503

        identity = node.orchestrator.identity if node.orchestrator else None
        return HealthResponse(
            status=state,
            version=__version__,
            uptime_seconds=time.time() - node.started_at,
            node_name=identity.node_name if identity else None,
            role=identity.role.value if identity else None,
            bootstrap_state=node.orchestrator.state.value if node.orchestrator else "unknown",
            process_running=process_running,
            app_running=app_running,
        )

    @app.get(
        "/bootstrap",
        response_model=BootstrapResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Bootstrap"],
    )
    async def bootstrap(request: Request) -> BootstrapResponse:
        node: NodeStatus = request.app.state.status
        if node.result is None:
            raise HTTPException(status_code=404, detail="Bootstrap has not finished")
        return BootstrapResponse.from_result(node.result)

    return app


class StatusServer(uvicorn.Server):
    """uvicorn server that leaves process signals to the supervisor."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def build_server(app: FastAPI, host: str, port: int, log_level: str = "warning") -> StatusServer:
    logger.info(f"Status API on http://{host}:{port}")
    return StatusServer(uvicorn.Config(app, host=host, port=port, log_level=log_level))
