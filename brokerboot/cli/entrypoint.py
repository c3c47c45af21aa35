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
Node commands: the container entrypoint and the health waiter.

Usage:
    brokerboot entrypoint [--join-host rabbitmq1] [--status-port 8080] [-- rabbitmq-server]
    brokerboot wait rabbitmq1 rabbitmq2 --check docker --timeout 120
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
from typing import Optional

from brokerboot.cli.deploy import add_compose_arguments, build_driver
from brokerboot.cluster.admin import RabbitmqctlAdmin
from brokerboot.cluster.health import (
    AdminPingCheck,
    DockerHealthCheck,
    HealthCheck,
    HealthReport,
    HealthWaiter,
    HttpHealthCheck,
)
from brokerboot.cluster.orchestrator import JoinOrchestrator
from brokerboot.cluster.supervisor import LocalServiceSupervisor
from brokerboot.config import BootstrapConfig
from brokerboot.exceptions import PartialTimeoutError
from brokerboot.service.app import NodeStatus, build_server, create_app
from brokerboot.utils.logger import logger


def build_bootstrap_config(args: argparse.Namespace) -> BootstrapConfig:
    """Environment configuration with command-line overrides applied."""
    config = BootstrapConfig.from_env()
    overrides = {}
    if args.join_host is not None:
        overrides["join_cluster_host"] = args.join_host
    if args.join_port is not None:
        overrides["join_cluster_port"] = args.join_port
    if args.hostname is not None:
        overrides["hostname"] = args.hostname
    if args.peer_timeout is not None:
        overrides["peer_timeout"] = args.peer_timeout
    if args.bootstrap_record is not None:
        overrides["bootstrap_record"] = args.bootstrap_record
    command = [c for c in (args.server_command or []) if c != "--"]
    if command:
        overrides["server_command"] = command
    return dataclasses.replace(config, **overrides) if overrides else config


async def run_entrypoint(
    config: BootstrapConfig,
    status_host: str = "0.0.0.0",
    status_port: Optional[int] = None,
) -> int:
    """Bootstrap the node, then supervise the broker in the foreground.

    Returns:
        The broker server's exit code
    """
    admin = RabbitmqctlAdmin(timeout=config.admin_timeout)
    supervisor = LocalServiceSupervisor(config.server_command)
    orchestrator = JoinOrchestrator(config, admin, service=supervisor)
    status = NodeStatus(orchestrator=orchestrator, admin=admin, supervisor=supervisor)

    server = None
    server_task = None
    if status_port:
        server = build_server(create_app(status), status_host, status_port)
        server_task = asyncio.ensure_future(server.serve())

    try:
        status.result = await orchestrator.run()
        return await supervisor.supervise()
    finally:
        if supervisor.is_running:
            await supervisor.stop()
        if server is not None:
            server.should_exit = True
            await server_task


def cmd_entrypoint(args: argparse.Namespace) -> int:
    """Run the container entrypoint."""
    config = build_bootstrap_config(args)
    return asyncio.run(run_entrypoint(config, args.status_host, args.status_port))


def build_health_check(args: argparse.Namespace) -> HealthCheck:
    if args.check == "ping":
        return AdminPingCheck(RabbitmqctlAdmin())
    if args.check == "http":
        return HttpHealthCheck(
            base_url=args.url,
            username=args.username,
            password=args.password,
        )
    return DockerHealthCheck()


def print_report(report: HealthReport, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
        return
    for node, status in report.statuses.items():
        print(f" - {node}: {status.value}")


def cmd_wait(args: argparse.Namespace) -> int:
    """Wait until all nodes are healthy.

    Without explicit nodes the broker services of the Compose stack are checked.
    """
    if args.nodes:
        waiter = HealthWaiter(build_health_check(args))
        pending = waiter.wait_all(
            args.nodes, args.timeout or 120.0, args.interval or 2.0, deadline=args.deadline
        )
    else:
        driver = build_driver(args)
        if args.interval:
            driver.config.wait_interval = args.interval
        if args.timeout:
            driver.config.wait_attempts = max(1, int(args.timeout / driver.config.wait_interval))
        pending = driver.wait(deadline=args.deadline)

    if not args.json:
        print("Waiting for RabbitMQ nodes to be healthy...")
    try:
        report = asyncio.run(pending)
    except PartialTimeoutError as e:
        if e.report is not None:
            print_report(e.report, args.json)
        raise
    print_report(report, args.json)
    logger.info("All nodes are healthy")
    return 0


def register(subparsers: argparse._SubParsersAction) -> None:
    """Add the node commands to the unified CLI."""
    entry = subparsers.add_parser(
        "entrypoint",
        help="Bootstrap this broker node and supervise it",
        description="Start the broker, join the seed if configured, and stay in the foreground.",
    )
    entry.add_argument("--join-host", default=None, help="Seed host to join (env JOIN_CLUSTER_HOST)")
    entry.add_argument("--join-port", type=int, default=None, help="Port probed on the seed")
    entry.add_argument("--hostname", default=None, help="Local hostname override (env HOSTNAME)")
    entry.add_argument("--peer-timeout", type=float, default=None, help="Seconds to wait for the seed")
    entry.add_argument("--bootstrap-record", default=None, help="Shared bootstrap record path")
    entry.add_argument("--status-host", default=os.environ.get("BROKERBOOT_STATUS_HOST", "0.0.0.0"))
    entry.add_argument(
        "--status-port",
        type=int,
        default=os.environ.get("BROKERBOOT_STATUS_PORT") or None,
        help="Serve the status API on this port",
    )
    entry.add_argument(
        "server_command",
        nargs=argparse.REMAINDER,
        help="Broker server command (after --)",
    )
    entry.set_defaults(func=cmd_entrypoint)

    wait = subparsers.add_parser("wait", help="Wait for broker nodes to become healthy")
    wait.add_argument(
        "nodes", nargs="*", help="Containers or node names (default: the stack's broker services)"
    )
    wait.add_argument("--check", choices=["docker", "ping", "http"], default="docker")
    wait.add_argument("--timeout", type=float, default=None, help="Per-node timeout in seconds")
    wait.add_argument("--interval", type=float, default=None, help="Seconds between polls")
    wait.add_argument("--deadline", type=float, default=None, help="Overall limit in seconds")
    wait.add_argument("--url", default="http://{node}:15672", help="Management URL template")
    wait.add_argument("--username", default=os.environ.get("RABBITMQ_DEFAULT_USER", "guest"))
    wait.add_argument("--password", default=os.environ.get("RABBITMQ_DEFAULT_PASS", "guest"))
    wait.add_argument("--json", action="store_true", help="Print the report as JSON")
    add_compose_arguments(wait)
    wait.set_defaults(func=cmd_wait)
