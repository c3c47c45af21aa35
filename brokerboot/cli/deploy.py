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
Stack commands driving Docker Compose.

Usage:
    brokerboot deploy     # Create .env if missing, start stack, wait for health, show status
    brokerboot up         # Start in background
    brokerboot down       # Stop and remove containers (volumes kept)
    brokerboot restart    # Restart services
    brokerboot status     # Show compose status
    brokerboot logs       # Show recent logs
    brokerboot tail       # Follow logs
    brokerboot init-env   # Create .env from sample.env if missing
    brokerboot clean      # Stop stack and remove named volumes
"""

from __future__ import annotations

import argparse
import asyncio

from brokerboot.config import ComposeConfig
from brokerboot.deploy.compose import ComposeDriver
from brokerboot.utils.logger import logger


def build_driver(args: argparse.Namespace) -> ComposeDriver:
    config = ComposeConfig.from_env()
    if args.compose_file:
        config.compose_file = args.compose_file
    if args.docker_compose:
        config.docker_compose = args.docker_compose.split()
    return ComposeDriver(config)


def cmd_deploy(args: argparse.Namespace) -> int:
    driver = build_driver(args)

    async def run() -> str:
        await driver.deploy()
        return await driver.status()

    print(asyncio.run(run()), end="")
    print("Deployment completed successfully.")
    return 0


def cmd_up(args: argparse.Namespace) -> int:
    asyncio.run(build_driver(args).up())
    return 0


def cmd_down(args: argparse.Namespace) -> int:
    asyncio.run(build_driver(args).down())
    return 0


def cmd_restart(args: argparse.Namespace) -> int:
    asyncio.run(build_driver(args).restart())
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    print(asyncio.run(build_driver(args).status()), end="")
    return 0


def cmd_logs(args: argparse.Namespace) -> int:
    print(asyncio.run(build_driver(args).logs(tail=args.tail)), end="")
    return 0


def cmd_tail(args: argparse.Namespace) -> int:
    try:
        asyncio.run(build_driver(args).follow_logs())
    except KeyboardInterrupt:
        pass
    return 0


def cmd_init_env(args: argparse.Namespace) -> int:
    build_driver(args).init_env()
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    logger.warning("Removing named volumes deletes persisted broker data")
    removed = asyncio.run(build_driver(args).clean())
    for volume in removed:
        print(f"Removed volume {volume}")
    print("Cleanup complete.")
    return 0


COMMANDS = [
    ("deploy", cmd_deploy, "Ensure .env exists, start the stack, wait for health, show status"),
    ("up", cmd_up, "Start services in the background"),
    ("down", cmd_down, "Stop and remove containers (keeps volumes)"),
    ("restart", cmd_restart, "Restart services"),
    ("status", cmd_status, "Show 'docker compose ps' output"),
    ("logs", cmd_logs, "Show recent logs of all services"),
    ("tail", cmd_tail, "Follow logs of all services"),
    ("init-env", cmd_init_env, "Create .env from sample.env if it does not exist"),
    ("clean", cmd_clean, "Down the stack and remove named volumes"),
]


def register(subparsers: argparse._SubParsersAction) -> None:
    """Add the stack commands to the unified CLI."""
    common = argparse.ArgumentParser(add_help=False)
    add_compose_arguments(common)

    for name, func, help_text in COMMANDS:
        aliases = ["ps"] if name == "status" else []
        parser = subparsers.add_parser(name, parents=[common], aliases=aliases, help=help_text)
        if name == "logs":
            parser.add_argument("--tail", type=int, default=100, help="Lines per service")
        parser.set_defaults(func=func)


def add_compose_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-f", "--compose-file", default=None, help="Compose file (env COMPOSE_FILE)")
    parser.add_argument(
        "--docker-compose",
        default=None,
        help="Compose command, e.g. 'docker compose' (env DOCKER_COMPOSE)",
    )
