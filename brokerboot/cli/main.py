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
brokerboot Unified CLI.

Usage:
    brokerboot entrypoint [OPTIONS] [-- SERVER_COMMAND]   # Container entrypoint
    brokerboot wait [NODES...]                            # Wait for healthy nodes
    brokerboot nginx-config --domain DOMAIN               # TLS stream proxy config
    brokerboot haproxy-config [BACKENDS...]               # Load balancer config
    brokerboot certbot --domain DOMAIN --email EMAIL      # Obtain a certificate
    brokerboot deploy|up|down|restart|status|logs|tail|init-env|clean
    brokerboot version                                    # Show version information
"""

from __future__ import annotations

import argparse
import json
import os
import platform
import sys
from typing import List, Optional

from brokerboot import __version__
from brokerboot.cli import deploy, entrypoint, proxy
from brokerboot.exceptions import BrokerBootError
from brokerboot.utils.logger import configure_logging


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    if args.json:
        info = {
            "brokerboot": __version__,
            "python": platform.python_version(),
            "platform": platform.system(),
            "architecture": platform.machine(),
        }
        print(json.dumps(info, indent=2))
    else:
        print(f"brokerboot {__version__}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="brokerboot",
        description="brokerboot - RabbitMQ cluster bootstrap and deployment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  brokerboot entrypoint                          # Seed node
  JOIN_CLUSTER_HOST=rabbitmq1 brokerboot entrypoint
  brokerboot deploy                              # Start the stack and wait for health
  brokerboot wait rabbitmq1 rabbitmq2 --check ping
""",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("BROKERBOOT_LOG_LEVEL", "INFO").upper(),
        help="Set logging level (default: INFO)",
    )
    parser.add_argument(
        "--human-readable", "--human",
        action="store_true",
        default=os.environ.get("BROKERBOOT_LOG_FORMAT", "json").lower() == "human",
        help="Use human-readable log format instead of JSON",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.add_argument("--json", action="store_true", help="Output as JSON")
    version_parser.set_defaults(func=cmd_version)

    entrypoint.register(subparsers)
    proxy.register(subparsers)
    deploy.register(subparsers)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the unified CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, human_readable=args.human_readable)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except BrokerBootError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        output = getattr(e, "output", "")
        if output:
            print(output, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
