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
Proxy commands.

Usage:
    brokerboot nginx-config --domain queue.example.com [--cert-dir DIR] [--no-reload]
    brokerboot haproxy-config rabbitmq1 rabbitmq2 --output haproxy.cfg
    sudo brokerboot certbot --domain queue.example.com --email admin@example.com
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from brokerboot.cluster.prober import parse_address
from brokerboot.config import ProxyConfig
from brokerboot.exceptions import CertificateError, ConfigError
from brokerboot.proxy.certbot import CertbotManager, always_yes
from brokerboot.proxy.haproxy import HaproxyConfig, render_haproxy_config, write_haproxy_config
from brokerboot.proxy.nginx import NginxConfigurator, render_stream_config


def build_proxy_config(args: argparse.Namespace) -> ProxyConfig:
    try:
        backend_host, backend_port = parse_address(args.backend, default_port=5672)
    except ValueError as e:
        raise ConfigError(f"Invalid backend: {e}")
    return ProxyConfig(
        domain=args.domain or "",
        listen_port=args.listen_port,
        backend_host=backend_host,
        backend_port=backend_port,
        cert_dir=args.cert_dir or "",
        output_path=args.output,
        nginx_binary=args.nginx,
    )


def cmd_nginx_config(args: argparse.Namespace) -> int:
    """Generate, validate and apply the Nginx stream config."""
    config = build_proxy_config(args)
    if args.print_only:
        sys.stdout.write(render_stream_config(config))
        return 0

    result = asyncio.run(NginxConfigurator(config).apply(reload=not args.no_reload))
    state = "reloaded" if result.reloaded else "validated"
    print(f"Nginx stream config {state}: {result.path}")
    return 0


def cmd_haproxy_config(args: argparse.Namespace) -> int:
    """Generate the HAProxy config for a static backend list."""
    config = HaproxyConfig(
        backends=args.backends,
        amqp_port=args.amqp_port,
        management_port=args.management_port,
    )
    if args.print_only:
        sys.stdout.write(render_haproxy_config(config))
        return 0
    write_haproxy_config(config, args.output)
    print(f"HAProxy config written: {args.output}")
    return 0


def prompt_value(label: str) -> str:
    if not sys.stdin.isatty():
        return ""
    return input(f"{label}: ").strip()


def confirm_prompt(prompt: str) -> bool:
    while True:
        answer = input(f"{prompt} [y/N]: ").strip().lower()
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no", ""):
            return False
        print("Please answer y or n.")


def cmd_certbot(args: argparse.Namespace) -> int:
    """Verify DNS, install Nginx and Certbot, and obtain a certificate."""
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        raise CertificateError("This command must be run as root")

    domain = args.domain or prompt_value("Enter your domain (e.g., queue.example.com)")
    email = args.email or prompt_value("Enter your email for Let's Encrypt notifications")
    confirm = always_yes if args.yes else confirm_prompt

    manager = CertbotManager(domain, email, confirm=confirm, live_dir=args.live_dir)
    fullchain, privkey = asyncio.run(manager.run(install=not args.skip_install))

    print("Certificate obtained successfully.")
    print(f"Fullchain: {fullchain}")
    print(f"Privkey  : {privkey}")
    print("\nNext: generate the Nginx stream config with:")
    print(f"  brokerboot nginx-config --domain {domain} --cert-dir {manager.cert_dir}")
    return 0


def register(subparsers: argparse._SubParsersAction) -> None:
    """Add the proxy commands to the unified CLI."""
    nginx = subparsers.add_parser("nginx-config", help="Generate and apply the Nginx stream config")
    nginx.add_argument("--domain", default=os.environ.get("DOMAIN"), help="Public domain (env DOMAIN)")
    nginx.add_argument("--cert-dir", default=os.environ.get("CERT_DIR"), help="Certificate directory")
    nginx.add_argument("--listen-port", type=int, default=5671)
    nginx.add_argument("--backend", default="127.0.0.1:5672", help="Load balancer host:port")
    nginx.add_argument("--output", default="/etc/nginx/stream.d/rabbitmq.conf")
    nginx.add_argument("--nginx", default="nginx", help="Nginx executable")
    nginx.add_argument("--no-reload", action="store_true", help="Validate without reloading")
    nginx.add_argument("--print", dest="print_only", action="store_true", help="Only print the config")
    nginx.set_defaults(func=cmd_nginx_config)

    haproxy = subparsers.add_parser("haproxy-config", help="Generate the HAProxy config")
    haproxy.add_argument("backends", nargs="*", default=["rabbitmq1", "rabbitmq2"])
    haproxy.add_argument("--output", default="haproxy.cfg")
    haproxy.add_argument("--amqp-port", type=int, default=5672)
    haproxy.add_argument("--management-port", type=int, default=15672)
    haproxy.add_argument("--print", dest="print_only", action="store_true", help="Only print the config")
    haproxy.set_defaults(func=cmd_haproxy_config)

    certbot = subparsers.add_parser("certbot", help="Obtain a Let's Encrypt certificate")
    certbot.add_argument("--domain", default=os.environ.get("DOMAIN"))
    certbot.add_argument("--email", default=os.environ.get("EMAIL"))
    certbot.add_argument("--live-dir", default="/etc/letsencrypt/live")
    certbot.add_argument("--skip-install", action="store_true", help="Do not install Nginx or Certbot")
    certbot.add_argument("-y", "--yes", action="store_true", help="Answer yes to every confirmation")
    certbot.set_defaults(func=cmd_certbot)
