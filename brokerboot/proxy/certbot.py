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
Let's Encrypt certificate acquisition for the TLS proxy.

Flow:
1. DNS verification: the domain must resolve to this host's public IP for
   the HTTP-01 challenge to succeed.
2. Prerequisites: Nginx and Certbot are installed with the distro's
   package manager (snap preferred for Certbot) when missing.
3. Certificate: ``certbot certonly --standalone`` with Nginx stopped so
   port 80 is free, then Nginx is started again.
4. The resulting ``fullchain.pem`` and ``privkey.pem`` must be readable.

Each step that changes the host is gated by a confirmation callback.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp
import dns.asyncresolver
import dns.exception

from brokerboot.exceptions import CertificateError
from brokerboot.utils.logger import logger
from brokerboot.utils.process import CommandResult, run_command

LIVE_DIR = "/etc/letsencrypt/live"
PUBLIC_IP_SERVICES = ("https://api.ipify.org", "https://ifconfig.me/ip")

Confirm = Callable[[str], bool]


class OsFamily(str, Enum):
    """Package manager family of the host."""
    DEBIAN = "deb"
    RHEL = "rhel"
    UNKNOWN = "unknown"


DEBIAN_IDS = ("debian", "ubuntu")
RHEL_IDS = ("rhel", "fedora", "centos", "rocky", "almalinux")


def parse_os_release(content: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def detect_os_family(os_release: str = "/etc/os-release") -> OsFamily:
    """Classify the host by ``ID_LIKE`` (or ``ID``) from os-release."""
    try:
        with open(os_release) as f:
            values = parse_os_release(f.read())
    except OSError:
        return OsFamily.UNKNOWN

    ids = (values.get("ID_LIKE") or values.get("ID") or "").lower()
    if any(i in ids for i in DEBIAN_IDS):
        return OsFamily.DEBIAN
    if any(i in ids for i in RHEL_IDS):
        return OsFamily.RHEL
    return OsFamily.UNKNOWN


@dataclass
class DnsCheck:
    """Result of checking the domain against this host's public IP."""
    domain: str
    addresses: List[str] = field(default_factory=list)
    public_ip: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return bool(self.addresses)

    @property
    def matches(self) -> bool:
        return self.public_ip is not None and self.public_ip in self.addresses


async def resolve_domain(domain: str, lifetime: float = 10.0) -> List[str]:
    """Resolve A records, then AAAA records if there are none."""
    for rdtype in ("A", "AAAA"):
        try:
            answer = await dns.asyncresolver.resolve(domain, rdtype, lifetime=lifetime)
        except dns.exception.DNSException as e:
            logger.debug(f"{rdtype} lookup for {domain} failed: {e}")
            continue
        addresses = [rdata.to_text() for rdata in answer]
        if addresses:
            return addresses
    return []


async def lookup_public_ip(
    services: Sequence[str] = PUBLIC_IP_SERVICES, timeout: float = 10.0
) -> Optional[str]:
    """Ask public echo services for this host's IP."""
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        for url in services:
            try:
                async with session.get(url) as response:
                    if response.status == 200:
                        return (await response.text()).strip()
                    logger.debug(f"{url} returned {response.status}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"{url} failed: {e}")
    return None


def install_commands(package: str, family: OsFamily, has_dnf: bool = True) -> List[List[str]]:
    """Package manager commands that install ``package``."""
    if family == OsFamily.DEBIAN:
        return [
            ["apt-get", "update", "-y"],
            ["apt-get", "install", "-y", package],
        ]
    if family == OsFamily.RHEL:
        return [["dnf" if has_dnf else "yum", "install", "-y", package]]
    raise CertificateError(f"Unsupported OS; install '{package}' manually and re-run")


def always_yes(prompt: str) -> bool:
    return True


class CertbotManager:
    """Obtains a certificate for the proxy domain.

    Example:
        >>> manager = CertbotManager("queue.example.com", "admin@example.com")
        >>> fullchain, privkey = await manager.run()
    """

    def __init__(
        self,
        domain: str,
        email: str,
        confirm: Confirm = always_yes,
        live_dir: str = LIVE_DIR,
        certbot: str = "certbot",
        os_release: str = "/etc/os-release",
        timeout: float = 600.0,
    ) -> None:
        if not domain or not email:
            raise CertificateError("Domain and email are required")
        self.domain = domain
        self.email = email
        self.confirm = confirm
        self.live_dir = live_dir
        self.certbot = certbot
        self.os_release = os_release
        self.timeout = timeout

    @property
    def cert_dir(self) -> str:
        return os.path.join(self.live_dir, self.domain)

    @property
    def fullchain_path(self) -> str:
        return os.path.join(self.cert_dir, "fullchain.pem")

    @property
    def privkey_path(self) -> str:
        return os.path.join(self.cert_dir, "privkey.pem")

    def certonly_command(self) -> List[str]:
        return [
            self.certbot, "certonly", "--standalone",
            "-d", self.domain,
            "-m", self.email,
            "--agree-tos", "--no-eff-email",
            "--preferred-challenges", "http",
        ]

    async def _run(self, command: Sequence[str], check: bool = True) -> CommandResult:
        logger.info(f"Running: {' '.join(command)}")
        try:
            result = await run_command(command, timeout=self.timeout)
        except FileNotFoundError:
            raise CertificateError(f"Command not found: {command[0]}")
        except asyncio.TimeoutError:
            raise CertificateError(f"'{' '.join(command)}' timed out")
        if check and not result.ok:
            raise CertificateError(
                f"'{' '.join(command)}' failed ({result.returncode}): {result.output}"
            )
        return result

    # ==================== Steps ====================

    async def verify_dns(self) -> DnsCheck:
        check = DnsCheck(
            domain=self.domain,
            addresses=await resolve_domain(self.domain),
            public_ip=await lookup_public_ip(),
        )
        logger.info(
            f"{self.domain} resolves to {', '.join(check.addresses) or 'nothing'}; "
            f"public IP is {check.public_ip or 'unknown'}"
        )
        if not check.matches:
            logger.warning(
                "For HTTP-01 validation the domain must resolve to this server's "
                "public IP and port 80 must be reachable"
            )
        return check

    async def ensure_installed(self, binary: str, package: str, snap: bool = False) -> bool:
        """Install ``package`` unless ``binary`` is on PATH.

        Returns:
            True if something was installed
        """
        if shutil.which(binary):
            logger.info(f"{binary} already installed")
            return False

        logger.info(f"Installing {package}")
        if snap and shutil.which("snap"):
            await self._run(["snap", "install", "core"], check=False)
            await self._run(["snap", "refresh", "core"], check=False)
            await self._run(["snap", "install", "--classic", package])
            if not os.path.exists("/usr/bin/certbot"):
                try:
                    os.symlink("/snap/bin/certbot", "/usr/bin/certbot")
                except OSError as e:
                    logger.warning(f"Could not link certbot into /usr/bin: {e}")
            return True

        family = detect_os_family(self.os_release)
        for command in install_commands(package, family, has_dnf=bool(shutil.which("dnf"))):
            await self._run(command)
        return True

    async def _nginx_running(self) -> bool:
        try:
            result = await run_command(["pgrep", "-x", "nginx"], timeout=10)
        except FileNotFoundError:
            return False
        return result.ok

    async def _service_nginx(self, action: str) -> None:
        for command in (["systemctl", action, "nginx"], ["service", "nginx", action]):
            try:
                result = await run_command(command, timeout=60)
            except FileNotFoundError:
                continue
            if result.ok:
                return
        if action == "start":
            await self._run(["nginx"], check=False)

    async def obtain(self) -> None:
        """Run the standalone HTTP-01 challenge with port 80 freed."""
        stopped = False
        if await self._nginx_running():
            logger.info("Stopping Nginx to free port 80 for the standalone challenge")
            await self._service_nginx("stop")
            stopped = True
        try:
            await self._run(self.certonly_command())
        finally:
            if stopped:
                logger.info("Starting Nginx again")
                await self._service_nginx("start")

    def check_certificates(self) -> None:
        for path in (self.fullchain_path, self.privkey_path):
            if not os.access(path, os.R_OK):
                raise CertificateError(f"Certificate file not readable: {path}")

    # ==================== Full flow ====================

    async def run(self, install: bool = True) -> Tuple[str, str]:
        """Verify DNS, install prerequisites and obtain the certificate.

        Returns:
            (fullchain path, privkey path)

        Raises:
            CertificateError: On any failed step or declined confirmation
        """
        await self.verify_dns()
        if not self.confirm(f"Is the DNS configured correctly for {self.domain} and propagated?"):
            raise CertificateError("Aborted: configure DNS and try again")

        if install:
            if not self.confirm("Install or ensure Nginx and Certbot are present?"):
                raise CertificateError("Aborted before installing prerequisites")
            await self.ensure_installed("nginx", "nginx")
            await self.ensure_installed("certbot", "certbot", snap=True)

        if not self.confirm(f"Request a certificate for {self.domain} via HTTP-01 challenge?"):
            raise CertificateError("Aborted before requesting the certificate")
        await self.obtain()

        self.check_certificates()
        logger.info(f"Certificate obtained: {self.fullchain_path}")
        return self.fullchain_path, self.privkey_path
