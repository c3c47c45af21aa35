# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Tests for the Docker Compose driver against a scripted docker CLI."""

import asyncio
import os
import stat
from unittest.mock import AsyncMock

import pytest

from brokerboot.cluster.health import HealthStatus
from brokerboot.config import ComposeConfig
from brokerboot.deploy.compose import ComposeDriver
from brokerboot.exceptions import ComposeError, PartialTimeoutError

DOCKER_SCRIPT = """\
#!/bin/sh
echo "$*" >> "{state}/calls"
case "$*" in
    *"ps -q rabbitmq1") echo c0ffee01 ;;
    *"ps -q rabbitmq2") echo c0ffee02 ;;
    *"ps -q "*) ;;
    *" ps") printf 'NAME STATUS\\nrabbitmq1 running\\n' ;;
    *" logs --tail="*) echo "rabbitmq1 | started" ;;
    *" up -d") exit $(cat "{state}/up_code") ;;
    "inspect "*c0ffee01) echo '"healthy"' ;;
    "inspect "*c0ffee02) echo "\\"$(cat "{state}/rabbitmq2")\\"" ;;
    "volume rm rabbitmq1-data") echo rabbitmq1-data ;;
    "volume rm "*) echo "Error: no such volume" >&2; exit 1 ;;
esac
exit 0
"""


class FakeDocker:
    def __init__(self, directory):
        self.directory = directory
        self.path = directory / "docker"
        self.path.write_text(DOCKER_SCRIPT.format(state=directory))
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR)
        self.set(up_code=0, rabbitmq2="healthy")

    def set(self, **values):
        for name, value in values.items():
            (self.directory / name).write_text(str(value))

    @property
    def calls(self):
        path = self.directory / "calls"
        return path.read_text().splitlines() if path.exists() else []


@pytest.fixture
def docker(tmp_path, monkeypatch):
    directory = tmp_path / "bin"
    directory.mkdir()
    fake = FakeDocker(directory)
    monkeypatch.setenv("PATH", f"{directory}{os.pathsep}{os.environ.get('PATH', '')}")
    return fake


@pytest.fixture
def compose_config(tmp_path, docker):
    return ComposeConfig(
        compose_file="stack.yml",
        env_file=str(tmp_path / ".env"),
        sample_env_file=str(tmp_path / "sample.env"),
        wait_attempts=20,
        wait_interval=0.05,
    )


class TestComposeCommands:
    """Tests for attached and captured compose commands."""

    def test_command(self):
        driver = ComposeDriver(ComposeConfig())

        assert driver.command("up", "-d") == [
            "docker", "compose", "-f", "docker-compose.yml", "up", "-d",
        ]

    @pytest.mark.asyncio
    async def test_up(self, compose_config, docker):
        await ComposeDriver(compose_config).up()

        assert docker.calls == ["compose -f stack.yml up -d"]

    @pytest.mark.asyncio
    async def test_up_failure(self, compose_config, docker):
        docker.set(up_code=3)

        with pytest.raises(ComposeError) as exc_info:
            await ComposeDriver(compose_config).up()

        assert exc_info.value.returncode == 3
        assert exc_info.value.command[-2:] == ["up", "-d"]

    @pytest.mark.asyncio
    async def test_missing_compose(self, compose_config, tmp_path):
        compose_config.docker_compose = [str(tmp_path / "no-such-docker"), "compose"]

        with pytest.raises(ComposeError, match="not found"):
            await ComposeDriver(compose_config).status()

    @pytest.mark.asyncio
    async def test_status_and_logs(self, compose_config, docker):
        driver = ComposeDriver(compose_config)

        assert "rabbitmq1 running" in await driver.status()
        assert await driver.logs(tail=5) == "rabbitmq1 | started\n"
        assert docker.calls[-1] == "compose -f stack.yml logs --tail=5"

    @pytest.mark.asyncio
    async def test_container_id(self, compose_config):
        driver = ComposeDriver(compose_config)

        assert await driver.container_id("rabbitmq1") == "c0ffee01"
        assert await driver.container_id("ghost") is None


class TestComposeWait:
    """Tests for ComposeDriver.wait."""

    @pytest.mark.asyncio
    async def test_all_healthy(self, compose_config):
        report = await ComposeDriver(compose_config).wait()

        assert report.healthy
        assert list(report.statuses) == ["rabbitmq1", "rabbitmq2"]

    @pytest.mark.asyncio
    async def test_names_unhealthy_service(self, compose_config, docker):
        docker.set(rabbitmq2="starting")

        with pytest.raises(PartialTimeoutError) as exc_info:
            await ComposeDriver(compose_config).wait()

        assert exc_info.value.timed_out == ["rabbitmq2"]
        assert exc_info.value.report.statuses["rabbitmq1"] == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_service_without_container(self, compose_config):
        compose_config.broker_services = ["rabbitmq1", "ghost"]

        with pytest.raises(PartialTimeoutError) as exc_info:
            await ComposeDriver(compose_config).wait()

        assert exc_info.value.timed_out == ["ghost"]


class TestComposeEnvironment:
    """Tests for init_env, clean and deploy."""

    def test_init_env(self, compose_config, tmp_path):
        (tmp_path / "sample.env").write_text("RABBITMQ_DEFAULT_PASS=changeme\n")
        driver = ComposeDriver(compose_config)

        assert driver.init_env() is True
        assert (tmp_path / ".env").read_text() == "RABBITMQ_DEFAULT_PASS=changeme\n"

        (tmp_path / ".env").write_text("RABBITMQ_DEFAULT_PASS=secret\n")
        assert driver.init_env() is False
        assert (tmp_path / ".env").read_text() == "RABBITMQ_DEFAULT_PASS=secret\n"

    def test_init_env_without_sample(self, compose_config):
        with pytest.raises(ComposeError, match="sample.env not found"):
            ComposeDriver(compose_config).init_env()

    @pytest.mark.asyncio
    async def test_clean(self, compose_config, docker):
        removed = await ComposeDriver(compose_config).clean()

        assert removed == ["rabbitmq1-data"]
        assert docker.calls == [
            "compose -f stack.yml down",
            "volume rm rabbitmq1-data",
            "volume rm rabbitmq2-data",
        ]

    @pytest.mark.asyncio
    async def test_deploy(self, compose_config, docker, tmp_path):
        (tmp_path / "sample.env").write_text("")

        report = await ComposeDriver(compose_config).deploy()

        assert report.healthy
        assert (tmp_path / ".env").exists()
        assert docker.calls[0] == "compose -f stack.yml up -d"

    @pytest.mark.asyncio
    async def test_clean_volume_timeout(self, compose_config, monkeypatch):
        driver = ComposeDriver(compose_config)
        driver.down = AsyncMock()
        monkeypatch.setattr(
            "brokerboot.deploy.compose.run_command", AsyncMock(side_effect=asyncio.TimeoutError())
        )

        with pytest.raises(ComposeError, match="timed out") as exc_info:
            await driver.clean()

        assert exc_info.value.command == ["docker", "volume", "rm", "rabbitmq1-data"]
