# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for brokerboot tests."""

import pytest

from brokerboot.cluster.policy import ManualClock
from brokerboot.config import BootstrapConfig
from tests.fakes import FakeService, RecordingAdmin


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def admin():
    return RecordingAdmin()


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def cookie(tmp_path):
    path = tmp_path / ".erlang.cookie"
    path.write_text("SHAREDSECRETCOOKIE")
    return path


@pytest.fixture
def make_config(tmp_path, cookie):
    """Build a BootstrapConfig rooted in the test's temp directory."""

    def factory(**overrides) -> BootstrapConfig:
        values = dict(
            hostname="rabbitmq2",
            cookie_file=str(cookie),
            mnesia_dir=str(tmp_path / "mnesia"),
            peer_timeout=30.0,
            poll_interval=1.0,
            admin_retries=3,
            admin_backoff=2.0,
        )
        values.update(overrides)
        return BootstrapConfig(**values)

    return factory
