# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the join orchestrator state machine."""

import hashlib
import json
from unittest.mock import AsyncMock, patch

import pytest

from brokerboot.cluster.admin import RabbitmqctlAdmin
from brokerboot.cluster.identity import IdentityResolver
from brokerboot.cluster.orchestrator import (
    BootstrapState,
    InvalidTransitionError,
    JoinFailureReason,
    JoinOrchestrator,
    JoinOutcome,
)
from brokerboot.cluster.prober import PeerProber
from brokerboot.cluster.secret import BootstrapRecord, ClusterSecret
from brokerboot.exceptions import AdminUnavailableError, ConfigError, JoinRejectedError
from brokerboot.utils.process import CommandResult
from tests.fakes import FakeProber, FakeService

SEED = "rabbit@rabbitmq1"
MUTATING = ("stop_app", "start_app", "join_cluster")


def mutating_calls(admin):
    return [c for c in admin.calls if c.split(":")[0] in MUTATING]


def joiner(make_config, admin, service, clock, prober=None, **overrides):
    config = make_config(join_cluster_host="rabbitmq1", **overrides)
    return JoinOrchestrator(
        config,
        admin,
        prober=prober or FakeProber(reachable=True),
        service=service,
        clock=clock,
    )


class TestSeed:
    """Tests for nodes without a join target."""

    @pytest.mark.asyncio
    async def test_seed_reaches_running_without_join(self, make_config, admin, service, clock):
        """A seed starts its service and never joins."""
        config = make_config(hostname="rabbitmq1")
        orchestrator = JoinOrchestrator(config, admin, service=service, clock=clock)

        result = await orchestrator.run()

        assert result.state == BootstrapState.RUNNING
        assert result.history == [
            BootstrapState.INIT,
            BootstrapState.ROLE_DETERMINED,
            BootstrapState.SEED_READY,
            BootstrapState.RUNNING,
        ]
        assert admin.count("join_cluster") == 0
        assert mutating_calls(admin) == []
        assert service.starts == 1
        assert result.app_active is True
        assert result.attempt is None
        assert result.failure_reason is None

    @pytest.mark.asyncio
    async def test_seed_publishes_bootstrap_record(self, make_config, admin, service, clock, cookie, tmp_path):
        """The seed writes its node name and secret fingerprint."""
        record_path = tmp_path / "shared" / "bootstrap.json"
        config = make_config(hostname="rabbitmq1", bootstrap_record=str(record_path))

        await JoinOrchestrator(config, admin, service=service, clock=clock).run()

        data = json.loads(record_path.read_text())
        assert data["node_name"] == SEED
        assert data["secret_fingerprint"] == hashlib.sha256(cookie.read_bytes()).hexdigest()


class TestJoinerPaths:
    """Tests for the joiner branches of the state machine."""

    @pytest.mark.asyncio
    async def test_peer_unreachable_runs_standalone(self, make_config, admin, service, clock):
        """An unreachable seed ends in RUNNING with PEER_UNREACHABLE."""
        orchestrator = joiner(make_config, admin, service, clock, prober=FakeProber(reachable=False))

        result = await orchestrator.run()

        assert result.state == BootstrapState.RUNNING
        assert BootstrapState.JOIN_FAILED in result.history
        assert result.failure_reason == JoinFailureReason.PEER_UNREACHABLE
        assert result.attempt.outcome == JoinOutcome.FAILED_RETRYABLE
        assert result.app_active is True
        assert mutating_calls(admin) == []

    @pytest.mark.asyncio
    async def test_peer_unreachable_with_real_prober_times_out_at_30s(
        self, make_config, admin, service, clock
    ):
        """The prober gives up after the configured 30s of simulated time."""

        async def refuse(host, port):
            raise ConnectionRefusedError()

        prober = PeerProber(clock=clock, connector=refuse)
        orchestrator = joiner(make_config, admin, service, clock, prober=prober)

        result = await orchestrator.run()

        assert result.failure_reason == JoinFailureReason.PEER_UNREACHABLE
        assert 30.0 <= result.elapsed < 31.0
        assert prober.attempts == 31
        assert result.app_active is True

    @pytest.mark.asyncio
    async def test_already_joined_issues_no_mutating_command(self, make_config, admin, service, clock):
        """Restarting a clustered node leaves it alone."""
        admin.members = {SEED, "rabbit@rabbitmq2"}
        orchestrator = joiner(make_config, admin, service, clock)

        result = await orchestrator.run()

        assert result.history[-2:] == [BootstrapState.ALREADY_JOINED, BootstrapState.RUNNING]
        assert mutating_calls(admin) == []
        assert result.attempt.outcome == JoinOutcome.SUCCEEDED
        assert result.attempt.attempts == 0
        assert result.joined is True

    @pytest.mark.asyncio
    async def test_join_issues_commands_in_order(self, make_config, admin, service, clock):
        """stop_app, join_cluster and start_app run in that order."""
        orchestrator = joiner(make_config, admin, service, clock)

        result = await orchestrator.run()

        assert mutating_calls(admin) == ["stop_app", f"join_cluster:{SEED}", "start_app"]
        assert result.history[-3:] == [
            BootstrapState.JOINING,
            BootstrapState.JOINED,
            BootstrapState.RUNNING,
        ]
        assert result.attempt.outcome == JoinOutcome.SUCCEEDED
        assert result.attempt.attempts == 1
        assert result.app_active is True

    @pytest.mark.asyncio
    async def test_membership_checked_after_peer_reachable(self, make_config, admin, service, clock):
        """Membership is never consulted before the peer is reachable."""
        orchestrator = joiner(make_config, admin, service, clock)

        result = await orchestrator.run()

        history = result.history
        assert history.index(BootstrapState.PEER_REACHABLE) < history.index(
            BootstrapState.MEMBERSHIP_CHECKED
        )

    @pytest.mark.asyncio
    async def test_join_rejected_restarts_app(self, make_config, admin, service, clock):
        """A rejected join still restarts the application layer."""
        admin.failures["join_cluster"] = [JoinRejectedError(SEED, returncode=1)]
        orchestrator = joiner(make_config, admin, service, clock)

        result = await orchestrator.run()

        assert mutating_calls(admin) == ["stop_app", f"join_cluster:{SEED}", "start_app"]
        assert result.failure_reason == JoinFailureReason.JOIN_REJECTED
        assert result.attempt.outcome == JoinOutcome.FAILED_RETRYABLE
        assert result.state == BootstrapState.RUNNING
        assert result.app_active is True
        assert admin.app_running is True

    @pytest.mark.asyncio
    async def test_admin_unavailable_is_retried_then_falls_back(self, make_config, admin, service, clock):
        """Membership checks are retried exactly admin_retries times."""
        admin.failures["cluster_status"] = [AdminUnavailableError() for _ in range(3)]
        orchestrator = joiner(make_config, admin, service, clock, admin_retries=3, admin_backoff=2.0)

        result = await orchestrator.run()

        assert admin.count("cluster_status") == 3
        assert clock.sleeps == [2.0, 2.0]
        assert result.failure_reason == JoinFailureReason.ADMIN_UNAVAILABLE
        assert mutating_calls(admin) == []
        assert result.app_active is True

    @pytest.mark.asyncio
    async def test_admin_recovers_within_retries(self, make_config, admin, service, clock):
        """A transient admin outage does not prevent the join."""
        admin.failures["cluster_status"] = [AdminUnavailableError(), AdminUnavailableError()]
        orchestrator = joiner(make_config, admin, service, clock, admin_retries=3)

        result = await orchestrator.run()

        assert BootstrapState.JOINED in result.history
        assert admin.count("join_cluster") == 1

    @pytest.mark.asyncio
    async def test_unavailable_admin_is_not_treated_as_not_joined(self, make_config, admin, service, clock):
        """An unreachable admin interface never triggers a join."""
        admin.members = {SEED}
        admin.failures["cluster_status"] = [AdminUnavailableError() for _ in range(3)]
        orchestrator = joiner(make_config, admin, service, clock, admin_retries=3)

        result = await orchestrator.run()

        assert admin.count("join_cluster") == 0
        assert BootstrapState.MEMBERSHIP_CHECKED not in result.history

    @pytest.mark.asyncio
    async def test_unparseable_membership_never_joins(self, make_config, service, clock):
        """Empty cluster_status output is retried like an outage, not read as 'not joined'."""
        admin = RabbitmqctlAdmin(node="rabbit@rabbitmq2", timeout=5)
        run = AsyncMock(return_value=CommandResult(args=[], returncode=0, stdout="", stderr=""))
        orchestrator = joiner(make_config, admin, service, clock, admin_retries=3)

        with patch("brokerboot.cluster.admin.run_command", run):
            result = await orchestrator.run()

        commands = [c.args[0] for c in run.await_args_list]
        assert sum("cluster_status" in command for command in commands) == 3
        assert not any("join_cluster" in command or "stop_app" in command for command in commands)
        assert result.failure_reason == JoinFailureReason.ADMIN_UNAVAILABLE
        assert BootstrapState.JOINED not in result.history
        assert result.state == BootstrapState.RUNNING

    @pytest.mark.asyncio
    async def test_stop_app_unavailable_still_starts_app(self, make_config, admin, service, clock):
        """When stop_app fails the join is skipped and start_app still runs."""
        admin.failures["stop_app"] = [AdminUnavailableError()]
        orchestrator = joiner(make_config, admin, service, clock)

        result = await orchestrator.run()

        assert mutating_calls(admin) == ["stop_app", "start_app"]
        assert result.failure_reason == JoinFailureReason.ADMIN_UNAVAILABLE
        assert result.app_active is True

    @pytest.mark.asyncio
    async def test_start_app_exhausted_reports_inactive(self, make_config, admin, service, clock):
        """A start_app that never succeeds is reported, not raised."""
        admin.failures["start_app"] = [AdminUnavailableError() for _ in range(6)]
        orchestrator = joiner(make_config, admin, service, clock, admin_retries=3)

        result = await orchestrator.run()

        assert result.state == BootstrapState.RUNNING
        assert result.app_active is False
        assert admin.count("start_app") == 6


class TestSecretGuard:
    """Tests for the cluster secret checks."""

    @pytest.mark.asyncio
    async def test_secret_mismatch_is_fatal_and_never_joins(self, make_config, admin, service, clock):
        """A divergent cookie ends the attempt without any join command."""
        orchestrator = joiner(make_config, admin, service, clock, secret_fingerprint="0" * 64)

        result = await orchestrator.run()

        assert result.failure_reason == JoinFailureReason.SECRET_MISMATCH
        assert result.attempt.outcome == JoinOutcome.FAILED_FATAL
        assert mutating_calls(admin) == []
        assert admin.count("cluster_status") == 0
        assert result.app_active is True

    @pytest.mark.asyncio
    async def test_matching_seed_record_allows_join(self, make_config, admin, service, clock, cookie, tmp_path):
        """A joiner with the seed's cookie proceeds to join."""
        record_path = tmp_path / "bootstrap.json"
        BootstrapRecord(
            node_name=SEED,
            secret_fingerprint=hashlib.sha256(cookie.read_bytes()).hexdigest(),
        ).write(str(record_path))
        orchestrator = joiner(make_config, admin, service, clock, bootstrap_record=str(record_path))

        result = await orchestrator.run()

        assert BootstrapState.JOINED in result.history

    @pytest.mark.asyncio
    async def test_diverging_seed_record_blocks_join(self, make_config, admin, service, clock, tmp_path):
        """A record with another fingerprint is a mismatch."""
        record_path = tmp_path / "bootstrap.json"
        BootstrapRecord(node_name=SEED, secret_fingerprint="f" * 64).write(str(record_path))
        orchestrator = joiner(make_config, admin, service, clock, bootstrap_record=str(record_path))

        result = await orchestrator.run()

        assert result.failure_reason == JoinFailureReason.SECRET_MISMATCH
        assert admin.count("join_cluster") == 0

    @pytest.mark.asyncio
    async def test_permission_failure_does_not_abort(self, make_config, admin, service, clock):
        """chmod failures are logged and bootstrap continues."""
        orchestrator = joiner(make_config, admin, service, clock)

        with patch("brokerboot.cluster.secret.os.chmod", side_effect=PermissionError("read-only mount")):
            result = await orchestrator.run()

        assert result.state == BootstrapState.RUNNING
        assert BootstrapState.JOINED in result.history

    @pytest.mark.asyncio
    async def test_unreadable_secret_runs_standalone(self, make_config, admin, service, clock):
        """A cookie that cannot be read is unverifiable and blocks the join."""
        orchestrator = joiner(make_config, admin, service, clock, secret_fingerprint="0" * 64)
        denied = PermissionError(13, "Permission denied")

        with patch("brokerboot.cluster.secret.os.chmod", side_effect=PermissionError("read-only mount")), \
                patch.object(ClusterSecret, "read", side_effect=denied):
            result = await orchestrator.run()

        assert result.state == BootstrapState.RUNNING
        assert result.failure_reason == JoinFailureReason.SECRET_MISMATCH
        assert result.attempt.outcome == JoinOutcome.FAILED_FATAL
        assert mutating_calls(admin) == []
        assert service.is_running

    @pytest.mark.asyncio
    async def test_unreadable_secret_on_seed_skips_record(self, make_config, admin, service, clock, tmp_path):
        """The seed still runs when its cookie cannot be fingerprinted."""
        record_path = tmp_path / "bootstrap.json"
        config = make_config(hostname="rabbitmq1", bootstrap_record=str(record_path))

        with patch.object(ClusterSecret, "read", side_effect=PermissionError(13, "Permission denied")):
            result = await JoinOrchestrator(config, admin, service=service, clock=clock).run()

        assert result.state == BootstrapState.RUNNING
        assert result.failure_reason is None
        assert not record_path.exists()
        assert service.starts == 1


class TestOrchestratorLifecycle:
    """Tests for config errors and the local service."""

    @pytest.mark.asyncio
    async def test_config_error_propagates_before_service_start(self, make_config, admin, service, clock):
        """No hostname means no identity and no started service."""

        def broken_lookup():
            raise OSError("no hostname")

        config = make_config(hostname="")
        orchestrator = JoinOrchestrator(
            config,
            admin,
            service=service,
            clock=clock,
            resolver=IdentityResolver(config, hostname_lookup=broken_lookup),
        )

        with pytest.raises(ConfigError):
            await orchestrator.run()

        assert service.starts == 0
        assert orchestrator.state == BootstrapState.INIT

    @pytest.mark.asyncio
    async def test_exited_service_is_restarted_before_running(self, make_config, admin, clock):
        """The terminal state always has the server process alive."""
        service = FakeService(running_after_start=False)
        orchestrator = joiner(make_config, admin, service, clock, prober=FakeProber(reachable=False))

        result = await orchestrator.run()

        assert service.ensure_calls == 1
        assert service.is_running is True
        assert result.app_active is True

    @pytest.mark.asyncio
    async def test_boot_wait_failure_continues(self, make_config, admin, service, clock):
        """A failed boot wait is logged; membership checks retry instead."""
        admin.failures["wait_booted"] = [AdminUnavailableError()]
        orchestrator = joiner(make_config, admin, service, clock)

        result = await orchestrator.run()

        assert BootstrapState.JOINED in result.history

    def test_invalid_transition_rejected(self, make_config, admin):
        """Transitions outside the state machine raise."""
        orchestrator = JoinOrchestrator(make_config(), admin)

        with pytest.raises(InvalidTransitionError):
            orchestrator._transition(BootstrapState.JOINED)

    @pytest.mark.asyncio
    async def test_result_serializes(self, make_config, admin, service, clock):
        """BootstrapResult.to_dict carries the path taken."""
        result = await joiner(make_config, admin, service, clock).run()

        data = result.to_dict()
        assert data["state"] == "running"
        assert data["identity"]["role"] == "joiner"
        assert data["identity"]["join_target"] == SEED
        assert data["attempt"]["outcome"] == "succeeded"
        assert data["failure_reason"] is None
