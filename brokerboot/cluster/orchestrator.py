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
Join Orchestrator for broker cluster bootstrap.

Runs once per node process at container start and sequences:

    INIT -> ROLE_DETERMINED
        seed:   -> SEED_READY -> RUNNING
        joiner: -> AWAITING_PEER -> PEER_REACHABLE -> MEMBERSHIP_CHECKED
                   -> ALREADY_JOINED -> RUNNING
                   -> JOINING -> JOINED -> RUNNING
                   -> (any failure) JOIN_FAILED -> RUNNING

Every clustering failure degrades to a standalone node: the terminal RUNNING
state always has the local broker process alive and its application layer
started. Only a ConfigError (no identity) halts startup.

Idempotency: a node that already lists the seed as a member never issues
stop_app or join_cluster again, so restarting a container is safe.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from brokerboot.cluster.admin import BrokerAdmin
from brokerboot.cluster.identity import IdentityResolver, NodeIdentity
from brokerboot.cluster.membership import MembershipClient
from brokerboot.cluster.policy import Clock, RetryHandler, RetryPolicy
from brokerboot.cluster.prober import PeerProber
from brokerboot.cluster.secret import BootstrapRecord, ClusterSecret
from brokerboot.cluster.supervisor import LocalServiceSupervisor
from brokerboot.config import BootstrapConfig
from brokerboot.exceptions import (
    AdminUnavailableError,
    JoinRejectedError,
    PeerUnreachableError,
    SecretMismatchError,
)
from brokerboot.utils.logger import logger


class BootstrapState(str, Enum):
    """States of the bootstrap state machine."""
    INIT = "init"
    ROLE_DETERMINED = "role_determined"
    SEED_READY = "seed_ready"
    AWAITING_PEER = "awaiting_peer"
    PEER_REACHABLE = "peer_reachable"
    MEMBERSHIP_CHECKED = "membership_checked"
    ALREADY_JOINED = "already_joined"
    JOINING = "joining"
    JOINED = "joined"
    JOIN_FAILED = "join_failed"
    RUNNING = "running"


ALLOWED_TRANSITIONS: Dict[BootstrapState, frozenset] = {
    BootstrapState.INIT: frozenset({BootstrapState.ROLE_DETERMINED}),
    BootstrapState.ROLE_DETERMINED: frozenset({
        BootstrapState.SEED_READY,
        BootstrapState.AWAITING_PEER,
    }),
    BootstrapState.SEED_READY: frozenset({BootstrapState.RUNNING}),
    BootstrapState.AWAITING_PEER: frozenset({
        BootstrapState.PEER_REACHABLE,
        BootstrapState.JOIN_FAILED,
    }),
    BootstrapState.PEER_REACHABLE: frozenset({
        BootstrapState.MEMBERSHIP_CHECKED,
        BootstrapState.JOIN_FAILED,
    }),
    BootstrapState.MEMBERSHIP_CHECKED: frozenset({
        BootstrapState.ALREADY_JOINED,
        BootstrapState.JOINING,
    }),
    BootstrapState.ALREADY_JOINED: frozenset({BootstrapState.RUNNING}),
    BootstrapState.JOINING: frozenset({BootstrapState.JOINED, BootstrapState.JOIN_FAILED}),
    BootstrapState.JOINED: frozenset({BootstrapState.RUNNING}),
    BootstrapState.JOIN_FAILED: frozenset({BootstrapState.RUNNING}),
    BootstrapState.RUNNING: frozenset(),
}


class JoinOutcome(str, Enum):
    """Outcome of a join attempt."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FATAL = "failed_fatal"


class JoinFailureReason(str, Enum):
    """Why a joiner ended up standalone."""
    PEER_UNREACHABLE = "peer_unreachable"
    ADMIN_UNAVAILABLE = "admin_unavailable"
    JOIN_REJECTED = "join_rejected"
    SECRET_MISMATCH = "secret_mismatch"


# A secret mismatch needs an operator to fix the deployment; the rest may
# succeed on a later restart without any change.
FAILURE_OUTCOMES: Dict[JoinFailureReason, JoinOutcome] = {
    JoinFailureReason.PEER_UNREACHABLE: JoinOutcome.FAILED_RETRYABLE,
    JoinFailureReason.ADMIN_UNAVAILABLE: JoinOutcome.FAILED_RETRYABLE,
    JoinFailureReason.JOIN_REJECTED: JoinOutcome.FAILED_RETRYABLE,
    JoinFailureReason.SECRET_MISMATCH: JoinOutcome.FAILED_FATAL,
}


class InvalidTransitionError(RuntimeError):
    """Raised on a state change the bootstrap state machine does not allow."""
    pass


@dataclass
class JoinAttempt:
    """One attempt to join a peer, owned by the orchestrator.

    Attributes:
        peer_node: Node name of the seed
        peer_address: Address probed for reachability
        started_at: Wall-clock start time
        outcome: Current outcome
        attempts: Join commands issued
        reason: Failure reason once failed
        error: Message of the error that ended the attempt
    """
    peer_node: str
    peer_address: str
    started_at: float = field(default_factory=time.time)
    outcome: JoinOutcome = JoinOutcome.PENDING
    attempts: int = 0
    reason: Optional[JoinFailureReason] = None
    error: Optional[str] = None

    def succeed(self) -> None:
        self.outcome = JoinOutcome.SUCCEEDED

    def fail(self, reason: JoinFailureReason, error: Optional[BaseException] = None) -> None:
        self.outcome = FAILURE_OUTCOMES[reason]
        self.reason = reason
        self.error = str(error) if error else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "peer_node": self.peer_node,
            "peer_address": self.peer_address,
            "started_at": self.started_at,
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "reason": self.reason.value if self.reason else None,
            "error": self.error,
        }


@dataclass
class BootstrapResult:
    """Final report of a bootstrap run."""
    identity: NodeIdentity
    state: BootstrapState
    history: List[BootstrapState]
    app_active: bool
    elapsed: float
    attempt: Optional[JoinAttempt] = None

    @property
    def failure_reason(self) -> Optional[JoinFailureReason]:
        return self.attempt.reason if self.attempt else None

    @property
    def joined(self) -> bool:
        return BootstrapState.JOINED in self.history or BootstrapState.ALREADY_JOINED in self.history

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "identity": self.identity.to_dict(),
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "app_active": self.app_active,
            "elapsed": self.elapsed,
            "joined": self.joined,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "attempt": self.attempt.to_dict() if self.attempt else None,
        }


class JoinOrchestrator:
    """Sequences a node's cluster bootstrap.

    Example:
        >>> config = BootstrapConfig.from_env()
        >>> supervisor = LocalServiceSupervisor(config.server_command)
        >>> orchestrator = JoinOrchestrator(config, RabbitmqctlAdmin(), service=supervisor)
        >>> result = await orchestrator.run()
        >>> await supervisor.supervise()
    """

    def __init__(
        self,
        config: BootstrapConfig,
        admin: BrokerAdmin,
        prober: Optional[PeerProber] = None,
        service: Optional[LocalServiceSupervisor] = None,
        resolver: Optional[IdentityResolver] = None,
        secret: Optional[ClusterSecret] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config
        self.admin = admin
        self.clock = clock or Clock()
        self.prober = prober or PeerProber(clock=self.clock)
        self.service = service
        self.resolver = resolver or IdentityResolver(config)
        self.secret = secret or ClusterSecret(config.cookie_file)
        self.membership = MembershipClient(admin)
        self.admin_policy = RetryPolicy.fixed(config.admin_retries, config.admin_backoff)

        self._state = BootstrapState.INIT
        self.history: List[BootstrapState] = [BootstrapState.INIT]
        self.identity: Optional[NodeIdentity] = None
        self.attempt: Optional[JoinAttempt] = None
        self._app_stopped = False

    @property
    def state(self) -> BootstrapState:
        return self._state

    def _transition(self, new_state: BootstrapState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {new_state.value}")
        logger.info(f"Bootstrap: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self.history.append(new_state)

    # ==================== Entry point ====================

    async def run(self) -> BootstrapResult:
        """Run the bootstrap sequence to RUNNING.

        Returns:
            BootstrapResult describing the path taken

        Raises:
            ConfigError: If the node identity cannot be determined
        """
        started = self.clock.monotonic()

        self.identity = self.resolver.resolve()
        self._transition(BootstrapState.ROLE_DETERMINED)
        logger.info(
            f"Node {self.identity.node_name} starting as {self.identity.role.value}"
        )

        self.secret.normalize_permissions()

        if self.identity.is_seed:
            await self._bootstrap_seed()
        else:
            await self._bootstrap_joiner()

        app_active = await self._finish()
        elapsed = self.clock.monotonic() - started
        result = BootstrapResult(
            identity=self.identity,
            state=self._state,
            history=list(self.history),
            app_active=app_active,
            elapsed=elapsed,
            attempt=self.attempt,
        )
        if result.failure_reason:
            logger.warning(
                f"Node {self.identity.node_name} running standalone "
                f"({result.failure_reason.value})"
            )
        else:
            logger.info(f"Node {self.identity.node_name} running ({elapsed:.1f}s)")
        return result

    # ==================== Seed ====================

    async def _bootstrap_seed(self) -> None:
        self._publish_bootstrap_record()
        await self._start_service()
        self._transition(BootstrapState.SEED_READY)

    def _publish_bootstrap_record(self) -> None:
        if not self.config.bootstrap_record:
            return
        try:
            fingerprint = self.secret.fingerprint()
            if fingerprint is None:
                logger.warning("No cluster secret to publish; joiners cannot verify it")
                return
            record = BootstrapRecord(
                node_name=self.identity.node_name, secret_fingerprint=fingerprint
            )
            record.write(self.config.bootstrap_record)
            logger.info(f"Published bootstrap record to {self.config.bootstrap_record}")
        except OSError as e:
            logger.warning(f"Could not publish bootstrap record: {e}")

    # ==================== Joiner ====================

    async def _bootstrap_joiner(self) -> None:
        target = self.identity.join_target
        await self._start_service()
        try:
            await self.admin.wait_booted(
                self.config.pid_file(self.identity.hostname), self.config.boot_timeout
            )
        except AdminUnavailableError as e:
            logger.warning(f"Local node did not report booted: {e}")

        self.attempt = JoinAttempt(peer_node=target.node_name, peer_address=target.address)
        self._transition(BootstrapState.AWAITING_PEER)

        try:
            await self.prober.wait_reachable(
                target.address, self.config.peer_timeout, self.config.poll_interval
            )
        except PeerUnreachableError as e:
            self._fail(JoinFailureReason.PEER_UNREACHABLE, e)
            return
        self._transition(BootstrapState.PEER_REACHABLE)

        try:
            self._verify_secret()
        except SecretMismatchError as e:
            self._fail(JoinFailureReason.SECRET_MISMATCH, e)
            return

        try:
            clustered = await RetryHandler(self.admin_policy, self.clock).execute_with_retry(
                lambda: self.membership.is_clustered_with(target.node_name),
                retry_on=(AdminUnavailableError,),
                description="Membership check",
            )
        except AdminUnavailableError as e:
            self._fail(JoinFailureReason.ADMIN_UNAVAILABLE, e)
            return
        self._transition(BootstrapState.MEMBERSHIP_CHECKED)

        if clustered:
            logger.info(f"Already clustered with {target.node_name}; skipping join")
            self._transition(BootstrapState.ALREADY_JOINED)
            self.attempt.succeed()
            return

        await self._join(target.node_name)

    def _expected_fingerprint(self) -> Optional[str]:
        if self.config.secret_fingerprint:
            return self.config.secret_fingerprint
        if not self.config.bootstrap_record:
            return None
        record = BootstrapRecord.load(self.config.bootstrap_record)
        if record is None:
            return None
        if record.node_name != self.identity.join_target.node_name:
            logger.warning(
                f"Bootstrap record belongs to {record.node_name}, "
                f"not {self.identity.join_target.node_name}; ignoring it"
            )
            return None
        return record.secret_fingerprint

    def _verify_secret(self) -> None:
        expected = self._expected_fingerprint()
        if expected is None:
            logger.warning("No known-good cluster secret fingerprint; skipping verification")
            return
        self.secret.verify(expected)
        logger.info("Cluster secret matches the seed")

    async def _join(self, peer_node: str) -> None:
        self._transition(BootstrapState.JOINING)
        self.attempt.attempts += 1

        try:
            await self.admin.stop_app()
        except AdminUnavailableError as e:
            # stop_app may have taken effect before the error surfaced
            self._app_stopped = True
            self._fail(JoinFailureReason.ADMIN_UNAVAILABLE, e)
            return
        self._app_stopped = True

        try:
            await self.admin.join_cluster(peer_node)
        except JoinRejectedError as e:
            logger.error(f"Join failed; continuing as standalone node: {e}")
            await self._restart_app()
            self._fail(JoinFailureReason.JOIN_REJECTED, e)
            return
        except AdminUnavailableError as e:
            logger.error(f"Admin interface lost during join: {e}")
            await self._restart_app()
            self._fail(JoinFailureReason.ADMIN_UNAVAILABLE, e)
            return

        await self._restart_app()
        self.attempt.succeed()
        self._transition(BootstrapState.JOINED)

    def _fail(self, reason: JoinFailureReason, error: BaseException) -> None:
        self.attempt.fail(reason, error)
        if self.attempt.outcome == JoinOutcome.FAILED_FATAL:
            logger.error(f"Join attempt failed fatally ({reason.value}): {error}")
        else:
            logger.warning(f"Join attempt failed ({reason.value}): {error}")
        self._transition(BootstrapState.JOIN_FAILED)

    # ==================== Local service ====================

    async def _start_service(self) -> None:
        if self.service is not None:
            await self.service.start()

    async def _restart_app(self) -> bool:
        try:
            await RetryHandler(self.admin_policy, self.clock).execute_with_retry(
                self.admin.start_app,
                retry_on=(AdminUnavailableError,),
                description="start_app",
            )
        except AdminUnavailableError as e:
            logger.error(f"Could not restart the application layer: {e}")
            return False
        self._app_stopped = False
        return True

    async def _finish(self) -> bool:
        """Enter RUNNING with the local service alive and its application started."""
        if self.service is not None:
            await self.service.ensure_running()
        if self._app_stopped:
            await self._restart_app()
        self._transition(BootstrapState.RUNNING)

        process_alive = self.service is None or self.service.is_running
        return process_alive and not self._app_stopped
