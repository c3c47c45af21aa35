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
Cluster secret (Erlang cookie) handling.

Nodes may only cluster when their cookies are bit-identical. The file is
owned by the deployment (usually a bind mount) and is treated as read-only
input: it is opened read-only, its permissions are normalised once to
owner-read-only, and its SHA-256 fingerprint is compared with the value the
seed published in its bootstrap record. File presence alone proves nothing.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import stat
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from brokerboot.exceptions import SecretMismatchError
from brokerboot.utils.fs import atomic_write
from brokerboot.utils.logger import logger

SECRET_MODE = stat.S_IRUSR


@dataclass
class BootstrapRecord:
    """What the seed publishes about itself for joiners to validate against."""
    node_name: str
    secret_fingerprint: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_name": self.node_name,
            "secret_fingerprint": self.secret_fingerprint,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BootstrapRecord":
        """Create from dictionary."""
        return cls(
            node_name=data["node_name"],
            secret_fingerprint=data["secret_fingerprint"],
            created_at=data.get("created_at", 0.0),
        )

    def write(self, path: str) -> None:
        """Atomically write the record as JSON."""
        atomic_write(path, json.dumps(self.to_dict(), indent=2))

    @classmethod
    def load(cls, path: str) -> Optional["BootstrapRecord"]:
        """Load a record, returning None when it does not exist or is unreadable."""
        try:
            with open(path) as f:
                return cls.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable bootstrap record {path}: {e}")
            return None


class ClusterSecret:
    """Read-only view of the shared cluster secret file."""

    def __init__(self, path: str) -> None:
        self.path = path

    @property
    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def normalize_permissions(self) -> bool:
        """Restrict the secret to owner-read-only.

        Some mounts refuse chmod while the broker still works with the file,
        so failure is logged as a warning and reported, never raised.

        Returns:
            True if the permissions are now owner-read-only
        """
        if not self.exists:
            logger.warning(f"Cluster secret {self.path} not found; the broker will generate one")
            return False
        try:
            os.chmod(self.path, SECRET_MODE)
            return True
        except OSError as e:
            logger.warning(f"Could not set permissions on {self.path}: {e}")
            return False

    def read(self) -> bytes:
        with open(self.path, "rb") as f:
            return f.read()

    def fingerprint(self) -> Optional[str]:
        """SHA-256 hex digest of the secret, or None if it is missing."""
        if not self.exists:
            return None
        return hashlib.sha256(self.read()).hexdigest()

    def verify(self, expected_fingerprint: str) -> str:
        """Compare the local secret against a known-good fingerprint.

        Returns:
            The local fingerprint

        Raises:
            SecretMismatchError: If the local secret is missing, unreadable or differs
        """
        try:
            actual = self.fingerprint() or ""
        except OSError as e:
            raise SecretMismatchError(
                expected=expected_fingerprint,
                actual="<unreadable>",
                message=f"Cluster secret {self.path} is unreadable: {e}",
            ) from e
        if not hmac.compare_digest(actual.encode(), expected_fingerprint.encode()):
            raise SecretMismatchError(expected=expected_fingerprint, actual=actual or "<missing>")
        return actual
