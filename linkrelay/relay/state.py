"""
Persisted relay state: the running pid and the last committed checkpoint.

Stored as YAML under the base directory::

    pid: 4242
    timestamp: '2010-01-01T00:01:00+00:00'

Writes go to a temporary file that replaces the state file, so a crash
mid-write never leaves a truncated checkpoint behind. Writers take an
exclusive, non-blocking lock on a sidecar ``.lock`` file first; a lock that
is already held means another instance is writing.
"""

import fcntl
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
import yaml

from linkrelay.errors import InstanceLockedError

logger = structlog.get_logger(__name__)


@dataclass
class RelayState:
    """Process-wide mutable state, owned by the supervisor."""

    pid: int | None = None
    checkpoint: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "timestamp": self.checkpoint.isoformat() if self.checkpoint else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelayState":
        timestamp = data.get("timestamp")
        checkpoint = None
        if isinstance(timestamp, datetime):
            checkpoint = timestamp
        elif timestamp:
            checkpoint = datetime.fromisoformat(str(timestamp))
        if checkpoint is not None and checkpoint.tzinfo is None:
            checkpoint = checkpoint.replace(tzinfo=timezone.utc)
        pid = data.get("pid")
        return cls(pid=int(pid) if pid is not None else None, checkpoint=checkpoint)


class StateStore:
    """YAML file holding a RelayState."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def load(self) -> RelayState:
        """Read the stored state. A missing file yields an empty state."""
        if not self.path.exists():
            return RelayState()
        with open(self.path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"State file {self.path} is not a mapping")
        return RelayState.from_dict(data)

    def save(self, state: RelayState) -> None:
        """
        Atomically replace the stored state.

        Raises:
            InstanceLockedError: If another process holds the state lock
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as lock_file:
            try:
                fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise InstanceLockedError(
                    f"State file {self.path} is locked by another instance"
                ) from e
            try:
                tmp_path = self.path.with_name(self.path.name + ".tmp")
                with open(tmp_path, "w", encoding="utf-8") as f:
                    yaml.safe_dump(state.to_dict(), f, default_flow_style=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
        logger.debug("Saved state", **state.to_dict())
