"""
Durable snapshots of workflow state.

The workflow engine keeps no state beyond the value it is running on, so a
host that wants to survive restarts subscribes a ``SnapshotRecorder`` to the
workflow. Every broadcast state is then written to disk, and the latest
snapshot can be loaded later to resume or inspect the run.

Snapshot File Structure:
    One JSON file per (owner, repository, issue), named
    ``{owner}__{repo}__{issue}.json``::

        {
            "key": {"owner": "octo", "repo": "demo", "issue_number": 42},
            "updated_at": "2024-01-15T11:45:00+00:00",
            "state": {"status": "AWAITING_HUMAN", "issue": {...}, ...}
        }

Concurrency Model:
    Each key has its own asyncio lock. Different issues are written
    concurrently; writes for one issue are serialized.

Example:
    >>> store = SnapshotStore(".issueres/snapshots")
    >>> recorder = store.recorder(SnapshotKey("octo", "demo", 42))
    >>> workflow.subscribe(recorder)
    >>> await workflow.start(issue)
    >>> await recorder.drain()
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from issueres.engine.types import WorkflowState, state_from_dict, state_to_dict

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SnapshotKey:
    """Identity of a snapshot: one issue in one repository."""

    owner: str
    repo: str
    issue_number: int

    @property
    def filename(self) -> str:
        return f"{self.owner}__{self.repo}__{self.issue_number}.json"


class SnapshotStore:
    """Persist workflow snapshots as JSON files.

    Attributes:
        snapshot_dir: Directory where snapshot files are stored
    """

    def __init__(self, snapshot_dir: str | Path) -> None:
        """Initialize the store, creating the directory if needed.

        Args:
            snapshot_dir: Directory for snapshot files
        """
        self.snapshot_dir = Path(snapshot_dir)
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[SnapshotKey, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

    async def _get_lock(self, key: SnapshotKey) -> asyncio.Lock:
        async with self._locks_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    def _get_path(self, key: SnapshotKey) -> Path:
        return self.snapshot_dir / key.filename

    async def save_snapshot(self, key: SnapshotKey, state: WorkflowState) -> None:
        """Atomically save the latest state for a key."""
        await self.save_snapshot_data(key, state_to_dict(state))

    async def save_snapshot_data(self, key: SnapshotKey, data: dict[str, Any]) -> None:
        """Atomically save an already-converted state for a key.

        Args:
            key: Snapshot identity
            data: Output of ``state_to_dict``
        """
        document = {
            "key": {"owner": key.owner, "repo": key.repo, "issue_number": key.issue_number},
            "updated_at": datetime.now(UTC).isoformat(),
            "state": data,
        }
        lock = await self._get_lock(key)
        async with lock:
            await self._write(self._get_path(key), document)
        log.debug("snapshot_saved", file=key.filename, status=data.get("status"))

    async def load_snapshot(self, key: SnapshotKey) -> WorkflowState | None:
        """Load the latest state for a key.

        Returns:
            The stored state, or None if no snapshot exists

        Raises:
            json.JSONDecodeError: If the snapshot file is corrupt
        """
        path = self._get_path(key)
        lock = await self._get_lock(key)
        async with lock:
            if not path.exists():
                return None
            document = await self._read(path)
        return state_from_dict(document["state"])

    async def list_snapshots(self, limit: int = 20) -> list[WorkflowState]:
        """Return the most recently updated snapshots, newest first.

        Unreadable files are skipped with a warning.
        """
        documents: list[dict[str, Any]] = []
        for path in self.snapshot_dir.glob("*.json"):
            try:
                documents.append(await self._read(path))
            except (OSError, json.JSONDecodeError) as e:
                log.warning("snapshot_unreadable", file=path.name, error=str(e))

        documents.sort(key=lambda d: d.get("updated_at", ""), reverse=True)
        return [state_from_dict(d["state"]) for d in documents[:limit]]

    async def delete_snapshot(self, key: SnapshotKey) -> bool:
        """Delete the snapshot for a key.

        Returns:
            True if a snapshot was deleted
        """
        path = self._get_path(key)
        lock = await self._get_lock(key)
        async with lock:
            if not path.exists():
                return False
            path.unlink()
        log.info("snapshot_deleted", file=key.filename)
        return True

    def recorder(self, key: SnapshotKey) -> "SnapshotRecorder":
        """Create a workflow listener that persists every state for a key."""
        return SnapshotRecorder(self, key)

    async def _read(self, path: Path) -> dict[str, Any]:
        async with aiofiles.open(path) as f:
            content = await f.read()
        data: dict[str, Any] = json.loads(content)
        return data

    async def _write(self, path: Path, document: dict[str, Any]) -> None:
        """Write to a temporary file, then rename over the target."""
        tmp_path = path.with_suffix(".tmp")

        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps(document, indent=2))

        # Atomic rename - safe on POSIX when same filesystem
        tmp_path.replace(path)


class SnapshotRecorder:
    """Synchronous workflow listener that saves snapshots in the background.

    Each call converts the state right away, so later merges cannot change
    what gets written, and schedules a save that runs after the previous one.
    Must be called from within a running event loop.
    """

    def __init__(self, store: SnapshotStore, key: SnapshotKey) -> None:
        self.store = store
        self.key = key
        self._pending: asyncio.Task[None] | None = None

    def __call__(self, state: WorkflowState) -> None:
        data = state_to_dict(state)
        previous = self._pending
        self._pending = asyncio.get_running_loop().create_task(self._save_after(previous, data))

    async def _save_after(self, previous: "asyncio.Task[None] | None", data: dict[str, Any]) -> None:
        if previous is not None:
            await previous
        try:
            await self.store.save_snapshot_data(self.key, data)
        except OSError as e:
            log.error("snapshot_save_failed", file=self.key.filename, error=str(e))

    async def drain(self) -> None:
        """Wait until every scheduled save has been written."""
        if self._pending is not None:
            await self._pending
