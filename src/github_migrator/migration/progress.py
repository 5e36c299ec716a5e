"""Run-wide progress tracking shared by all migration workers."""

import threading
import uuid
from datetime import datetime
from typing import Optional

from ..models.run import MigrationRun, RunScope, RunStatus


class ProgressTracker:
    """Thread-safe holder of the single process-wide MigrationRun.

    ``start`` is the single-flight guard: it atomically checks that no run is
    in progress and claims the slot. All counter updates happen under the
    same lock, so readers always see a consistent snapshot.
    """

    def __init__(self, error_display_limit: int = 5):
        self.error_display_limit = error_display_limit
        self._lock = threading.Lock()
        self._run = MigrationRun()
        self._previous = self._run

    def start(self, scope: RunScope, dry_run: bool) -> Optional[str]:
        """Claim the run slot.

        Returns:
            The new run id, or None if a run is already in progress
        """
        with self._lock:
            if self._run.status == RunStatus.IN_PROGRESS:
                return None
            self._previous = self._run
            self._run = MigrationRun(
                run_id=uuid.uuid4().hex,
                status=RunStatus.IN_PROGRESS,
                dry_run=dry_run,
                scope=scope,
                started_at=datetime.now(),
            )
            return self._run.run_id

    def abandon(self) -> None:
        """Give the slot back without a run, restoring the previous snapshot."""
        with self._lock:
            if self._run.status == RunStatus.IN_PROGRESS:
                self._run = self._previous

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run.status == RunStatus.IN_PROGRESS

    @property
    def run_id(self) -> Optional[str]:
        with self._lock:
            return self._run.run_id

    def set_total(self, total: int) -> None:
        with self._lock:
            self._run.total_teams = total

    def set_current(self, team: Optional[str]) -> None:
        with self._lock:
            self._run.current_team = team

    def record_team(
        self,
        created: bool = False,
        skipped: bool = False,
        failed: bool = False,
        repos_synced: int = 0,
    ) -> None:
        """Count one processed team."""
        with self._lock:
            self._run.processed_teams += 1
            if created:
                self._run.created_teams += 1
            if skipped:
                self._run.skipped_teams += 1
            if failed:
                self._run.failed_teams += 1
            self._run.total_repos_synced += repos_synced

    def add_error(self, message: str) -> None:
        with self._lock:
            self._run.errors.append(message)

    def finish(self, cancelled: bool = False, fatal: bool = False) -> MigrationRun:
        """Resolve the final run status once no worker is active."""
        with self._lock:
            if cancelled:
                status = RunStatus.CANCELLED
            elif fatal or self._run.failed_teams or self._run.errors:
                status = RunStatus.COMPLETED_WITH_ERRORS
            else:
                status = RunStatus.COMPLETED
            self._run.status = status
            self._run.current_team = None
            self._run.completed_at = datetime.now()
            return self._snapshot_locked()

    def clear(self) -> bool:
        """Reset to ``not_started``. Refused while a run is in progress."""
        with self._lock:
            if self._run.status == RunStatus.IN_PROGRESS:
                return False
            self._run = MigrationRun()
            return True

    def snapshot(self) -> MigrationRun:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> MigrationRun:
        snapshot = self._run.copy(deep=True)
        snapshot.recent_errors = snapshot.errors[: self.error_display_limit]
        snapshot.more_errors = max(0, len(snapshot.errors) - self.error_display_limit)
        return snapshot
