"""Migration run models."""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, Field, validator


class RunStatus(str, Enum):
    """Lifecycle state of a migration run."""

    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    COMPLETED_WITH_ERRORS = 'completed_with_errors'
    CANCELLED = 'cancelled'

    @property
    def is_final(self) -> bool:
        return self in (
            RunStatus.COMPLETED,
            RunStatus.COMPLETED_WITH_ERRORS,
            RunStatus.CANCELLED,
        )


class RunScope(BaseModel):
    """Which mappings a run or reset applies to.

    Both ``source_org`` and ``source_slug`` select exactly one team; only
    ``source_org`` selects one organization; neither selects everything.
    """

    source_org: Optional[str] = Field(default=None, description='Source org filter')
    source_slug: Optional[str] = Field(default=None, description='Single team slug')

    @validator('source_slug')
    def validate_source_slug(cls, v, values):
        """A team slug is only unique within its organization."""
        if v and not values.get('source_org'):
            raise ValueError('source_slug requires source_org')
        return v or None

    @property
    def is_single_entity(self) -> bool:
        return bool(self.source_org and self.source_slug)

    def describe(self) -> str:
        if self.is_single_entity:
            return f'{self.source_org}/{self.source_slug}'
        if self.source_org:
            return f'org {self.source_org}'
        return 'all mapped teams'


class MigrationRun(BaseModel):
    """Point-in-time snapshot of a migration run's progress."""

    run_id: Optional[str] = None
    status: RunStatus = RunStatus.NOT_STARTED
    dry_run: bool = False
    scope: RunScope = Field(default_factory=RunScope)

    total_teams: int = 0
    processed_teams: int = 0
    created_teams: int = 0
    skipped_teams: int = 0
    failed_teams: int = 0
    total_repos_synced: int = 0
    current_team: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    errors: List[str] = Field(default_factory=list)
    recent_errors: List[str] = Field(default_factory=list)
    more_errors: int = 0

    @property
    def is_running(self) -> bool:
        return self.status == RunStatus.IN_PROGRESS


class RunHandle:
    """Handle to a migration run executing in the background."""

    def __init__(
        self,
        run_id: str,
        task: 'asyncio.Task',
        snapshot: Callable[[], MigrationRun],
    ):
        self.run_id = run_id
        self._task = task
        self._snapshot = snapshot

    @property
    def done(self) -> bool:
        return self._task.done()

    def progress(self) -> MigrationRun:
        """Return the current progress snapshot."""
        return self._snapshot()

    async def wait(self) -> MigrationRun:
        """Wait for the run to finish and return its final snapshot."""
        await asyncio.shield(self._task)
        return self._snapshot()
