"""In-memory mapping store."""

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.mapping import MappingFilter, TeamMapping, TeamRepository
from .base import MappingNotFoundError, MappingStore


class InMemoryMappingStore(MappingStore):
    """Mapping store kept in process memory.

    Rows are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._mappings: Dict[tuple, TeamMapping] = {}
        self._repositories: Dict[tuple, List[TeamRepository]] = {}

    def query_mappings(
        self,
        filters: Optional[MappingFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[TeamMapping], int]:
        filters = filters or MappingFilter()
        with self._lock:
            rows = sorted(
                (m for m in self._mappings.values() if filters.matches(m)),
                key=lambda m: m.key,
            )
            total = len(rows)
            end = None if limit is None else offset + limit
            return [m.copy(deep=True) for m in rows[offset:end]], total

    def get_mapping(self, source_org: str, source_slug: str) -> TeamMapping:
        with self._lock:
            mapping = self._mappings.get((source_org, source_slug))
            if mapping is None:
                raise MappingNotFoundError(source_org, source_slug)
            return mapping.copy(deep=True)

    def upsert_mapping(self, mapping: TeamMapping) -> bool:
        with self._lock:
            existing = self._mappings.get(mapping.key)
            row = mapping.copy(deep=True)
            if existing is not None:
                row.created_at = existing.created_at
            self._mappings[mapping.key] = row
            self._persist()
            return existing is None

    def delete_mapping(self, source_org: str, source_slug: str) -> None:
        with self._lock:
            key = (source_org, source_slug)
            if key not in self._mappings:
                raise MappingNotFoundError(source_org, source_slug)
            del self._mappings[key]
            self._repositories.pop(key, None)
            self._persist()

    def list_team_repositories(
        self, source_org: str, source_slug: str
    ) -> List[TeamRepository]:
        with self._lock:
            return [
                repo.copy(deep=True)
                for repo in self._repositories.get((source_org, source_slug), [])
            ]

    def save_team_repositories(
        self, source_org: str, source_slug: str, repositories: Iterable[TeamRepository]
    ) -> None:
        with self._lock:
            self._repositories[(source_org, source_slug)] = sorted(
                (repo.copy(deep=True) for repo in repositories),
                key=lambda r: r.source_full_name,
            )
            self._persist()

    def update_migration_state(
        self, source_org: str, source_slug: str, **fields
    ) -> Optional[TeamMapping]:
        with self._lock:
            return super().update_migration_state(source_org, source_slug, **fields)

    def mark_repositories_synced(
        self,
        source_org: str,
        source_slug: str,
        source_full_names: Iterable[str],
        synced_at: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            super().mark_repositories_synced(
                source_org, source_slug, source_full_names, synced_at
            )

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held after each write."""
