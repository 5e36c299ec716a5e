"""JSON file backed mapping store."""

import json
import os
import tempfile
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from ..models.mapping import TeamMapping, TeamRepository
from .base import StoreError
from .memory import InMemoryMappingStore

STORE_FORMAT_VERSION = 1


class JSONFileMappingStore(InMemoryMappingStore):
    """Mapping store persisted to a single JSON document.

    Every write rewrites the file atomically, so each completed entity is
    durable as soon as the orchestrator records it.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self.logger = logger.bind(component='JSONFileMappingStore')
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            self.logger.debug(f'No mapping store at {self.path}, starting empty')
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f'Failed to read mapping store {self.path}: {e}')

        try:
            for row in document.get('mappings', []):
                mapping = TeamMapping(**row)
                self._mappings[mapping.key] = mapping
            for entry in document.get('team_repositories', []):
                key = (entry['source_org'], entry['source_slug'])
                self._repositories[key] = [
                    TeamRepository(**repo) for repo in entry.get('repositories', [])
                ]
        except (AttributeError, KeyError, TypeError, ValidationError) as e:
            raise StoreError(f'Mapping store {self.path} is corrupt: {e}')

        self.logger.info(
            f'Loaded {len(self._mappings)} team mappings from {self.path}'
        )

    def _persist(self) -> None:
        document = {
            'version': STORE_FORMAT_VERSION,
            'mappings': [
                json.loads(m.json()) for _, m in sorted(self._mappings.items())
            ],
            'team_repositories': [
                {
                    'source_org': org,
                    'source_slug': slug,
                    'repositories': [json.loads(r.json()) for r in repositories],
                }
                for (org, slug), repositories in sorted(self._repositories.items())
            ],
        }

        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f'.{self.path.name}.', dir=str(directory)
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StoreError(f'Failed to write mapping store {self.path}: {e}')
