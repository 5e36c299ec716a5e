"""CSV and JSON import / export of team mappings."""

import csv
import io
import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..models.mapping import (
    MappingFilter,
    MappingStatus,
    MappingUpdate,
    TeamMapping,
)
from ..store.base import MappingStore

EXPORT_COLUMNS = [
    'source_org',
    'source_team_slug',
    'source_team_name',
    'destination_org',
    'destination_team_slug',
    'destination_team_name',
    'mapping_status',
    'migration_status',
    'sync_status',
    'repos_eligible',
    'repos_synced',
    'error_message',
]

MAPPING_HEADER_ALIASES = {
    'source_org': ('source_org', 'sourceorg'),
    'source_team_slug': ('source_team_slug', 'sourceteamslug', 'source_team'),
    'source_team_name': ('source_team_name', 'sourceteamname'),
    'destination_org': (
        'destination_org',
        'destinationorg',
        'dest_org',
        'destorg',
        'target_org',
    ),
    'destination_team_slug': (
        'destination_team_slug',
        'destinationteamslug',
        'dest_team_slug',
        'destteamslug',
        'target_team',
    ),
    'destination_team_name': (
        'destination_team_name',
        'destinationteamname',
        'dest_team_name',
    ),
    'mapping_status': ('mapping_status', 'status'),
}

REPOSITORY_HEADER_ALIASES = {
    'source_full_name': (
        'source_full_name',
        'sourcefullname',
        'source_repository',
        'source_repo',
        'source',
    ),
    'destination_full_name': (
        'destination_full_name',
        'destinationfullname',
        'destination_repository',
        'dest_repo',
        'target_repo',
        'destination',
    ),
}

SUPPORTED_FORMATS = ('csv', 'json')


class ImportResult(BaseModel):
    """Outcome of an import."""

    created: int = 0
    updated: int = 0
    errors: int = 0
    messages: List[str] = Field(default_factory=list)

    def error(self, line: int, message: str) -> None:
        self.errors += 1
        self.messages.append(f'Line {line}: {message}')


def detect_format(
    filename: Optional[str] = None, content_type: Optional[str] = None
) -> str:
    """Pick csv or json from a file name or content type, defaulting to csv."""
    if filename and filename.lower().endswith('.json'):
        return 'json'
    if content_type and 'json' in content_type.lower():
        return 'json'
    return 'csv'


def _canonical_key(header: str, aliases: Dict[str, tuple]) -> Optional[str]:
    name = header.strip().lower()
    for key, names in aliases.items():
        if name in names:
            return key
    return None


def _read_rows(content: str, fmt: str, aliases: Dict[str, tuple]) -> List[Dict[str, str]]:
    """Parse content into rows keyed by canonical column name.

    Raises:
        ValueError: If the content cannot be parsed
    """
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f'Unsupported format: {fmt}')

    if fmt == 'json':
        data = json.loads(content)
        if isinstance(data, dict):
            data = data.get('mappings') or data.get('repositories') or []
        if not isinstance(data, list):
            raise ValueError('JSON import must be a list of objects')
        raw_rows: Iterable[Any] = data
    else:
        reader = csv.DictReader(io.StringIO(content.lstrip('\ufeff')))
        if not reader.fieldnames:
            raise ValueError('CSV file has no header row')
        raw_rows = reader

    rows = []
    for raw in raw_rows:
        if not isinstance(raw, dict):
            rows.append({})
            continue
        row = {}
        for header, value in raw.items():
            if header is None:
                continue
            key = _canonical_key(str(header), aliases)
            if key is not None and value is not None:
                row[key] = str(value).strip()
        rows.append(row)
    return rows


class MappingTransfer:
    """Imports and exports mapping rows against a mapping store."""

    def __init__(self, store: MappingStore):
        self.store = store
        self.logger = logger.bind(component='MappingTransfer')

    def import_mappings(self, content: str, fmt: str = 'csv') -> ImportResult:
        """Create or update mappings matched by source org and slug.

        Updating a row changes only its assignment; migration state and
        counters are left as they are.

        Raises:
            ValueError: If the content cannot be parsed at all
        """
        rows = _read_rows(content, fmt, MAPPING_HEADER_ALIASES)
        if fmt == 'csv' and rows and not any(
            'source_org' in row and 'source_team_slug' in row for row in rows
        ):
            raise ValueError("CSV must have 'source_org' and 'source_team_slug' columns")

        result = ImportResult()
        # Line 1 is the CSV header
        for line, row in enumerate(rows, start=2 if fmt == 'csv' else 1):
            source_org = row.get('source_org', '')
            source_slug = row.get('source_team_slug', '')
            if not source_org or not source_slug:
                result.error(line, 'empty source_org or source_team_slug')
                continue

            try:
                update = self._row_update(row)
                existing = self.store.find_mapping(source_org, source_slug)
                if existing is None:
                    mapping = update.apply(
                        TeamMapping(
                            source_org=source_org,
                            source_slug=source_slug,
                            source_team_name=row.get('source_team_name') or None,
                        )
                    )
                    self.store.upsert_mapping(mapping)
                    result.created += 1
                else:
                    if row.get('source_team_name'):
                        existing.source_team_name = row['source_team_name']
                    self.store.upsert_mapping(update.apply(existing))
                    result.updated += 1
            except ValueError as e:
                result.error(line, str(e))

        self.logger.info(
            f'Imported team mappings: {result.created} created, '
            f'{result.updated} updated, {result.errors} errors'
        )
        return result

    @staticmethod
    def _row_update(row: Dict[str, str]) -> MappingUpdate:
        destination_org = row.get('destination_org') or None
        destination_slug = row.get('destination_team_slug') or None
        status = row.get('mapping_status', '').lower()
        if not status:
            status = (
                MappingStatus.MAPPED.value
                if destination_org and destination_slug
                else MappingStatus.UNMAPPED.value
            )
        try:
            mapping_status = MappingStatus(status)
        except ValueError:
            raise ValueError(f'invalid mapping_status {status!r}')

        return MappingUpdate(
            destination_org=destination_org,
            destination_team_slug=destination_slug,
            destination_team_name=row.get('destination_team_name') or None,
            mapping_status=mapping_status,
        )

    def export_mappings(
        self, fmt: str = 'csv', filters: Optional[MappingFilter] = None
    ) -> str:
        """Serialize mappings (with derived status) as CSV or JSON."""
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f'Unsupported format: {fmt}')

        mappings, _ = self.store.query_mappings(filters)
        rows = [self._export_row(m) for m in mappings]

        if fmt == 'json':
            return json.dumps(rows, indent=2)

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow({k: '' if v is None else v for k, v in row.items()})
        return output.getvalue()

    @staticmethod
    def _export_row(mapping: TeamMapping) -> Dict[str, Any]:
        return {
            'source_org': mapping.source_org,
            'source_team_slug': mapping.source_slug,
            'source_team_name': mapping.source_team_name,
            'destination_org': mapping.destination_org,
            'destination_team_slug': mapping.destination_slug,
            'destination_team_name': mapping.destination_team_name,
            'mapping_status': mapping.mapping_status.value,
            'migration_status': mapping.migration_status.value,
            'sync_status': mapping.sync_status.value,
            'repos_eligible': mapping.repos_eligible,
            'repos_synced': mapping.repos_synced,
            'error_message': mapping.error_message,
        }

    def import_repository_destinations(
        self, content: str, fmt: str = 'csv'
    ) -> ImportResult:
        """Record where migrated repositories live in the destination.

        Each row names a source repository and its destination ``owner/name``;
        an empty destination marks the repository as not migrated. ``updated``
        counts team repository records that changed.
        """
        rows = _read_rows(content, fmt, REPOSITORY_HEADER_ALIASES)
        result = ImportResult()
        for line, row in enumerate(rows, start=2 if fmt == 'csv' else 1):
            source = row.get('source_full_name', '')
            if not source:
                result.error(line, 'empty source_full_name')
                continue
            destination = row.get('destination_full_name') or None
            if destination is not None and (
                destination.count('/') != 1 or not all(destination.split('/'))
            ):
                result.error(line, f'invalid destination_full_name {destination!r}')
                continue
            result.updated += self.store.set_repository_destination(source, destination)

        self._refresh_eligible_counts()
        self.logger.info(
            f'Imported repository destinations: {result.updated} team repositories '
            f'updated, {result.errors} errors'
        )
        return result

    def _refresh_eligible_counts(self) -> None:
        """Keep repos_eligible in line with the stored team repositories."""
        mappings, _ = self.store.query_mappings()
        for mapping in mappings:
            repositories = self.store.list_team_repositories(*mapping.key)
            eligible = [r for r in repositories if r.is_eligible]
            synced = sum(1 for r in eligible if r.is_synced)
            if (
                mapping.total_source_repos == len(repositories)
                and mapping.repos_eligible == len(eligible)
                and mapping.repos_synced <= len(eligible)
            ):
                continue
            mapping.total_source_repos = len(repositories)
            mapping.repos_eligible = len(eligible)
            mapping.repos_synced = min(mapping.repos_synced, synced)
            mapping.updated_at = datetime.now()
            self.store.upsert_mapping(mapping)
