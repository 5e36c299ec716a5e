"""Team mapping and migration routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, File, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..migration.engine import MigrationEngine
from ..migration.transfer import detect_format
from ..models.mapping import (
    MappingFilter,
    MappingStatus,
    MappingUpdate,
    summarize_repositories,
)
from ..models.run import RunScope

router = APIRouter(prefix='/api/v1/team-mappings', tags=['team-mappings'])
health_router = APIRouter(tags=['health'])


class ExecuteRequest(BaseModel):
    """Request to start a team migration run."""

    source_org: Optional[str] = Field(default=None, description='Limit to one source org')
    source_team_slug: Optional[str] = Field(
        default=None, description='Migrate a single team (requires source_org)'
    )
    dry_run: bool = Field(default=False, description='Log changes without applying them')


class ResetRequest(BaseModel):
    """Request to reset migration status."""

    source_org: Optional[str] = None
    source_team_slug: Optional[str] = None


class DiscoverRequest(BaseModel):
    """Request to discover the teams of a source organization."""

    source_org: str = Field(..., min_length=1)
    include_members: bool = False


def get_engine(request: Request) -> MigrationEngine:
    return request.app.state.engine


async def _read_upload(file: UploadFile) -> str:
    content = await file.read()
    return content.decode('utf-8-sig')


@health_router.get('/health')
async def health_check() -> Dict[str, Any]:
    return {'status': 'healthy', 'version': __version__}


@router.get('')
def list_mappings(
    request: Request,
    search: Optional[str] = None,
    status: Optional[MappingStatus] = None,
    source_org: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> Dict[str, Any]:
    """List team mappings with derived sync status."""
    store = get_engine(request).store
    mappings, total = store.query_mappings(
        MappingFilter(status=status, source_org=source_org, search=search),
        limit=limit,
        offset=offset,
    )
    return {'mappings': [m.to_response() for m in mappings], 'total': total}


@router.get('/stats')
def mapping_stats(request: Request, source_org: Optional[str] = None) -> Dict[str, int]:
    return get_engine(request).store.mapping_stats(source_org)


@router.get('/suggestions')
async def suggest_mappings(request: Request, destination_org: str) -> Dict[str, Any]:
    """Suggest same-slug destination teams for unmapped source teams."""
    engine = get_engine(request)
    slugs = await engine.destination.list_team_slugs(destination_org)
    suggestions = engine.store.suggest_mappings(destination_org, slugs)
    return {'suggestions': suggestions, 'total': len(suggestions)}


@router.post('/execute', status_code=202)
async def execute_migration(
    request: Request, body: Optional[ExecuteRequest] = Body(default=None)
) -> Dict[str, Any]:
    """Start a migration run in the background."""
    body = body or ExecuteRequest()
    orchestrator = get_engine(request).orchestrator
    scope = RunScope(source_org=body.source_org, source_slug=body.source_team_slug)
    handle = await orchestrator.execute_migration(scope, dry_run=body.dry_run)
    mode = 'Dry run' if body.dry_run else 'Team migration'
    return {
        'run_id': handle.run_id,
        'status': 'started',
        'dry_run': body.dry_run,
        'scope': scope.describe(),
        'message': f'{mode} started for {scope.describe()}',
    }


@router.get('/execution-status')
def execution_status(request: Request, source_org: Optional[str] = None) -> Dict[str, Any]:
    engine = get_engine(request)
    status = engine.orchestrator.get_status(source_org)
    status['progress'] = status['progress'].dict()
    status['poll_interval_seconds'] = engine.config.server.poll_interval_seconds
    return status


@router.delete('/execution-status')
def clear_execution_status(request: Request) -> Dict[str, str]:
    """Reset the run snapshot to not_started."""
    get_engine(request).orchestrator.clear_run()
    return {'message': 'Execution status cleared'}


@router.post('/cancel', status_code=202)
def cancel_migration(request: Request) -> Dict[str, Any]:
    cancelled = get_engine(request).orchestrator.cancel_migration()
    message = 'Cancellation requested' if cancelled else 'No migration is running'
    return {'cancelled': cancelled, 'message': message}


@router.post('/reset')
def reset_migration_status(
    request: Request,
    source_org: Optional[str] = None,
    body: Optional[ResetRequest] = Body(default=None),
) -> Dict[str, Any]:
    """Put mappings back to pending so the next run re-syncs them."""
    body = body or ResetRequest()
    scope = RunScope(
        source_org=body.source_org or source_org,
        source_slug=body.source_team_slug,
    )
    count = get_engine(request).orchestrator.reset_migration_status(scope)
    return {'reset': count, 'message': f'Reset {count} team mappings to pending'}


@router.post('/discover')
def discover_teams(request: Request, body: DiscoverRequest) -> Dict[str, Any]:
    """Record the teams and repositories of a source organization."""
    result = get_engine(request).discovery.discover(
        body.source_org, include_members=body.include_members
    )
    return result.dict()


@router.post('/import')
async def import_mappings(request: Request, file: UploadFile = File(...)) -> Dict[str, Any]:
    """Import mappings from an uploaded CSV or JSON file."""
    content = await _read_upload(file)
    fmt = detect_format(file.filename, file.content_type)
    result = get_engine(request).transfer.import_mappings(content, fmt)
    return result.dict()


@router.get('/export')
def export_mappings(
    request: Request,
    format: str = Query(default='csv', pattern='^(csv|json)$'),
    status: Optional[MappingStatus] = None,
    source_org: Optional[str] = None,
) -> Response:
    """Download mappings as CSV or JSON."""
    content = get_engine(request).transfer.export_mappings(
        format, MappingFilter(status=status, source_org=source_org)
    )
    media_type = 'application/json' if format == 'json' else 'text/csv'
    return Response(
        content=content,
        media_type=media_type,
        headers={'Content-Disposition': f'attachment; filename=team-mappings.{format}'},
    )


@router.post('/repositories/import')
async def import_repository_destinations(
    request: Request, file: UploadFile = File(...)
) -> Dict[str, Any]:
    """Import source -> destination repository names."""
    content = await _read_upload(file)
    fmt = detect_format(file.filename, file.content_type)
    result = get_engine(request).transfer.import_repository_destinations(content, fmt)
    return result.dict()


@router.get('/{source_org}/{source_slug}')
def get_mapping(request: Request, source_org: str, source_slug: str) -> Dict[str, Any]:
    store = get_engine(request).store
    mapping = store.get_mapping(source_org, source_slug)
    repositories = store.list_team_repositories(source_org, source_slug)
    data = mapping.to_response()
    data['repositories'] = [repo.dict() for repo in repositories]
    data['repository_summary'] = summarize_repositories(repositories)
    return data


@router.post('/{source_org}/{source_slug}')
def update_mapping(
    request: Request, source_org: str, source_slug: str, body: MappingUpdate
) -> Dict[str, Any]:
    """Edit the destination assignment of a mapping."""
    store = get_engine(request).store
    mapping = body.apply(store.get_mapping(source_org, source_slug))
    store.upsert_mapping(mapping)
    return mapping.to_response()


@router.delete('/{source_org}/{source_slug}')
def delete_mapping(request: Request, source_org: str, source_slug: str) -> JSONResponse:
    get_engine(request).store.delete_mapping(source_org, source_slug)
    return JSONResponse({'message': 'Team mapping deleted'})
