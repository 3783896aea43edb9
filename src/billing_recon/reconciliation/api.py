"""Administrative API endpoints for reconciliation."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_api_key, limiter
from ..database import (
    get_db,
    StoreError,
    ReportRepository,
    DiffRepository,
    AuditLogRepository,
)
from .models import (
    AuditEntry,
    ConfigUpdateRequest,
    DiffActionRequest,
    DiffNotFoundError,
    DiffRecord,
    InvalidTransitionError,
    ManualRunRequest,
    ReportCreationError,
    ReportRecord,
    ScheduleUpdateRequest,
    UnsupportedFieldError,
)
from .scheduler import ReconciliationScheduler, previous_day_window
from .service import ReconciliationService
from .settings import SettingsManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
RUN_RATE_LIMIT = "10/minute"


def get_scheduler(request: Request) -> ReconciliationScheduler:
    return request.app.state.scheduler


def get_settings_manager(request: Request) -> SettingsManager:
    return request.app.state.settings_manager


def _pagination(page: int, limit: int) -> Tuple[int, int]:
    """Clamp page to >= 1; a limit outside 1..100 falls back to the default."""
    if page < 1:
        page = 1
    if limit < 1 or limit > MAX_LIMIT:
        limit = DEFAULT_LIMIT
    return page, limit


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must use YYYY-MM-DD format")


def _report_dict(report: ReportRecord) -> Dict[str, Any]:
    return report.model_dump(mode="json", exclude={"diffs"})


def _diff_dict(row: Any) -> Dict[str, Any]:
    return DiffRecord.model_validate(row).model_dump(mode="json")


def _store_failure(action: str, e: Exception) -> HTTPException:
    logger.error(f"{action} failed: {e}")
    return HTTPException(status_code=500, detail=f"{action} failed")


@router.get("/reports")
async def list_reports(
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_LIMIT),
    status: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None, description="Report date from, YYYY-MM-DD"),
    end_date: Optional[str] = Query(default=None, description="Report date to, YYYY-MM-DD"),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """List reconciliation reports, newest first."""
    page, limit = _pagination(page, limit)
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")

    try:
        rows = await ReportRepository(db).list(
            page=page, limit=limit, status=status, start_date=start, end_date=end,
        )
    except StoreError as e:
        raise _store_failure("Listing reports", e)

    return {
        "reports": [_report_dict(ReportRecord.model_validate(r)) for r in rows],
        "page": page,
        "limit": limit,
    }


@router.get("/reports/{report_id}")
async def get_report(
    report_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Get a single reconciliation report."""
    try:
        report = await ReconciliationService(db).get_report(report_id)
    except StoreError as e:
        raise _store_failure("Loading report", e)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return _report_dict(report)


@router.get("/reports/{report_id}/diffs")
async def list_report_diffs(
    report_id: str,
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_LIMIT),
    status: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    record_type: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """List the diffs of one report."""
    page, limit = _pagination(page, limit)
    try:
        if await ReportRepository(db).get_by_id(report_id) is None:
            raise HTTPException(status_code=404, detail="Report not found")
        rows = await DiffRepository(db).list(
            report_id=report_id,
            page=page,
            limit=limit,
            status=status,
            severity=severity,
            record_type=record_type,
        )
    except StoreError as e:
        raise _store_failure("Listing diffs", e)

    return {"diffs": [_diff_dict(r) for r in rows], "page": page, "limit": limit}


@router.get("/reports/{report_id}/audit-logs")
async def list_report_audit_logs(
    report_id: str,
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_LIMIT),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """List the audit trail of one report."""
    page, limit = _pagination(page, limit)
    try:
        rows = await AuditLogRepository(db).list_for_report(report_id, page=page, limit=limit)
    except StoreError as e:
        raise _store_failure("Listing audit logs", e)

    return {
        "audit_logs": [AuditEntry.model_validate(r).model_dump(mode="json") for r in rows],
        "page": page,
        "limit": limit,
    }


@router.post("/run")
@limiter.limit(RUN_RATE_LIMIT)
async def run_reconciliation(
    request: Request,
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    api_key: str = Depends(verify_api_key),
):
    """Reconcile the previous full day now."""
    start, end = previous_day_window()
    try:
        report = await scheduler.run_manual(start, end)
    except ReportCreationError as e:
        raise _store_failure("Reconciliation", e)

    return {"message": "Reconciliation finished", "report": report.to_full_dict()}


@router.post("/run-manual")
@limiter.limit(RUN_RATE_LIMIT)
async def run_manual_reconciliation(
    request: Request,
    body: ManualRunRequest,
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    api_key: str = Depends(verify_api_key),
):
    """Reconcile a caller-supplied window [start_date, end_date)."""
    start = _parse_date(body.start_date, "start_date")
    end = _parse_date(body.end_date, "end_date")
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    try:
        report = await scheduler.run_manual(start, end)
    except ReportCreationError as e:
        raise _store_failure("Reconciliation", e)

    return {"message": "Reconciliation finished", "report": report.to_full_dict()}


@router.get("/status")
async def get_status(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    settings_manager: SettingsManager = Depends(get_settings_manager),
    api_key: str = Depends(verify_api_key),
):
    """Scheduler and configuration status."""
    settings = settings_manager.snapshot()
    next_run = scheduler.next_run_time()
    return {
        "enabled": settings.enabled,
        "running": scheduler.is_running,
        "schedule": settings.schedule,
        "next_run_time": next_run.isoformat() if next_run else None,
        "auto_fix_enabled": settings.auto_fix_enabled,
        "auto_fix_severity": settings.auto_fix_severity,
        "notification_enabled": settings.notification_enabled,
    }


@router.post("/schedule")
async def update_schedule(
    body: ScheduleUpdateRequest,
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    api_key: str = Depends(verify_api_key),
):
    """Replace the cron schedule."""
    if not body.schedule.strip():
        raise HTTPException(status_code=400, detail="Schedule is required")
    try:
        await scheduler.update_schedule(body.schedule)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise _store_failure("Updating schedule", e)

    return {"message": "Schedule updated", "schedule": body.schedule}


async def _resolve_diff(db: AsyncSession, diff_id: str, action: str, notes: Optional[str]) -> DiffRecord:
    service = ReconciliationService(db)
    try:
        if action == "fix":
            return await service.fix_diff_manually(diff_id, notes=notes)
        return await service.ignore_diff(diff_id, notes=notes)
    except DiffNotFoundError:
        raise HTTPException(status_code=404, detail="Diff not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UnsupportedFieldError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise _store_failure(f"Diff {action}", e)


@router.patch("/diffs/{diff_id}/fix")
async def fix_diff(
    diff_id: str,
    body: Optional[DiffActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Repair the local record behind a diff."""
    notes = body.notes if body else None
    diff = await _resolve_diff(db, diff_id, "fix", notes)
    return {"message": "Diff fixed", "diff": diff.model_dump(mode="json")}


@router.patch("/diffs/{diff_id}/ignore")
async def ignore_diff(
    diff_id: str,
    body: Optional[DiffActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Mark a diff as ignored."""
    notes = body.notes if body else None
    diff = await _resolve_diff(db, diff_id, "ignore", notes)
    return {"message": "Diff ignored", "diff": diff.model_dump(mode="json")}


@router.get("/diffs")
async def list_diffs(
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_LIMIT),
    status: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    record_type: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """List diffs across all reports."""
    page, limit = _pagination(page, limit)
    try:
        rows = await DiffRepository(db).list(
            page=page, limit=limit, status=status, severity=severity, record_type=record_type,
        )
    except StoreError as e:
        raise _store_failure("Listing diffs", e)

    return {"diffs": [_diff_dict(r) for r in rows], "page": page, "limit": limit}


@router.get("/config")
async def get_config(
    settings_manager: SettingsManager = Depends(get_settings_manager),
    api_key: str = Depends(verify_api_key),
):
    """Current reconciliation configuration."""
    return settings_manager.snapshot().model_dump(mode="json")


@router.put("/config")
async def update_config(
    body: ConfigUpdateRequest,
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    settings_manager: SettingsManager = Depends(get_settings_manager),
    api_key: str = Depends(verify_api_key),
):
    """Update the reconciliation configuration.

    A schedule change also replaces the installed trigger. A rejected
    request changes nothing.
    """
    changes = body.model_dump(exclude_unset=True)
    try:
        if changes:
            await scheduler.update_settings(changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise _store_failure("Updating config", e)

    return settings_manager.snapshot().model_dump(mode="json")


@router.get("/health")
async def reconciliation_health():
    """Health check endpoint for reconciliation service."""
    return {"status": "healthy", "service": "reconciliation"}
