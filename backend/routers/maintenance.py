"""
Maintenance router.

On-demand drift repair for the caller's own tag data. Safe to run
repeatedly; the scheduled reconciler (when enabled) runs the same jobs.
"""

import logging

from fastapi import APIRouter, Depends

from routers.auth import get_current_user
from routers.deps import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/tag-pivots/audit")
async def audit_tag_pivots(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Report pivot rows missing or dangling a tagId, and duplicated pairs."""
    return await services.maintenance.audit_tag_pivots(current_user["id"])


@router.post("/tag-pivots/backfill")
async def backfill_tag_pivots(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Resolve pivot tagIds by tag name."""
    report = await services.maintenance.backfill_note_tag_pivots(current_user["id"])
    return report.to_dict()


@router.post("/tag-pivots/dedupe")
async def dedupe_tag_pivots(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Remove duplicate (note, tag) pivot rows, keeping the oldest."""
    report = await services.maintenance.dedupe_tag_pivots(current_user["id"])
    return report.to_dict()


@router.post("/tag-usage/reconcile")
async def reconcile_tag_usage(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Recompute usage counters from pivot rows."""
    report = await services.maintenance.reconcile_tag_usage(current_user["id"])
    logger.info(f"Manual tag usage reconcile by {current_user['id']}: {report.summary.get('corrected')}")
    return report.to_dict()
