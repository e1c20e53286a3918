"""
Admin Offer Management Routes (role ADMIN)

GET /admin/offers-management/stats - Moderation counters
GET /admin/offers-management - Offers with filters and application counts
GET /admin/offers-management/france-travail/stats - France Travail stats, sync status & history
POST /admin/offers-management/france-travail/sync - Run a sync now
GET /admin/offers-management/france-travail/pending - Imported offers awaiting moderation
POST /admin/offers-management/france-travail/{offer_id}/approve - Approve imported offer
POST /admin/offers-management/france-travail/{offer_id}/reject - Reject imported offer
GET /admin/offers-management/{offer_id} - Offer details
POST /admin/offers-management/{offer_id}/status - approve / reject / flag
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from app.db.postgres import execute_raw_sql
from app.core.auth import require_role
from app.services.company_service import log_admin_action
from app.services.matching_service import attach_offer_skills
from app.services.offer_aggregation_service import get_offer_aggregation_service, SyncAlreadyRunningError
from app.schemas.schemas import (
    OfferStatusAction, CompanyDecision, OfferStatus, OfferAdminStatus, OfferSource
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/offers-management", tags=["Admin Offers"])

admin_only = require_role("ADMIN")

# action -> (admin_status, status or None to keep it, message)
STATUS_ACTIONS = {
    "approve": ("APPROVED", "ACTIVE", "Offre approuvée et visible aux candidats"),
    "reject": ("REJECTED", "ARCHIVED", "Offre rejetée et archivée"),
    "flag": ("FLAGGED", None, "Offre signalée pour révision"),
}


def pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "total_pages": (total + limit - 1) // limit}


@router.get("/stats")
async def offer_stats(admin: dict = Depends(admin_only)):
    stats = execute_raw_sql("""
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE admin_status = 'PENDING') AS pending,
               COUNT(*) FILTER (WHERE admin_status = 'APPROVED') AS approved,
               COUNT(*) FILTER (WHERE admin_status = 'FLAGGED') AS flagged,
               COUNT(*) FILTER (WHERE status = 'EXPIRED') AS expired
        FROM job_offers
    """)[0]
    # dedup_hash is unique, so stored duplicates cannot exist
    stats["duplicates"] = 0
    return stats


@router.get("")
async def list_offers(
    status: Optional[OfferStatus] = Query(None),
    admin_status: Optional[OfferAdminStatus] = Query(None),
    source: Optional[OfferSource] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(admin_only)
):
    where = "WHERE 1 = 1"
    params = {"limit": limit, "offset": (page - 1) * limit}
    if status:
        where += " AND o.status = :status"
        params["status"] = status.value
    if admin_status:
        where += " AND o.admin_status = :admin_status"
        params["admin_status"] = admin_status.value
    if source:
        where += " AND o.source = :source"
        params["source"] = source.value
    if search:
        where += " AND o.title ILIKE :search"
        params["search"] = f"%{search}%"

    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM job_offers o {where}", params)[0]["total"]
    offers = execute_raw_sql(f"""
        SELECT o.id, o.title, o.city, o.contract_type, o.salary_min, o.salary_max,
               o.status, o.admin_status, o.source, o.source_url, o.published_at, o.created_at,
               c.id AS company_id, c.name AS company_name, c.status AS company_status,
               (SELECT COUNT(*) FROM applications a WHERE a.offer_id = o.id) AS applications_count
        FROM job_offers o
        JOIN companies c ON c.id = o.company_id
        {where}
        ORDER BY o.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    return {"offers": offers, "pagination": pagination(page, limit, total)}


# ============================================================
# FRANCE TRAVAIL
# ============================================================

@router.get("/france-travail/stats")
async def france_travail_stats(admin: dict = Depends(admin_only)):
    service = get_offer_aggregation_service()
    stats = execute_raw_sql("""
        SELECT COUNT(*) AS total_offers,
               COUNT(*) FILTER (WHERE admin_status = 'PENDING') AS pending_offers,
               COUNT(*) FILTER (WHERE admin_status = 'APPROVED') AS approved_offers,
               COUNT(*) FILTER (WHERE admin_status = 'REJECTED') AS rejected_offers,
               MAX(created_at) AS last_sync_date,
               ROUND(COUNT(*) FILTER (WHERE created_at >= NOW() - INTERVAL '30 days') / 30.0, 1) AS avg_daily_offers
        FROM job_offers
        WHERE source = 'EXTERNAL' AND france_travail_id IS NOT NULL
    """)[0]
    return {
        "stats": stats,
        "aggregation_status": service.get_status(),
        "sync_history": service.get_sync_stats(5)
    }


@router.post("/france-travail/sync")
async def france_travail_sync(admin: dict = Depends(admin_only)):
    logger.info("Manual France Travail sync requested by %s", admin["email"])
    try:
        return await get_offer_aggregation_service().manual_sync()
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/france-travail/pending")
async def france_travail_pending(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(admin_only)
):
    where = "WHERE o.source = 'EXTERNAL' AND o.admin_status = 'PENDING'"
    params = {"limit": limit, "offset": (page - 1) * limit}
    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM job_offers o {where}", params)[0]["total"]
    offers = execute_raw_sql(f"""
        SELECT o.id, o.title, o.description, o.city, o.contract_type, o.experience_min,
               o.salary_min, o.salary_max, o.source_url, o.france_travail_id, o.published_at, o.created_at
        FROM job_offers o
        {where}
        ORDER BY o.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    attach_offer_skills(offers)
    return {"offers": offers, "pagination": pagination(page, limit, total)}


def moderate_external_offer(offer_id: str, admin: dict, admin_status: str, reason: Optional[str]) -> dict:
    """Only EXTERNAL offers still PENDING can be approved or rejected here."""
    status_clause = ", status = 'ARCHIVED'" if admin_status == "REJECTED" else ""
    offers = execute_raw_sql(f"""
        UPDATE job_offers SET admin_status = :admin_status{status_clause}, updated_at = NOW()
        WHERE id = :id AND source = 'EXTERNAL' AND admin_status = 'PENDING'
        RETURNING id, title, status, admin_status
    """, {"id": offer_id, "admin_status": admin_status})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée ou déjà traitée")

    log_admin_action(admin["id"], "job_offer", offer_id, admin_status.lower(), {"reason": reason})
    logger.info("France Travail offer %s %s by %s", offer_id, admin_status, admin["email"])
    return offers[0]


@router.post("/france-travail/{offer_id}/approve")
async def france_travail_approve(offer_id: str, request: Optional[CompanyDecision] = None,
                                 admin: dict = Depends(admin_only)):
    offer = moderate_external_offer(offer_id, admin, "APPROVED", request.reason if request else None)
    return {"success": True, "message": "Offre approuvée avec succès", "offer": offer}


@router.post("/france-travail/{offer_id}/reject")
async def france_travail_reject(offer_id: str, request: Optional[CompanyDecision] = None,
                                admin: dict = Depends(admin_only)):
    offer = moderate_external_offer(offer_id, admin, "REJECTED", request.reason if request else None)
    return {"success": True, "message": "Offre rejetée avec succès", "offer": offer}


# ============================================================
# SINGLE OFFER
# ============================================================

@router.get("/{offer_id}")
async def get_offer(offer_id: str, admin: dict = Depends(admin_only)):
    offers = execute_raw_sql("""
        SELECT o.*, c.name AS company_name, c.status AS company_status, c.domain AS company_domain,
               (SELECT COUNT(*) FROM applications a WHERE a.offer_id = o.id) AS applications_count
        FROM job_offers o
        JOIN companies c ON c.id = o.company_id
        WHERE o.id = :id
    """, {"id": offer_id})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")
    attach_offer_skills(offers)
    return {"offer": offers[0]}


@router.post("/{offer_id}/status")
async def set_offer_status(offer_id: str, request: OfferStatusAction, admin: dict = Depends(admin_only)):
    """approve -> APPROVED/ACTIVE, reject -> REJECTED/ARCHIVED, flag -> FLAGGED (status kept)."""
    admin_status, status, message = STATUS_ACTIONS[request.action.value]
    offers = execute_raw_sql("""
        UPDATE job_offers SET
            admin_status = :admin_status,
            status = COALESCE(:status, status),
            updated_at = NOW()
        WHERE id = :id
        RETURNING id, title, status, admin_status
    """, {"id": offer_id, "admin_status": admin_status, "status": status})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")

    log_admin_action(admin["id"], "job_offer", offer_id, request.action.value, {"reason": request.reason})
    return {"message": message, "offer": offers[0]}
