"""
Admin Routes (role ADMIN)

GET /admin/dashboard - Platform overview, users by role, applications by status, 30-day trend
GET /admin/companies/pending - Companies awaiting validation
PATCH /admin/companies/{company_id}/status - Set VERIFIED / REJECTED
POST /admin/companies/{company_id}/approve - Approve company
POST /admin/companies/{company_id}/reject - Reject company
GET /admin/companies - Companies with search / status filters
PATCH /admin/companies/{company_id}/suspend - Suspend or reactivate company
GET /admin/offers - Offers with status / source filters
PATCH /admin/offers/{offer_id}/moderate - Archive or delete (expire) an offer
GET /admin/reports - Applications / companies report over a period
GET /admin/audit-logs - Audit trail
GET /admin/skills/categories - Skill categories
GET /admin/skills/stats - Referential stats
GET /admin/skills - Referential with usage counts
POST /admin/skills - Create skill
PUT /admin/skills/{skill_id} - Update skill
DELETE /admin/skills/{skill_id} - Delete unused skill
POST /admin/skills/merge - Merge skills into a target
GET /admin/skills/duplicates - Potential duplicates
GET /admin/skills/{skill_id}/usage - Where a skill is used
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from app.db.postgres import execute_raw_sql
from app.core.auth import require_role
from app.services import company_service, skills_service
from app.schemas.schemas import (
    CompanyStatusUpdate, CompanyDecision, CompanySuspendRequest, CompanyStatus, OfferModerationRequest,
    OfferStatus, OfferSource, SkillCreate, SkillUpdate, SkillMergeRequest
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

admin_only = require_role("ADMIN")

NOT_SPECIFIED = "Non spécifié"


def pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "total_pages": (total + limit - 1) // limit}


def count_by(rows: list, key: str) -> dict:
    return {r[key] or NOT_SPECIFIED: r["count"] for r in rows}


def change_company_status(company_id: str, status: str, reason: Optional[str], admin: dict,
                          action: Optional[str] = None, notify: bool = True) -> dict:
    company = company_service.set_company_status(
        company_id, status, reason, actor_id=admin["id"], notify=notify, action=action
    )
    if not company:
        raise HTTPException(status_code=404, detail="Entreprise non trouvée")
    logger.info("Company %s set to %s by %s", company_id, status, admin["email"])
    return company


# ============================================================
# DASHBOARD & REPORTS
# ============================================================

@router.get("/dashboard")
async def dashboard(admin: dict = Depends(admin_only)):
    overview = execute_raw_sql("""
        SELECT
            (SELECT COUNT(*) FROM users WHERE deleted_at IS NULL) AS total_users,
            (SELECT COUNT(*) FROM companies) AS total_companies,
            (SELECT COUNT(*) FROM companies WHERE status = 'PENDING') AS pending_companies,
            (SELECT COUNT(*) FROM job_offers) AS total_offers,
            (SELECT COUNT(*) FROM job_offers WHERE status = 'ACTIVE') AS active_offers,
            (SELECT COUNT(*) FROM applications) AS total_applications,
            (SELECT COUNT(*) FROM applications WHERE status = 'EMBAUCHE') AS hired_applications
    """)[0]
    total, hired = overview["total_applications"], overview["hired_applications"]
    overview["conversion_rate"] = round(hired / total * 100, 2) if total else 0

    users_by_role = execute_raw_sql("""
        SELECT role, COUNT(*) AS count FROM users WHERE deleted_at IS NULL GROUP BY role
    """)
    applications_by_status = execute_raw_sql(
        "SELECT status, COUNT(*) AS count FROM applications GROUP BY status"
    )
    trend = execute_raw_sql("""
        SELECT TO_CHAR(DATE(created_at), 'YYYY-MM-DD') AS day, COUNT(*) AS count
        FROM applications
        WHERE created_at >= NOW() - INTERVAL '30 days'
        GROUP BY DATE(created_at)
        ORDER BY DATE(created_at)
    """)

    return {"stats": {
        "overview": overview,
        "users_by_role": count_by(users_by_role, "role"),
        "applications_by_status": count_by(applications_by_status, "status"),
        "applications_trend": count_by(trend, "day")
    }}


@router.get("/reports")
async def reports(
    type: str = Query("general", pattern="^(general|applications|companies)$"),
    from_date: Optional[datetime] = Query(None, alias="from"),
    to_date: Optional[datetime] = Query(None, alias="to"),
    admin: dict = Depends(admin_only)
):
    """Report over [from, to], the last 30 days by default."""
    to_date = to_date or datetime.utcnow()
    from_date = from_date or datetime.utcnow() - timedelta(days=30)
    params = {"from": from_date, "to": to_date}
    report = {}

    if type in ("general", "applications"):
        period = "a.created_at BETWEEN :from AND :to"
        joins = "FROM applications a JOIN job_offers o ON o.id = a.offer_id JOIN companies c ON c.id = o.company_id"
        report["applications"] = {
            "total": execute_raw_sql(f"SELECT COUNT(*) AS total {joins} WHERE {period}", params)[0]["total"],
            "by_status": count_by(execute_raw_sql(
                f"SELECT a.status, COUNT(*) AS count {joins} WHERE {period} GROUP BY a.status", params
            ), "status"),
            "by_contract_type": count_by(execute_raw_sql(
                f"SELECT o.contract_type, COUNT(*) AS count {joins} WHERE {period} GROUP BY o.contract_type", params
            ), "contract_type"),
            "by_sector": count_by(execute_raw_sql(
                f"SELECT c.sector, COUNT(*) AS count {joins} WHERE {period} GROUP BY c.sector", params
            ), "sector")
        }

    if type in ("general", "companies"):
        period = "created_at BETWEEN :from AND :to"
        report["companies"] = {
            "total": execute_raw_sql(f"SELECT COUNT(*) AS total FROM companies WHERE {period}", params)[0]["total"],
            "by_status": count_by(execute_raw_sql(
                f"SELECT status, COUNT(*) AS count FROM companies WHERE {period} GROUP BY status", params
            ), "status"),
            "by_sector": count_by(execute_raw_sql(
                f"SELECT sector, COUNT(*) AS count FROM companies WHERE {period} GROUP BY sector", params
            ), "sector")
        }

    return {"report": report, "period": {"from": from_date, "to": to_date}}


@router.get("/audit-logs")
async def audit_logs(
    entity_type: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(admin_only)
):
    where = "WHERE 1 = 1"
    params = {"limit": limit, "offset": (page - 1) * limit}
    if entity_type:
        where += " AND l.entity_type = :entity_type"
        params["entity_type"] = entity_type
    if action:
        where += " AND l.action = :action"
        params["action"] = action

    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM audit_logs l {where}", params)[0]["total"]
    logs = execute_raw_sql(f"""
        SELECT l.id, l.entity_type, l.entity_id, l.action, l.details, l.created_at,
               l.actor_user_id, u.name AS actor_name, u.email AS actor_email
        FROM audit_logs l
        LEFT JOIN users u ON u.id = l.actor_user_id
        {where}
        ORDER BY l.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    return {"logs": logs, "pagination": pagination(page, limit, total)}


# ============================================================
# COMPANIES
# ============================================================

@router.get("/companies/pending")
async def pending_companies(admin: dict = Depends(admin_only)):
    companies = company_service.get_pending_companies(limit=200)
    for company in companies:
        company["recruiters"] = company_service.get_company_recruiters(company["id"])
    return {"companies": companies}


@router.patch("/companies/{company_id}/status")
async def set_company_status(company_id: str, request: CompanyStatusUpdate, admin: dict = Depends(admin_only)):
    if request.status == CompanyStatus.pending:
        raise HTTPException(status_code=400, detail="Statut invalide")
    verified = request.status == CompanyStatus.verified
    company = change_company_status(
        company_id, request.status.value, request.reason, admin, action="approve" if verified else "reject"
    )
    return {
        "message": f"Entreprise {'validée' if verified else 'rejetée'} avec succès",
        "company": company
    }


@router.post("/companies/{company_id}/approve")
async def approve_company(company_id: str, admin: dict = Depends(admin_only)):
    company = change_company_status(company_id, "VERIFIED", None, admin, action="approve")
    return {"message": "Entreprise approuvée avec succès", "company": company}


@router.post("/companies/{company_id}/reject")
async def reject_company(company_id: str, request: Optional[CompanyDecision] = None,
                         admin: dict = Depends(admin_only)):
    reason = request.reason if request else None
    company = change_company_status(company_id, "REJECTED", reason, admin, action="reject")
    return {"message": "Entreprise rejetée avec succès", "company": company}


@router.get("/companies")
async def list_companies(
    search: Optional[str] = Query(None),
    status: Optional[CompanyStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(admin_only)
):
    result = company_service.list_companies(search, status.value if status else None, limit, (page - 1) * limit)
    return {"companies": result["companies"], "pagination": pagination(page, limit, result["total"])}


@router.patch("/companies/{company_id}/suspend")
async def suspend_company(company_id: str, request: CompanySuspendRequest, admin: dict = Depends(admin_only)):
    """Suspending sets REJECTED, reactivating sets VERIFIED."""
    status = "REJECTED" if request.suspend else "VERIFIED"
    company = change_company_status(
        company_id, status, request.reason, admin,
        action="suspend" if request.suspend else "reactivate", notify=False
    )
    return {
        "message": f"Entreprise {'suspendue' if request.suspend else 'réactivée'} avec succès",
        "company": company
    }


# ============================================================
# OFFERS
# ============================================================

@router.get("/offers")
async def list_offers(
    status: Optional[OfferStatus] = Query(None),
    source: Optional[OfferSource] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(admin_only)
):
    where = "WHERE 1 = 1"
    params = {"limit": limit, "offset": (page - 1) * limit}
    if status:
        where += " AND o.status = :status"
        params["status"] = status.value
    if source:
        where += " AND o.source = :source"
        params["source"] = source.value

    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM job_offers o {where}", params)[0]["total"]
    offers = execute_raw_sql(f"""
        SELECT o.id, o.title, o.city, o.contract_type, o.status, o.admin_status, o.source,
               o.published_at, o.created_at, c.name AS company_name, c.status AS company_status
        FROM job_offers o
        JOIN companies c ON c.id = o.company_id
        {where}
        ORDER BY o.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    return {"offers": offers, "pagination": pagination(page, limit, total)}


@router.patch("/offers/{offer_id}/moderate")
async def moderate_offer(offer_id: str, request: OfferModerationRequest, admin: dict = Depends(admin_only)):
    """archive -> ARCHIVED, delete -> EXPIRED (offers are never physically deleted)."""
    status = "ARCHIVED" if request.action.value == "archive" else "EXPIRED"
    offers = execute_raw_sql("""
        UPDATE job_offers SET status = :status, updated_at = NOW()
        WHERE id = :id
        RETURNING id, title, status, admin_status
    """, {"id": offer_id, "status": status})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")

    company_service.log_admin_action(admin["id"], "job_offer", offer_id, request.action.value,
                                     {"reason": request.reason})
    label = "archivée" if request.action.value == "archive" else "supprimée"
    return {"message": f"Offre {label} avec succès", "offer": offers[0]}


# ============================================================
# SKILLS REFERENTIAL
# ============================================================

@router.get("/skills/categories")
async def skill_categories(admin: dict = Depends(admin_only)):
    return {"categories": skills_service.get_skill_categories()}


@router.get("/skills/stats")
async def skill_stats(admin: dict = Depends(admin_only)):
    return {"stats": skills_service.get_skills_stats()}


@router.get("/skills/duplicates")
async def skill_duplicates(admin: dict = Depends(admin_only)):
    return {"duplicates": skills_service.find_duplicate_skills()}


@router.get("/skills")
async def list_skills(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(admin_only)
):
    result = skills_service.list_skills_admin(search, category, limit, (page - 1) * limit)
    return {"skills": result["skills"], "pagination": pagination(page, limit, result["total"])}


@router.post("/skills", status_code=201)
async def create_skill(data: SkillCreate, admin: dict = Depends(admin_only)):
    """Duplicates are answered 409 by the integrity error handler."""
    try:
        skill = skills_service.create_skill(data.display_name, data.category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    company_service.log_admin_action(admin["id"], "skill", skill["id"], "create", {"slug": skill["slug"]})
    return {"message": "Compétence créée avec succès", "skill": skill}


@router.put("/skills/{skill_id}")
async def update_skill(skill_id: str, data: SkillUpdate, admin: dict = Depends(admin_only)):
    skill = skills_service.update_skill(skill_id, data.display_name, data.category)
    if not skill:
        raise HTTPException(status_code=404, detail="Compétence non trouvée")
    return {"message": "Compétence mise à jour avec succès", "skill": skill}


@router.delete("/skills/{skill_id}")
async def delete_skill(skill_id: str, admin: dict = Depends(admin_only)):
    if not skills_service.get_skill(skill_id):
        raise HTTPException(status_code=404, detail="Compétence non trouvée")
    try:
        skills_service.delete_skill(skill_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={
            "message": str(e),
            "usage": skills_service.get_skill_usage_counts(skill_id)
        })
    company_service.log_admin_action(admin["id"], "skill", skill_id, "delete")
    return {"message": "Compétence supprimée avec succès"}


@router.post("/skills/merge")
async def merge_skills(request: SkillMergeRequest, admin: dict = Depends(admin_only)):
    try:
        merged = skills_service.merge_skills(
            request.source_skill_ids, request.target_skill_id, request.new_display_name
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    company_service.log_admin_action(admin["id"], "skill", request.target_skill_id, "merge", {
        "source_skill_ids": request.source_skill_ids
    })
    logger.info("Skills merged by %s: %s -> %s", admin["email"], request.source_skill_ids, request.target_skill_id)
    return {"message": "Compétences fusionnées avec succès", "merged_count": merged}


@router.get("/skills/{skill_id}/usage")
async def skill_usage(skill_id: str, admin: dict = Depends(admin_only)):
    skill = skills_service.get_skill(skill_id)
    if not skill:
        raise HTTPException(status_code=404, detail="Compétence non trouvée")

    candidates = execute_raw_sql("""
        SELECT cs.id, cs.level, cs.years_experience, u.name, u.email
        FROM candidate_skills cs
        JOIN users u ON u.id = cs.user_id
        WHERE cs.skill_id = :id
    """, {"id": skill_id})
    offers = execute_raw_sql("""
        SELECT jos.id, jos.is_required, jos.weight, o.id AS offer_id, o.title, o.status
        FROM job_offer_skills jos
        JOIN job_offers o ON o.id = jos.job_offer_id
        WHERE jos.skill_id = :id
    """, {"id": skill_id})
    return {
        "skill": skill,
        "usage": {
            "candidates": candidates,
            "offers": offers,
            "total_usage": len(candidates) + len(offers)
        }
    }
