"""
Recruiter Routes (role RECRUITER, verified company required except for the dashboard)

GET /recruiter/validation-check - Is the recruiter's company verified
GET /recruiter/dashboard - Offer & application stats for verified companies
GET /recruiter/companies/{company_id}/offers - Company offers with application counts
GET /recruiter/offers/{offer_id}/applications - Applications for one offer (sortable)
GET /recruiter/companies/{company_id}/applications - All company applications, rescored
PATCH /recruiter/offers/{offer_id}/premium - Enable premium for N days
GET /recruiter/companies/{company_id}/applications/export - CSV export
"""

import csv
import io
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import Response

from app.db.postgres import execute_raw_sql
from app.core.auth import (
    require_role, require_validated_company, require_company_access, has_company_access,
    company_validation_state, VALIDATION_MESSAGES
)
from app.services.matching_service import (
    get_matching_service, load_candidate_for_matching, attach_offer_skills
)
from app.schemas.schemas import ApplicationSort, ApplicationStatus, PremiumRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recruiter", tags=["Recruiter"])

SORT_ORDERS = {
    ApplicationSort.score_desc: "a.score DESC NULLS LAST",
    ApplicationSort.score_asc: "a.score ASC NULLS LAST",
    ApplicationSort.date_desc: "a.created_at DESC",
    ApplicationSort.date_asc: "a.created_at ASC",
    ApplicationSort.status: "a.status ASC",
}

CSV_HEADERS = [
    "ID", "Candidat", "Email", "Téléphone", "Ville", "Titre visé", "Expérience (années)",
    "Offre", "Type de contrat", "Statut", "Score", "Date de candidature", "Dernière mise à jour"
]


def get_offer_for_member(offer_id: str, user: dict) -> dict:
    offers = execute_raw_sql(
        "SELECT id, company_id, title, premium_until FROM job_offers WHERE id = :id",
        {"id": offer_id}
    )
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")
    if not has_company_access(user, offers[0]["company_id"]):
        raise HTTPException(status_code=403, detail="Accès non autorisé à cette offre")
    return offers[0]


def pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "total_pages": (total + limit - 1) // limit}


def format_date(value) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


@router.get("/validation-check")
async def validation_check(user: dict = Depends(require_validated_company)):
    return {"status": "validated", "message": "Entreprise validée, accès autorisé"}


@router.get("/dashboard")
async def dashboard(user: dict = Depends(require_role("RECRUITER"))):
    """
    Stats over the recruiter's verified companies.

    Returns 403 with status 'rejected', 'pending' or 'none' when no
    company is verified yet, so the UI can show the right screen.
    """
    memberships = user["memberships"]
    state = company_validation_state(memberships)
    if state != "verified":
        raise HTTPException(status_code=403, detail={
            "message": VALIDATION_MESSAGES[state],
            "requires_validation": True,
            "status": state
        })

    company_ids = [str(m["company_id"]) for m in memberships if m["company_status"] == "VERIFIED"]
    params = {"ids": company_ids}

    offers = execute_raw_sql("""
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE status = 'ACTIVE') AS active,
               COUNT(*) FILTER (WHERE status = 'ARCHIVED') AS archived,
               COUNT(*) FILTER (WHERE status = 'EXPIRED') AS expired
        FROM job_offers
        WHERE company_id = ANY(CAST(:ids AS uuid[]))
    """, params)[0]

    applications = execute_raw_sql("""
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE a.status = 'ENVOYE') AS pending,
               COUNT(*) FILTER (WHERE a.status = 'EN_ATTENTE') AS in_progress,
               COUNT(*) FILTER (WHERE a.status = 'ENTRETIEN') AS interviews,
               COUNT(*) FILTER (WHERE a.status = 'EMBAUCHE') AS hired,
               COUNT(*) FILTER (WHERE a.status = 'REFUS') AS rejected
        FROM applications a
        JOIN job_offers o ON o.id = a.offer_id
        WHERE o.company_id = ANY(CAST(:ids AS uuid[]))
    """, params)[0]

    return {"stats": {
        "offers": offers,
        "applications": applications,
        "companies": [
            {
                "id": m["company_id"], "name": m["company_name"],
                "role": m["role_in_company"], "is_primary": m["is_primary"]
            }
            for m in memberships
        ]
    }}


@router.get("/companies/{company_id}/offers")
async def company_offers(
    company_id: str,
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(require_validated_company),
    _access: dict = Depends(require_company_access)
):
    where = "WHERE o.company_id = :company_id"
    params = {"company_id": company_id, "limit": limit, "offset": (page - 1) * limit}
    if status:
        where += " AND o.status = :status"
        params["status"] = status

    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM job_offers o {where}", params)[0]["total"]
    offers = execute_raw_sql(f"""
        SELECT o.id, o.title, o.city, o.contract_type, o.experience_min, o.salary_min, o.salary_max,
               o.status, o.admin_status, o.source, o.premium_until, o.published_at, o.created_at,
               (SELECT COUNT(*) FROM applications a WHERE a.offer_id = o.id) AS applications_count
        FROM job_offers o
        {where}
        ORDER BY o.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    attach_offer_skills(offers)
    return {"data": offers, "pagination": pagination(page, limit, total)}


@router.get("/offers/{offer_id}/applications")
async def offer_applications(
    offer_id: str,
    sort: ApplicationSort = Query(ApplicationSort.score_desc),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(require_validated_company)
):
    get_offer_for_member(offer_id, user)
    params = {"offer_id": offer_id, "limit": limit, "offset": (page - 1) * limit}

    total = execute_raw_sql(
        "SELECT COUNT(*) AS total FROM applications WHERE offer_id = :offer_id", params
    )[0]["total"]
    applications = execute_raw_sql(f"""
        SELECT a.id, a.candidate_id, a.status, a.score, a.explanation, a.custom_message,
               a.created_at, a.updated_at,
               u.name AS candidate_name, u.email AS candidate_email, u.phone AS candidate_phone,
               u.city AS candidate_city,
               cp.title AS candidate_title, cp.summary AS candidate_summary,
               cp.experience_years, cp.cv_url
        FROM applications a
        JOIN users u ON u.id = a.candidate_id
        LEFT JOIN candidate_profiles cp ON cp.user_id = a.candidate_id
        WHERE a.offer_id = :offer_id
        ORDER BY {SORT_ORDERS[sort]}
        LIMIT :limit OFFSET :offset
    """, params)
    return {"applications": applications, "pagination": pagination(page, limit, total)}


@router.get("/companies/{company_id}/applications")
async def company_applications(
    company_id: str,
    status: Optional[ApplicationStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(require_validated_company),
    _access: dict = Depends(require_company_access)
):
    """All applications on the company's offers, with the matching score recomputed."""
    where = "WHERE o.company_id = :company_id"
    params = {"company_id": company_id, "limit": limit, "offset": (page - 1) * limit}
    if status:
        where += " AND a.status = :status"
        params["status"] = status.value

    total = execute_raw_sql(f"""
        SELECT COUNT(*) AS total FROM applications a JOIN job_offers o ON o.id = a.offer_id {where}
    """, params)[0]["total"]
    applications = execute_raw_sql(f"""
        SELECT a.id, a.offer_id, a.candidate_id, a.status, a.score, a.explanation, a.created_at,
               o.title AS offer_title, o.contract_type,
               u.name AS candidate_name, u.email AS candidate_email, u.city AS candidate_city
        FROM applications a
        JOIN job_offers o ON o.id = a.offer_id
        JOIN users u ON u.id = a.candidate_id
        {where}
        ORDER BY a.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)

    offer_ids = {str(a["offer_id"]) for a in applications}
    offers = {}
    if offer_ids:
        rows = execute_raw_sql("""
            SELECT id, company_id, title, city, latitude, longitude, contract_type, experience_min, status
            FROM job_offers WHERE id = ANY(CAST(:ids AS uuid[]))
        """, {"ids": list(offer_ids)})
        offers = {str(o["id"]): o for o in attach_offer_skills(rows)}

    matcher = get_matching_service()
    for application in applications:
        offer = offers.get(str(application["offer_id"]))
        candidate = load_candidate_for_matching(application["candidate_id"])
        if not offer or not candidate:
            continue
        try:
            result = matcher.calculate_matching_score(candidate, offer)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Rescoring failed for application %s: %s", application["id"], e)
            application["explanation"] = "Erreur lors du calcul du score de matching"
            continue
        application["score"] = result["score"]
        application["explanation"] = result["explanation"]

    return {"data": applications, "pagination": pagination(page, limit, total)}


@router.patch("/offers/{offer_id}/premium")
async def enable_premium(offer_id: str, request: Optional[PremiumRequest] = None,
                         user: dict = Depends(require_validated_company)):
    duration = request.duration_days if request else PremiumRequest().duration_days
    get_offer_for_member(offer_id, user)
    premium_until = datetime.utcnow() + timedelta(days=duration)
    updated = execute_raw_sql("""
        UPDATE job_offers SET premium_until = :premium_until, updated_at = NOW()
        WHERE id = :id
        RETURNING id, title, premium_until
    """, {"id": offer_id, "premium_until": premium_until})
    logger.info("Premium enabled on offer %s until %s", offer_id, premium_until)
    return {"message": "Option premium activée avec succès", "offer": updated[0]}


@router.get("/companies/{company_id}/applications/export")
async def export_applications(
    company_id: str,
    user: dict = Depends(require_validated_company),
    _access: dict = Depends(require_company_access)
):
    """CSV export (UTF-8 with BOM so spreadsheet tools detect the encoding)."""
    applications = execute_raw_sql("""
        SELECT a.id, a.status, a.score, a.created_at, a.updated_at,
               o.title AS offer_title, o.contract_type,
               u.name, u.email, u.phone, u.city,
               cp.title AS candidate_title, cp.experience_years
        FROM applications a
        JOIN job_offers o ON o.id = a.offer_id
        JOIN users u ON u.id = a.candidate_id
        LEFT JOIN candidate_profiles cp ON cp.user_id = a.candidate_id
        WHERE o.company_id = :company_id
        ORDER BY a.created_at DESC
    """, {"company_id": company_id})

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for a in applications:
        writer.writerow([
            a["id"], a["name"], a["email"], a["phone"] or "", a["city"] or "",
            a["candidate_title"] or "", a["experience_years"] or 0,
            a["offer_title"], a["contract_type"] or "", a["status"],
            "" if a["score"] is None else a["score"],
            format_date(a["created_at"]), format_date(a["updated_at"])
        ])

    return Response(
        content="\ufeff" + buffer.getvalue(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="candidatures.csv"'}
    )
