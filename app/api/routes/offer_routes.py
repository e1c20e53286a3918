"""
Offer Routes

GET /offers/search - Search visible offers (scored for candidates)
POST /offers/analyze - Detect skills in a pasted offer text
GET /offers/{offer_id} - Offer details (scored for candidates)
POST /offers - Create offer (recruiter with a verified company)
PUT /offers/{offer_id} - Update offer and replace its skills (company member)
PATCH /offers/{offer_id}/archive - Archive offer (company member)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy import text

from app.db.postgres import get_db_session, execute_raw_sql
from app.core.auth import get_current_user, require_role, require_validated_company, has_company_access
from app.services.matching_service import (
    get_matching_service, load_candidate_for_matching, attach_offer_skills,
    REQUIRED_SKILL_WEIGHT, OPTIONAL_SKILL_WEIGHT
)
from app.services.skills_service import analyze_pasted_offer
from app.schemas.schemas import (
    OfferCreate, OfferUpdate, OfferAnalyzeRequest, OfferSkillInput, ContractType, MessageResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offers", tags=["Offers"])

VISIBILITY_DAYS = 90

OFFER_COLUMNS = """
    o.id, o.company_id, o.title, o.description, o.city, o.latitude, o.longitude, o.contract_type,
    o.experience_min, o.salary_min, o.salary_max, o.currency, o.source, o.source_url,
    o.status, o.admin_status, o.premium_until, o.published_at,
    c.name AS company_name, c.logo_url AS company_logo_url, c.sector AS company_sector
"""


def insert_offer_skills(db, offer_id, skills: List[OfferSkillInput]) -> None:
    """Required skills weigh 3, optional ones 1. Runs inside the caller's session."""
    for item in skills:
        db.execute(
            text("""
                INSERT INTO job_offer_skills (job_offer_id, skill_id, is_required, weight)
                VALUES (:offer_id, :skill_id, :is_required, :weight)
                ON CONFLICT (job_offer_id, skill_id) DO UPDATE
                SET is_required = EXCLUDED.is_required, weight = EXCLUDED.weight
            """),
            {
                "offer_id": offer_id, "skill_id": item.skill_id, "is_required": item.is_required,
                "weight": REQUIRED_SKILL_WEIGHT if item.is_required else OPTIONAL_SKILL_WEIGHT
            }
        )


def get_offer_for_member(offer_id: str, user: dict) -> dict:
    """Load an offer, 404 if unknown, 403 if the user is not a member of its company."""
    offers = execute_raw_sql("SELECT id, company_id, status FROM job_offers WHERE id = :id", {"id": offer_id})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")
    if not has_company_access(user, offers[0]["company_id"]):
        raise HTTPException(status_code=403, detail="Accès non autorisé à cette offre")
    return offers[0]


def score_for_candidate(user: dict, offers: List[dict]) -> List[dict]:
    candidate = load_candidate_for_matching(user["id"])
    if candidate is None:
        return offers
    return get_matching_service().score_offers_for_candidate(candidate, offers)


@router.get("/search")
async def search_offers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    contract_type: Optional[ContractType] = Query(None),
    experience_min: Optional[int] = Query(None, ge=0),
    salary_min: Optional[float] = Query(None, ge=0),
    minScore: Optional[int] = Query(None, ge=0, le=100),
    user: dict = Depends(get_current_user)
):
    """
    Search approved, active offers published in the last 90 days.
    Premium offers come first. For candidates each offer carries its
    matching score, and minScore filters the returned page on it.
    """
    where = f"""
        FROM job_offers o
        JOIN companies c ON c.id = o.company_id
        WHERE o.status = 'ACTIVE' AND o.admin_status = 'APPROVED'
          AND o.published_at >= NOW() - INTERVAL '{VISIBILITY_DAYS} days'
    """
    params = {"limit": limit, "offset": (page - 1) * limit}

    if contract_type:
        where += " AND o.contract_type = :contract_type"
        params["contract_type"] = contract_type.value
    if experience_min is not None:
        where += " AND o.experience_min <= :experience_min"
        params["experience_min"] = experience_min
    if salary_min is not None:
        where += " AND o.salary_min >= :salary_min"
        params["salary_min"] = salary_min

    total = execute_raw_sql(f"SELECT COUNT(*) AS total {where}", params)[0]["total"]
    offers = execute_raw_sql(f"""
        SELECT {OFFER_COLUMNS} {where}
        ORDER BY o.premium_until DESC NULLS LAST, o.published_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    attach_offer_skills(offers)

    if user["role"] == "CANDIDATE":
        score_for_candidate(user, offers)
        if minScore is not None:
            offers = [o for o in offers if (o.get("matching_score") or 0) >= minScore]

    return {
        "data": offers,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit
        }
    }


@router.post("/analyze")
async def analyze_offer(request: OfferAnalyzeRequest, user: dict = Depends(get_current_user)):
    """Detect the skills of a pasted job description (no persistence)."""
    return analyze_pasted_offer(request.text, request.title)


@router.get("/{offer_id}")
async def get_offer(offer_id: str, user: dict = Depends(get_current_user)):
    offers = execute_raw_sql(f"""
        SELECT {OFFER_COLUMNS}, c.size AS company_size
        FROM job_offers o
        JOIN companies c ON c.id = o.company_id
        WHERE o.id = :id AND o.status = 'ACTIVE'
    """, {"id": offer_id})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")

    attach_offer_skills(offers)
    if user["role"] == "CANDIDATE":
        score_for_candidate(user, offers)
    return {"offer": offers[0]}


@router.post("", status_code=201)
async def create_offer(offer: OfferCreate, user: dict = Depends(require_validated_company)):
    """
    Create an offer for the recruiter's verified company.

    The offer is ACTIVE but stays invisible to candidates until an admin
    approves it (admin_status PENDING).
    """
    with get_db_session() as db:
        created = db.execute(
            text("""
                INSERT INTO job_offers (company_id, title, description, city, latitude, longitude,
                    contract_type, experience_min, salary_min, salary_max, source, status, admin_status)
                VALUES (:company_id, :title, :description, :city, :latitude, :longitude,
                    :contract_type, :experience_min, :salary_min, :salary_max, 'INTERNAL', 'ACTIVE', 'PENDING')
                RETURNING id, company_id, title, status, admin_status, source, published_at
            """),
            {
                "company_id": user["company_id"], "title": offer.title, "description": offer.description,
                "city": offer.city, "latitude": offer.latitude, "longitude": offer.longitude,
                "contract_type": offer.contract_type.value, "experience_min": offer.experience_min,
                "salary_min": offer.salary_min, "salary_max": offer.salary_max
            }
        ).mappings().fetchone()
        insert_offer_skills(db, created["id"], offer.skills)

    logger.info("Offer created by %s: %s", user["email"], created["id"])
    return {"message": "Offre créée avec succès", "offer": dict(created)}


@router.put("/{offer_id}")
async def update_offer(offer_id: str, offer: OfferUpdate, user: dict = Depends(require_role("RECRUITER"))):
    """Update offer fields. When skills are given they replace the current ones."""
    get_offer_for_member(offer_id, user)

    params = {"id": offer_id}
    updates = []
    for field in ["title", "description", "city", "latitude", "longitude", "contract_type",
                  "experience_min", "salary_min", "salary_max"]:
        value = getattr(offer, field)
        if value is not None:
            updates.append(f"{field} = :{field}")
            params[field] = value.value if field == "contract_type" else value

    with get_db_session() as db:
        if updates:
            db.execute(
                text(f"UPDATE job_offers SET {', '.join(updates)}, updated_at = NOW() WHERE id = :id"),
                params
            )
        if offer.skills is not None:
            db.execute(text("DELETE FROM job_offer_skills WHERE job_offer_id = :id"), {"id": offer_id})
            insert_offer_skills(db, offer_id, offer.skills)

    updated = execute_raw_sql("SELECT * FROM job_offers WHERE id = :id", {"id": offer_id})
    return {"message": "Offre mise à jour avec succès", "offer": updated[0] if updated else None}


@router.patch("/{offer_id}/archive", response_model=MessageResponse)
async def archive_offer(offer_id: str, user: dict = Depends(require_role("RECRUITER"))):
    get_offer_for_member(offer_id, user)
    execute_raw_sql(
        "UPDATE job_offers SET status = 'ARCHIVED', updated_at = NOW() WHERE id = :id RETURNING id",
        {"id": offer_id}
    )
    return MessageResponse(message="Offre archivée avec succès")
