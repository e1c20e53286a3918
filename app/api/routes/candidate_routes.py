"""
Candidate Routes (role CANDIDATE)

GET /candidate/profile - Profile with educations, experiences, skills (created if missing)
PUT /candidate/profile - Update user and profile fields
POST /candidate/educations - Add education
PUT /candidate/educations/{id} - Update education
DELETE /candidate/educations/{id} - Delete education
POST /candidate/experiences - Add experience
PUT /candidate/experiences/{id} - Update experience
DELETE /candidate/experiences/{id} - Delete experience
PUT /candidate/skills - Replace skills list
POST /candidate/skills - Add one skill (by id, or by name)
PUT /candidate/skills/{skill_id} - Update skill level
DELETE /candidate/skills/{skill_id} - Remove skill
GET /candidate/saved-offers - Saved offers
POST /candidate/saved-offers/{offer_id} - Save an offer
DELETE /candidate/saved-offers/{offer_id} - Unsave an offer
POST /candidate/cv/generate - AI CV draft from the profile
POST /candidate/lm/generate - AI cover letter for an offer
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import text

from app.db.postgres import get_db_session, execute_raw_sql
from app.core.auth import require_role
from app.services.ai_client import AIServiceError, AINotConfiguredError, get_ai_client
from app.services.skills_service import resolve_skill_id
from app.schemas.schemas import (
    CandidateProfileUpdate, EducationCreate, EducationUpdate, ExperienceCreate, ExperienceUpdate,
    CandidateSkillsReplace, CandidateSkillAdd, CandidateSkillLevelUpdate, CoverLetterRequest, MessageResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/candidate", tags=["Candidate"])

candidate_only = require_role("CANDIDATE")

USER_FIELDS = ["name", "phone", "city", "latitude", "longitude"]
PROFILE_FIELDS = ["title", "summary", "experience_years", "mobility_km", "preferred_contracts"]


def ensure_profile(user_id) -> None:
    execute_raw_sql("""
        INSERT INTO candidate_profiles (user_id, mobility_km, preferred_contracts)
        VALUES (:user_id, 25, '{}')
        ON CONFLICT (user_id) DO NOTHING
        RETURNING user_id
    """, {"user_id": user_id})


def get_candidate_skills(user_id) -> list:
    return execute_raw_sql("""
        SELECT cs.skill_id, cs.level, cs.years_experience, s.slug, s.display_name, s.category
        FROM candidate_skills cs
        JOIN skills s ON s.id = cs.skill_id
        WHERE cs.user_id = :user_id
        ORDER BY cs.level DESC, s.display_name
    """, {"user_id": user_id})


def build_updates(data, fields: list, params: dict) -> list:
    updates = []
    for field in fields:
        value = getattr(data, field)
        if value is not None:
            updates.append(f"{field} = :{field}")
            params[field] = [v.value for v in value] if field == "preferred_contracts" else value
    return updates


def load_profile(user_id) -> dict:
    """User and profile fields plus educations, experiences and skills. The profile row is created on first access."""
    ensure_profile(user_id)

    profiles = execute_raw_sql("""
        SELECT u.id, u.name, u.email, u.phone, u.city, u.latitude, u.longitude, u.photo_url,
               cp.title, cp.summary, cp.experience_years, cp.mobility_km, cp.preferred_contracts,
               cp.cv_url, cp.updated_at
        FROM users u
        JOIN candidate_profiles cp ON cp.user_id = u.id
        WHERE u.id = :user_id
    """, {"user_id": user_id})
    if not profiles:
        raise HTTPException(status_code=404, detail="Profil non trouvé")

    profile = profiles[0]
    profile["educations"] = execute_raw_sql(
        "SELECT * FROM educations WHERE user_id = :user_id ORDER BY start_date DESC NULLS LAST",
        {"user_id": user_id}
    )
    profile["experiences"] = execute_raw_sql(
        "SELECT * FROM experiences WHERE user_id = :user_id ORDER BY start_date DESC NULLS LAST",
        {"user_id": user_id}
    )
    profile["skills"] = get_candidate_skills(user_id)
    return profile


@router.get("/profile")
async def get_profile(user: dict = Depends(candidate_only)):
    """Full candidate profile."""
    return load_profile(user["id"])


@router.put("/profile", response_model=MessageResponse)
async def update_profile(data: CandidateProfileUpdate, user: dict = Depends(candidate_only)):
    """Update candidate profile. Only provided fields are updated."""
    params = {"id": user["id"]}
    user_updates = build_updates(data, USER_FIELDS, params)
    profile_updates = build_updates(data, PROFILE_FIELDS, params)

    if not user_updates and not profile_updates:
        raise HTTPException(status_code=400, detail="Aucun champ à mettre à jour")

    ensure_profile(user["id"])
    with get_db_session() as db:
        if user_updates:
            db.execute(
                text(f"UPDATE users SET {', '.join(user_updates)}, updated_at = NOW() WHERE id = :id"),
                params
            )
        if profile_updates:
            db.execute(
                text(f"UPDATE candidate_profiles SET {', '.join(profile_updates)}, updated_at = NOW() WHERE user_id = :id"),
                params
            )

    return MessageResponse(message="Profil mis à jour")


# ============================================================
# EDUCATIONS & EXPERIENCES
# ============================================================

@router.post("/educations", status_code=201)
async def add_education(data: EducationCreate, user: dict = Depends(candidate_only)):
    rows = execute_raw_sql("""
        INSERT INTO educations (user_id, school, degree, field, start_date, end_date, description)
        VALUES (:user_id, :school, :degree, :field, :start_date, :end_date, :description)
        RETURNING *
    """, {"user_id": user["id"], **data.model_dump()})
    return rows[0]


@router.put("/educations/{education_id}")
async def update_education(education_id: str, data: EducationUpdate, user: dict = Depends(candidate_only)):
    params = {"id": education_id, "user_id": user["id"]}
    updates = build_updates(data, ["school", "degree", "field", "start_date", "end_date", "description"], params)
    if not updates:
        raise HTTPException(status_code=400, detail="Aucun champ à mettre à jour")

    rows = execute_raw_sql(
        f"UPDATE educations SET {', '.join(updates)} WHERE id = :id AND user_id = :user_id RETURNING *",
        params
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Formation non trouvée")
    return rows[0]


@router.delete("/educations/{education_id}", response_model=MessageResponse)
async def delete_education(education_id: str, user: dict = Depends(candidate_only)):
    rows = execute_raw_sql(
        "DELETE FROM educations WHERE id = :id AND user_id = :user_id RETURNING id",
        {"id": education_id, "user_id": user["id"]}
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Formation non trouvée")
    return MessageResponse(message="Formation supprimée")


@router.post("/experiences", status_code=201)
async def add_experience(data: ExperienceCreate, user: dict = Depends(candidate_only)):
    rows = execute_raw_sql("""
        INSERT INTO experiences (user_id, company, role_title, start_date, end_date, description)
        VALUES (:user_id, :company, :role_title, :start_date, :end_date, :description)
        RETURNING *
    """, {"user_id": user["id"], **data.model_dump()})
    return rows[0]


@router.put("/experiences/{experience_id}")
async def update_experience(experience_id: str, data: ExperienceUpdate, user: dict = Depends(candidate_only)):
    params = {"id": experience_id, "user_id": user["id"]}
    updates = build_updates(data, ["company", "role_title", "start_date", "end_date", "description"], params)
    if not updates:
        raise HTTPException(status_code=400, detail="Aucun champ à mettre à jour")

    rows = execute_raw_sql(
        f"UPDATE experiences SET {', '.join(updates)} WHERE id = :id AND user_id = :user_id RETURNING *",
        params
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Expérience non trouvée")
    return rows[0]


@router.delete("/experiences/{experience_id}", response_model=MessageResponse)
async def delete_experience(experience_id: str, user: dict = Depends(candidate_only)):
    rows = execute_raw_sql(
        "DELETE FROM experiences WHERE id = :id AND user_id = :user_id RETURNING id",
        {"id": experience_id, "user_id": user["id"]}
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Expérience non trouvée")
    return MessageResponse(message="Expérience supprimée")


# ============================================================
# SKILLS
# ============================================================

@router.put("/skills")
async def replace_skills(data: CandidateSkillsReplace, user: dict = Depends(candidate_only)):
    """Replace the whole skills list."""
    with get_db_session() as db:
        db.execute(text("DELETE FROM candidate_skills WHERE user_id = :user_id"), {"user_id": user["id"]})
        for item in data.skills:
            db.execute(
                text("""
                    INSERT INTO candidate_skills (user_id, skill_id, level, years_experience)
                    VALUES (:user_id, :skill_id, :level, :years)
                    ON CONFLICT (user_id, skill_id) DO UPDATE SET level = EXCLUDED.level
                """),
                {"user_id": user["id"], "skill_id": item.skill_id, "level": item.level, "years": item.years_experience}
            )
    return {"skills": get_candidate_skills(user["id"])}


@router.post("/skills", status_code=201)
async def add_skill(data: CandidateSkillAdd, user: dict = Depends(candidate_only)):
    """Add a skill by id, or by name (resolved against the referential, created if unknown)."""
    if not data.skill_id and not (data.name and data.name.strip()):
        raise HTTPException(status_code=400, detail="skill_id ou name requis")

    with get_db_session() as db:
        skill_id = data.skill_id
        if skill_id:
            exists = db.execute(text("SELECT id FROM skills WHERE id = :id"), {"id": skill_id}).fetchone()
            if not exists:
                raise HTTPException(status_code=404, detail="Compétence non trouvée")
        else:
            try:
                skill_id = resolve_skill_id(db, data.name)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        duplicate = db.execute(
            text("SELECT 1 FROM candidate_skills WHERE user_id = :user_id AND skill_id = :skill_id"),
            {"user_id": user["id"], "skill_id": skill_id}
        ).fetchone()
        if duplicate:
            raise HTTPException(status_code=409, detail="Cette compétence est déjà dans votre profil")

        db.execute(
            text("""
                INSERT INTO candidate_skills (user_id, skill_id, level, years_experience)
                VALUES (:user_id, :skill_id, :level, :years)
            """),
            {"user_id": user["id"], "skill_id": skill_id, "level": data.level, "years": data.years_experience}
        )

    return {"message": "Compétence ajoutée", "skill_id": str(skill_id)}


@router.put("/skills/{skill_id}")
async def update_skill_level(skill_id: str, data: CandidateSkillLevelUpdate, user: dict = Depends(candidate_only)):
    rows = execute_raw_sql("""
        UPDATE candidate_skills
        SET level = :level, years_experience = COALESCE(:years, years_experience)
        WHERE user_id = :user_id AND skill_id = :skill_id
        RETURNING skill_id, level, years_experience
    """, {"user_id": user["id"], "skill_id": skill_id, "level": data.level, "years": data.years_experience})
    if not rows:
        raise HTTPException(status_code=404, detail="Compétence non trouvée dans votre profil")
    return rows[0]


@router.delete("/skills/{skill_id}", response_model=MessageResponse)
async def remove_skill(skill_id: str, user: dict = Depends(candidate_only)):
    rows = execute_raw_sql(
        "DELETE FROM candidate_skills WHERE user_id = :user_id AND skill_id = :skill_id RETURNING skill_id",
        {"user_id": user["id"], "skill_id": skill_id}
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Compétence non trouvée dans votre profil")
    return MessageResponse(message="Compétence supprimée")


# ============================================================
# AI DOCUMENTS
# ============================================================

def ai_http_error(e: AIServiceError) -> HTTPException:
    if isinstance(e, AINotConfiguredError):
        return HTTPException(status_code=503, detail="Service IA non disponible")
    return HTTPException(status_code=502, detail=str(e))


@router.post("/cv/generate")
async def generate_cv(user: dict = Depends(candidate_only)):
    """CV draft written from the current profile. Returned as text, not stored."""
    profile = load_profile(user["id"])
    try:
        content = await asyncio.to_thread(get_ai_client().generate_cv_content, profile)
    except AIServiceError as e:
        raise ai_http_error(e)
    logger.info("CV generated for %s", user["id"])
    return {"content": content, "message": "CV généré avec succès"}


@router.post("/lm/generate")
async def generate_cover_letter(data: CoverLetterRequest, user: dict = Depends(candidate_only)):
    """Cover letter for one offer, with the candidate's optional message worked in."""
    offers = execute_raw_sql("""
        SELECT o.id, o.title, o.description, o.city, o.contract_type, c.name AS company_name
        FROM job_offers o
        JOIN companies c ON c.id = o.company_id
        WHERE o.id = :id
    """, {"id": data.offer_id})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")
    offer = offers[0]
    offer["required_skills"] = [row["display_name"] for row in execute_raw_sql("""
        SELECT s.display_name
        FROM job_offer_skills jos
        JOIN skills s ON s.id = jos.skill_id
        WHERE jos.job_offer_id = :id AND jos.is_required
        ORDER BY jos.weight DESC, s.display_name
    """, {"id": data.offer_id})]

    profile = load_profile(user["id"])
    try:
        content = await asyncio.to_thread(
            get_ai_client().generate_cover_letter_content, profile, offer, data.custom_message
        )
    except AIServiceError as e:
        raise ai_http_error(e)
    logger.info("Cover letter generated for %s (offer %s)", user["id"], data.offer_id)
    return {"content": content, "offer_id": data.offer_id, "message": "Lettre de motivation générée avec succès"}


# ============================================================
# SAVED OFFERS
# ============================================================

@router.get("/saved-offers")
async def get_saved_offers(user: dict = Depends(candidate_only)):
    offers = execute_raw_sql("""
        SELECT o.id, o.title, o.city, o.contract_type, o.salary_min, o.salary_max, o.currency,
               o.status, o.published_at, c.name AS company_name, so.created_at AS saved_at
        FROM saved_offers so
        JOIN job_offers o ON o.id = so.offer_id
        JOIN companies c ON c.id = o.company_id
        WHERE so.user_id = :user_id
        ORDER BY so.created_at DESC
    """, {"user_id": user["id"]})
    return {"offers": offers, "total": len(offers)}


@router.post("/saved-offers/{offer_id}", response_model=MessageResponse, status_code=201)
async def save_offer(offer_id: str, user: dict = Depends(candidate_only)):
    offers = execute_raw_sql("SELECT id FROM job_offers WHERE id = :id", {"id": offer_id})
    if not offers:
        raise HTTPException(status_code=404, detail="Offre non trouvée")
    execute_raw_sql("""
        INSERT INTO saved_offers (user_id, offer_id) VALUES (:user_id, :offer_id)
        ON CONFLICT DO NOTHING
        RETURNING offer_id
    """, {"user_id": user["id"], "offer_id": offer_id})
    return MessageResponse(message="Offre sauvegardée")


@router.delete("/saved-offers/{offer_id}", response_model=MessageResponse)
async def unsave_offer(offer_id: str, user: dict = Depends(candidate_only)):
    execute_raw_sql(
        "DELETE FROM saved_offers WHERE user_id = :user_id AND offer_id = :offer_id RETURNING offer_id",
        {"user_id": user["id"], "offer_id": offer_id}
    )
    return MessageResponse(message="Offre retirée des favoris")
