"""
Skill Routes

GET /skills/search?q= - Search the referential (q >= 2 chars)
GET /skills - Whole referential
GET /skills/top - Most used skills in offers
POST /skills - Add a skill to the referential
POST /skills/extract - Extract skills from a job description
"""

from fastapi import APIRouter, HTTPException, Depends, Query

from app.core.auth import get_current_user
from app.services import skills_service
from app.schemas.schemas import SkillCreate, SkillExtractRequest

router = APIRouter(prefix="/skills", tags=["Skills"])


@router.get("/search")
async def search_skills(
    q: str = Query(""),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user)
):
    try:
        skills = skills_service.search_skills(q, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"skills": skills}


@router.get("")
async def list_skills(user: dict = Depends(get_current_user)):
    return {"skills": skills_service.get_all_skills()}


@router.get("/top")
async def top_skills(limit: int = Query(20, ge=1, le=100), user: dict = Depends(get_current_user)):
    return {"skills": skills_service.get_top_skills(limit)}


@router.post("", status_code=201)
async def create_skill(data: SkillCreate, user: dict = Depends(get_current_user)):
    """A duplicate slug is answered 409 by the integrity error handler."""
    if len(data.display_name.strip()) < 2:
        raise HTTPException(status_code=400, detail="Le nom de la compétence est requis (minimum 2 caractères)")
    try:
        skill = skills_service.create_skill(data.display_name, data.category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Compétence créée", "skill": skill}


@router.post("/extract")
async def extract_skills(request: SkillExtractRequest, user: dict = Depends(get_current_user)):
    return skills_service.extract_skills_for_matching(request.description, request.title)
