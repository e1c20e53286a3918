"""
Company Routes (recruiter side)

GET /companies/my-companies - Companies the recruiter belongs to
GET /companies/{company_id} - Company details with recruiters
PUT /companies/{company_id} - Update company profile
GET /companies/{company_id}/status - Validation status
POST /companies/{company_id}/contest-rejection - Contest a rejection (REJECTED only)
"""

import logging

from fastapi import APIRouter, HTTPException, Depends

from app.core.auth import require_role, has_company_access
from app.services import company_service
from app.services.notification_service import notify_admins
from app.schemas.schemas import CompanyUpdate, ContestRejectionRequest, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/companies", tags=["Companies"])

recruiter_only = require_role("RECRUITER")


def get_member_company(company_id: str, user: dict) -> dict:
    if not has_company_access(user, company_id):
        raise HTTPException(status_code=403, detail="Accès refusé")
    company = company_service.get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Entreprise non trouvée")
    return company


@router.get("/my-companies")
async def my_companies(user: dict = Depends(recruiter_only)):
    return {"success": True, "data": company_service.get_user_companies(user["id"])}


@router.get("/{company_id}")
async def get_company(company_id: str, user: dict = Depends(recruiter_only)):
    company = get_member_company(company_id, user)
    company["recruiters"] = company_service.get_company_recruiters(company_id)
    return {"success": True, "data": company}


@router.put("/{company_id}")
async def update_company(company_id: str, data: CompanyUpdate, user: dict = Depends(recruiter_only)):
    get_member_company(company_id, user)
    company = company_service.update_company(company_id, data.model_dump(exclude_none=True))
    return {"success": True, "message": "Entreprise mise à jour", "data": company}


@router.get("/{company_id}/status")
async def company_status(company_id: str, user: dict = Depends(recruiter_only)):
    company = get_member_company(company_id, user)
    return {"success": True, "data": {
        "id": company["id"],
        "name": company["name"],
        "status": company["status"],
        "created_at": company["created_at"],
        "validated_at": company["validated_at"],
        "validation_reason": company["validation_reason"]
    }}


@router.post("/{company_id}/contest-rejection", response_model=MessageResponse)
async def contest_rejection(company_id: str, request: ContestRejectionRequest,
                            user: dict = Depends(recruiter_only)):
    """Send the admins a COMPANY_CONTEST notification for a rejected company."""
    company = get_member_company(company_id, user)
    if company["status"] != "REJECTED":
        raise HTTPException(status_code=400, detail="Seules les entreprises rejetées peuvent contester")

    notify_admins("COMPANY_CONTEST", {
        "company_id": str(company_id),
        "company_name": company["name"],
        "user_id": str(user["id"]),
        "user_name": user["name"],
        "message": request.message
    })
    logger.info("Rejection contested for company %s by %s", company_id, user["email"])
    return MessageResponse(
        message="Votre contestation a été envoyée. Notre équipe l'examinera dans les 24 heures."
    )
