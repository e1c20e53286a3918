"""
Admin Company Management Routes (role ADMIN)

GET /admin/companies-management/pending - Companies awaiting validation (paged)
GET /admin/companies-management/stats - Companies by status
GET /admin/companies-management - All companies (search / status)
GET /admin/companies-management/{company_id} - Company with its main recruiter
PATCH /admin/companies-management/{company_id}/approve - Approve, notify recruiter
PATCH /admin/companies-management/{company_id}/reject - Reject with reason, notify recruiter
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from app.core.auth import require_role
from app.services import company_service
from app.schemas.schemas import CompanyRejectRequest, CompanyStatus

router = APIRouter(prefix="/admin/companies-management", tags=["Admin Companies"])

admin_only = require_role("ADMIN")


def main_recruiter(company_id: str) -> Optional[dict]:
    recruiters = company_service.get_company_recruiters(company_id)
    admins_rh = [r for r in recruiters if r["role_in_company"] == "ADMIN_RH"]
    return (admins_rh or recruiters or [None])[0]


@router.get("/pending")
async def pending_companies(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(admin_only)
):
    companies = company_service.get_pending_companies(limit, offset)
    total = company_service.get_company_stats()["pending"]
    return {
        "success": True,
        "data": companies,
        "pagination": {"total": total, "limit": limit, "offset": offset, "pages": (total + limit - 1) // limit}
    }


@router.get("/stats")
async def company_stats(admin: dict = Depends(admin_only)):
    return {"success": True, "data": company_service.get_company_stats()}


@router.get("")
async def list_companies(
    search: Optional[str] = Query(None),
    status: Optional[CompanyStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(admin_only)
):
    result = company_service.list_companies(search, status.value if status else None, limit, offset)
    return {
        "success": True,
        "data": result["companies"],
        "pagination": {"total": result["total"], "limit": limit, "offset": offset}
    }


@router.get("/{company_id}")
async def get_company(company_id: str, admin: dict = Depends(admin_only)):
    company = company_service.get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Entreprise non trouvée")
    company["recruiter"] = main_recruiter(company_id)
    return {"success": True, "data": company}


@router.patch("/{company_id}/approve")
async def approve_company(company_id: str, admin: dict = Depends(admin_only)):
    """Recruiters of the company receive a COMPANY_APPROVED notification."""
    company = company_service.set_company_status(company_id, "VERIFIED", actor_id=admin["id"], action="approve")
    if not company:
        raise HTTPException(status_code=404, detail="Entreprise non trouvée")
    return {"success": True, "data": company, "message": "Entreprise approuvée avec succès"}


@router.patch("/{company_id}/reject")
async def reject_company(company_id: str, request: CompanyRejectRequest, admin: dict = Depends(admin_only)):
    company = company_service.set_company_status(
        company_id, "REJECTED", request.reason, actor_id=admin["id"], action="reject"
    )
    if not company:
        raise HTTPException(status_code=404, detail="Entreprise non trouvée")
    return {"success": True, "data": company, "message": "Entreprise rejetée"}
