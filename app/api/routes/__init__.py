"""
API Routes - Combines all route modules into single router.
"""

from fastapi import APIRouter

from app.api.routes.auth_routes import router as auth_router
from app.api.routes.candidate_routes import router as candidate_router
from app.api.routes.cv_analysis_routes import router as cv_analysis_router
from app.api.routes.offer_routes import router as offer_router
from app.api.routes.application_routes import router as application_router
from app.api.routes.recruiter_routes import router as recruiter_router
from app.api.routes.company_routes import router as company_router
from app.api.routes.notification_routes import router as notification_router
from app.api.routes.skill_routes import router as skill_router
from app.api.routes.admin_routes import router as admin_router
from app.api.routes.admin_company_routes import router as admin_company_router
from app.api.routes.admin_offer_routes import router as admin_offer_router

# Main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(auth_router)
api_router.include_router(candidate_router)
api_router.include_router(cv_analysis_router)
api_router.include_router(offer_router)
api_router.include_router(application_router)
api_router.include_router(recruiter_router)
api_router.include_router(company_router)
api_router.include_router(notification_router)
api_router.include_router(skill_router)
api_router.include_router(admin_router)
api_router.include_router(admin_company_router)
api_router.include_router(admin_offer_router)
