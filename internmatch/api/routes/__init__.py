"""
API Routes - Combines all route modules into single router.
"""

from fastapi import APIRouter

from internmatch.api.routes.auth_routes import router as auth_router
from internmatch.api.routes.student_routes import router as student_router, me_router as student_me_router
from internmatch.api.routes.company_routes import router as company_router
from internmatch.api.routes.job_routes import router as job_router
from internmatch.api.routes.payway_routes import router as payway_router
from internmatch.api.routes.subscription_routes import router as subscription_router
from internmatch.api.routes.user_routes import router as user_router
from internmatch.api.routes.ai_routes import router as ai_router
from internmatch.api.routes.admin_routes import router as admin_router

# Main API router
api_router = APIRouter()

api_router.include_router(auth_router)
api_router.include_router(student_router)
api_router.include_router(student_me_router)
api_router.include_router(company_router)
api_router.include_router(job_router)
api_router.include_router(payway_router)
api_router.include_router(subscription_router)
api_router.include_router(user_router)
api_router.include_router(ai_router)
api_router.include_router(admin_router)
