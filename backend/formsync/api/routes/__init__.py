"""API Routes module"""
from fastapi import APIRouter

from .auth import router as auth_router
from .airtable import router as airtable_router
from .forms import router as forms_router
from .responses import router as responses_router
from .webhooks import router as webhooks_router

# Main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(auth_router, prefix="/auth", tags=["Auth"])
api_router.include_router(airtable_router, prefix="/airtable", tags=["Airtable"])
api_router.include_router(forms_router, prefix="/forms", tags=["Forms"])
api_router.include_router(responses_router, tags=["Responses"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])

__all__ = ["api_router"]
