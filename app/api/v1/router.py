from fastapi import APIRouter
from app.api.v1.endpoints import trial, telnyx, cron, billing

api_router = APIRouter()
api_router.include_router(trial.router, prefix="/trial", tags=["trial"])
api_router.include_router(telnyx.router, prefix="/telnyx", tags=["telnyx"])
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
