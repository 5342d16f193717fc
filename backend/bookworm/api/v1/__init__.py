from fastapi import APIRouter
from bookworm.api.v1 import matches, calls, webhooks, cron

router = APIRouter()

router.include_router(matches.router, prefix="/matches", tags=["matches"])
router.include_router(calls.router, prefix="/spaces", tags=["calls"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
router.include_router(cron.router, prefix="/cron", tags=["cron"])
