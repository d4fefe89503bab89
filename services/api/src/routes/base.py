from fastapi import APIRouter
from utils import log

from .admin import router as admin_router
from .auctions import router as auctions_router
from .bids import router as bids_router
from .payments import router as payments_router
from .purchases import router as purchases_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(bids_router)
router.include_router(purchases_router)
router.include_router(auctions_router)
router.include_router(admin_router)
router.include_router(payments_router)


@router.get("/health", tags=["health"])
async def route_health():
    return {"status": "ok"}
