"""
API Routes
"""
from fastapi import APIRouter

from pharmadispatch.api.routes.pricing import router as pricing_router
from pharmadispatch.api.routes.orders import router as orders_router
from pharmadispatch.api.routes.deliveries import router as deliveries_router
from pharmadispatch.api.routes.couriers import router as couriers_router
from pharmadispatch.api.routes.wallets import router as wallets_router
from pharmadispatch.api.routes.settings import router as settings_router

router = APIRouter()

router.include_router(pricing_router, prefix="/pricing", tags=["pricing"])
router.include_router(orders_router, prefix="/orders", tags=["orders"])
router.include_router(deliveries_router, prefix="/deliveries", tags=["deliveries"])
router.include_router(couriers_router, prefix="/couriers", tags=["couriers"])
router.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
router.include_router(settings_router, prefix="/settings", tags=["settings"])
