from fastapi import APIRouter

from src.api.admin.routes.cash_register_routes import router as cash_register_router

router = APIRouter()

router.include_router(cash_register_router)
