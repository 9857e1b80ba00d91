from fastapi import APIRouter

from pedimento.api.v1 import health, pedimentos

api_router = APIRouter()

api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(pedimentos.router, prefix="/v1/pedimentos", tags=["pedimentos"])
