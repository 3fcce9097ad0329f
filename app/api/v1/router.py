from fastapi import APIRouter
from app.api.v1.endpoints import notifications

# ============================================================
# Main API v1 Router
# ============================================================

api_router = APIRouter()

api_router.include_router(
    notifications.router,
    prefix=""  # Routes define own prefix (/notifications)
)
