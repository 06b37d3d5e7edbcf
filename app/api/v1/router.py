from fastapi import APIRouter

from . import auth, users, alerts, notifications, websocket

api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(alerts.router)
api_router.include_router(notifications.router)
api_router.include_router(websocket.router)


@api_router.get("/status")
async def api_status():
    """API status endpoint"""
    return {"status": "API is running", "version": "v1"}
