"""
Realtime Module - API Router
WebSocket endpoint (/ws) and the realtime status API.
"""
from fastapi import APIRouter
from app.modules.realtime.api import websocket_endpoints

router = APIRouter()

router.include_router(websocket_endpoints.router, tags=["Realtime"])
