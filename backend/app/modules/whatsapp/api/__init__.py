"""
WhatsApp Module - API Router
Combines all routes from this module for easy registration in main.py
"""
from fastapi import APIRouter
from app.modules.whatsapp.api import whatsapp_endpoints

# Create module router
router = APIRouter()

router.include_router(
    whatsapp_endpoints.router,
    prefix="/whatsapp",
    tags=["WhatsApp"]
)
