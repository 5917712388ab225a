from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.shared.core.config import settings
from app.shared.core.logging import setup_logging
from app.shared.middleware.correlation import CorrelationIdMiddleware
from app.shared.utils.http_client import startup_http_client, shutdown_http_client
from app.modules.realtime.services.notification_service import notification_manager
from app.modules.whatsapp.services.webhook_service import drain_ai_turns
from app.modules.whatsapp import api as whatsapp_api
from app.modules.realtime import api as realtime_api


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await startup_http_client()
    notification_manager.startup()
    yield
    await drain_ai_turns()
    await notification_manager.shutdown()
    await shutdown_http_client()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGIN.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# WhatsApp webhook, messaging, conversations and AI agent
app.include_router(whatsapp_api.router, prefix=settings.API_V1_STR)

# WebSocket gateway (/ws) and realtime status
app.include_router(realtime_api.router)


@app.get("/")
def root():
    return {"message": "WhatsApp Engagement API is running"}
