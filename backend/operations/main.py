import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.database import close_mongo_connection, connect_to_mongo
from .core.exceptions import ServiceError
from .core.logging_config import setup_logging
from .api.api import api_router
from .services.background import event_processor, interaction_processor, mailbox_synchronizer
from .services.event_service import event_service
from .services.interaction_service import interaction_service

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8080",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8080"
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render service errors as problem documents"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem(),
        media_type="application/problem+json"
    )


@app.get("/")
async def root():
    return {
        "message": f"Welcome to the {settings.PROJECT_NAME} API",
        "version": settings.VERSION,
        "docs": f"{settings.API_V1_STR}/docs"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION
    }


@app.on_event("startup")
async def startup_event():
    setup_logging(
        level=settings.LOG_LEVEL,
        graylog_host=settings.GRAYLOG_HOST,
        graylog_port=settings.GRAYLOG_PORT,
        container_name=settings.INSTANCE_NAME
    )
    await connect_to_mongo()

    if settings.ENABLE_BACKGROUND_PROCESSING:
        event_service.add_listener(event_processor.trigger)
        interaction_service.add_listener(interaction_processor.trigger)
        await event_processor.start()
        await interaction_processor.start()
        if settings.ENABLE_MAILBOX_SYNCHRONIZATION:
            await mailbox_synchronizer.start()

    logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} ready")


@app.on_event("shutdown")
async def shutdown_event():
    if settings.ENABLE_BACKGROUND_PROCESSING:
        event_service.remove_listener(event_processor.trigger)
        interaction_service.remove_listener(interaction_processor.trigger)
        await event_processor.stop()
        await interaction_processor.stop()
        if settings.ENABLE_MAILBOX_SYNCHRONIZATION:
            await mailbox_synchronizer.stop()
    await close_mongo_connection()


app.include_router(api_router, prefix=settings.API_V1_STR)
