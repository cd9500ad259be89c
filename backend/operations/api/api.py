from fastapi import APIRouter

from .endpoints import documents, interactions, workflows

api_router = APIRouter()

api_router.include_router(documents.router, prefix="/documents", tags=["documents"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["workflows"])
api_router.include_router(interactions.router, prefix="/interactions", tags=["interactions"])
