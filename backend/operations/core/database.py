import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from ..core.config import settings
from ..models.document import (
    DocumentDefinitionCategory,
    DocumentTemplate,
    DocumentDefinition,
    DocumentModel,
    DocumentNote,
    ExternalReferenceType
)
from ..models.workflow import (
    WorkflowEngine,
    WorkflowDefinitionCategory,
    WorkflowDefinition,
    Workflow,
    WorkflowDocument,
    WorkflowNote,
    WorkflowInteractionLink
)
from ..models.interaction import (
    InteractionSource,
    Interaction,
    InteractionAttachment,
    InteractionNote
)
from ..models.event import Event

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [
    DocumentDefinitionCategory,
    DocumentTemplate,
    DocumentDefinition,
    DocumentModel,
    DocumentNote,
    ExternalReferenceType,
    WorkflowEngine,
    WorkflowDefinitionCategory,
    WorkflowDefinition,
    Workflow,
    WorkflowDocument,
    WorkflowNote,
    WorkflowInteractionLink,
    InteractionSource,
    Interaction,
    InteractionAttachment,
    InteractionNote,
    Event,
]


class Database:
    client: Optional[AsyncIOMotorClient] = None
    database = None


database = Database()


async def init_database(db):
    """Initialize Beanie with the operations models on the given database"""
    await init_beanie(database=db, document_models=DOCUMENT_MODELS)


async def connect_to_mongo():
    """Create database connection"""
    database.client = AsyncIOMotorClient(settings.MONGODB_URL)
    database.database = database.client[settings.MONGODB_DB_NAME]

    await init_database(database.database)

    logger.info(f"Connected to MongoDB: {settings.MONGODB_URL}")


async def close_mongo_connection():
    """Close database connection"""
    if database.client:
        database.client.close()
        logger.info("Disconnected from MongoDB")


async def get_database():
    """Get database instance"""
    return database.database
