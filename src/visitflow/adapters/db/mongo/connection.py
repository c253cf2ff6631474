"""
MongoDB connection and Beanie registration shared by the API and the sweeper.
"""

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from visitflow.core.config import DatabaseSettings

from .models.visit_m import DOCUMENT_MODELS


def create_motor_client(database: DatabaseSettings) -> AsyncIOMotorClient:
    # Enable TLS only for Atlas SRV URIs
    if database.uri.startswith("mongodb+srv://"):
        return AsyncIOMotorClient(
            database.uri,
            serverSelectionTimeoutMS=database.server_selection_timeout_ms,
            tls=True,
            tlsCAFile=certifi.where(),
            tlsAllowInvalidCertificates=False,
        )
    # Local/standard connection (no TLS)
    return AsyncIOMotorClient(
        database.uri,
        serverSelectionTimeoutMS=database.server_selection_timeout_ms,
    )


async def init_database(database: DatabaseSettings) -> AsyncIOMotorClient:
    """Connect motor and register the Beanie document models. Returns the client."""
    client = create_motor_client(database)
    await init_beanie(database=client[database.db_name], document_models=DOCUMENT_MODELS)
    return client
