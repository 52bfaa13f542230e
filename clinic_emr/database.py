"""MongoDB database connection manager."""

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from typing import Optional

from clinic_emr.config import settings
from clinic_emr.core.logging import logger


def document_models() -> list:
    """Every Beanie document the service persists."""
    from clinic_emr.features.auth.models import User
    from clinic_emr.features.patients.models import Patient
    from clinic_emr.features.invoices.models import Invoice
    from clinic_emr.features.referrals.models import Referral
    from clinic_emr.models.counter import Counter

    return [User, Patient, Counter, Invoice, Referral]


class Database:
    """MongoDB database connection manager."""

    client: Optional[AsyncIOMotorClient] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB and initialize Beanie."""
        cls.client = AsyncIOMotorClient(settings.MONGODB_URL)

        await init_beanie(
            database=cls.client[settings.DATABASE_NAME],
            document_models=document_models(),
        )

        logger.info(f"Connected to MongoDB database: {settings.DATABASE_NAME}")

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection."""
        if cls.client:
            cls.client.close()
            logger.info("Closed MongoDB connection")
