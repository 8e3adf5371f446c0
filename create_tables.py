"""
Database table creation script for Identity Reconciliation API
This script creates all database tables and tests the database connection.
Run this script after setting up your database to initialize the schema.
"""

import asyncio
import logging
import sys

from sqlalchemy import func, select

from database import db_manager
from models import Contact

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_tables() -> bool:
    """
    Create all database tables defined in the models
    """
    logger.info("Starting database table creation...")

    try:
        if not await db_manager.test_connection():
            logger.error("Database connection failed - cannot create tables")
            return False

        await db_manager.create_tables()

        async with db_manager.transaction() as session:
            count = await session.scalar(select(func.count()).select_from(Contact))
            logger.info(f"Contacts table accessible - current count: {count}")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        return False
    finally:
        await db_manager.dispose()

    return True


def main():
    """Main function to run the table creation"""
    logger.info("Identity Reconciliation API - Database Setup")

    success = asyncio.run(create_tables())

    if success:
        logger.info("Database setup completed successfully!")
        logger.info("You can now start the API server with: python main.py")
    else:
        logger.error("Database setup failed!")
        logger.error("Please check your database configuration and try again")

    return success


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
