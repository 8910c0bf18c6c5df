"""
Record Store Schema

Creates (or drops) the tables backing the record store. Runs against
PostgreSQL or an insecure local CockroachDB node:

    python -m fedibox.database.schema [--drop]
"""

import argparse
import logging

from ..config import get_settings
from .connection import Database

logger = logging.getLogger(__name__)

TABLES = ("streams", "objects")

CREATE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS objects (
        _id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        id TEXT UNIQUE NOT NULL,
        document JSONB NOT NULL,
        meta JSONB,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS streams (
        _id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        seq BIGSERIAL,
        id TEXT UNIQUE NOT NULL,
        owner TEXT NOT NULL,
        document JSONB NOT NULL,
        meta JSONB,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );
    """,
    "CREATE INDEX IF NOT EXISTS streams_owner_seq_idx ON streams (owner, seq DESC);",
)


def drop_tables(db: Database):
    """Drop all record store tables."""
    for table in TABLES:
        db.execute(f"DROP TABLE IF EXISTS {table};")
    logger.info("Dropped record store tables")


def create_tables(db: Database):
    """Create the record store tables and indexes if missing."""
    for statement in CREATE_STATEMENTS:
        db.execute(statement)
    logger.info("Created record store tables")


def main():
    parser = argparse.ArgumentParser(description="Set up the fedibox record store")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    db = Database(settings.DATABASE_URL, pool_size=1)
    try:
        if args.drop:
            drop_tables(db)
        create_tables(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
