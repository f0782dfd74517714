"""
Database Module
===============

Async database clients.

Clients:
- PostgreSQL (asyncpg + SQLAlchemy): factors, assessments, upstream reads
- Redis (redis.asyncio): published risk summary

Usage:
    from shared.database import postgres_session

    async with postgres_session() as db:
        history = await recorder.history(db, contractor_id)
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
    postgres_session,
)
from shared.database.redis import RedisClient


__all__ = [
    # PostgreSQL
    "postgres_session",
    "PostgresClient",
    "Base",
    # Redis
    "RedisClient",
]
