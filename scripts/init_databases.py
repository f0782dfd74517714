#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the classification tables and verify Redis connectivity.

Usage:
    python scripts/init_databases.py
    python scripts/init_databases.py --postgres-only
    python scripts/init_databases.py --redis-only

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_postgres() -> bool:
    """Create the core schema and the classification tables."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    import services.classification.models  # noqa: F401  registers tables on Base
    from shared.database.postgres import Base, PostgresClient

    logger.info("Initializing PostgreSQL...")

    health = await PostgresClient.health_check()
    if health["status"] != "healthy":
        logger.error(f"PostgreSQL unreachable: {health.get('error')}")
        await PostgresClient.close()
        return False
    logger.info(f"PostgreSQL reachable ({health['latency_ms']}ms)")

    try:
        engine = PostgresClient.get_engine()
        async with engine.begin() as conn:
            await conn.execute(text("CREATE SCHEMA IF NOT EXISTS core"))
            await conn.run_sync(Base.metadata.create_all)

            result = await conn.execute(text("SELECT version()"))
            version = result.scalar()
            logger.info(f"PostgreSQL connected: {version[:50]}...")

        logger.info(
            "PostgreSQL initialized successfully",
            tables=sorted(Base.metadata.tables),
        )
        return True

    except (SQLAlchemyError, OSError) as e:
        logger.error(f"PostgreSQL initialization failed: {e}")
        return False

    finally:
        await PostgresClient.close()


async def init_redis() -> bool:
    """Verify the Redis connection used for snapshot publishing."""
    from shared.database.redis import RedisClient

    logger.info("Initializing Redis...")

    health = await RedisClient.health_check()
    await RedisClient.close()

    if health["status"] != "healthy":
        logger.error(f"Redis initialization failed: {health.get('error')}")
        return False

    logger.info(f"Redis connected: v{health['redis_version']}")
    return True


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    logger.info("=" * 60)
    logger.info("Contractor OS Classification Database Initialization")
    logger.info("=" * 60)

    results = {}

    if args.all or args.postgres_only:
        results["PostgreSQL"] = await init_postgres()

    if args.all or args.redis_only:
        results["Redis"] = await init_redis()

    # Summary
    logger.info("=" * 60)
    logger.info("Initialization Summary")
    logger.info("=" * 60)

    failed = []
    for name, success in results.items():
        status = "✓ OK" if success else "✗ FAILED"
        logger.info(f"  {name}: {status}")
        if not success:
            failed.append(name)

    if failed:
        logger.error(f"\nFailed: {', '.join(failed)}")
        return 1

    logger.info("\nAll databases initialized successfully!")
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize classification databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--postgres-only",
        action="store_true",
        help="Initialize only PostgreSQL",
    )
    parser.add_argument(
        "--redis-only",
        action="store_true",
        help="Verify only Redis",
    )

    args = parser.parse_args()

    # If no specific database is selected, init all
    args.all = not (args.postgres_only or args.redis_only)

    return args


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
