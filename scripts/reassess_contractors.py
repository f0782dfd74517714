#!/usr/bin/env python3
"""
Batch Reassessment Script
=========================

Reassess every active contractor and publish a fresh risk summary.
Intended to run daily from a scheduler.

Usage:
    python scripts/reassess_contractors.py
    python scripts/reassess_contractors.py --organization <uuid>
    python scripts/reassess_contractors.py --max-concurrent 4 --time-budget 600

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.config import settings
from shared.logging import get_logger, setup_logging

setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="classification-batch",
)
logger = get_logger(__name__)


async def main(args: argparse.Namespace) -> int:
    """Run the batch and report the outcome."""
    from services.classification.errors import ClassificationError
    from services.classification.repository import ClassificationRepository
    from services.classification.services import (
        AggregateViewBuilder,
        AssessmentRecorder,
        BatchReassessor,
        FactorDeriver,
        FactorStore,
        get_snapshot_store,
    )
    from services.classification.sources import (
        SqlContractorRegistry,
        SqlEngagementRegistry,
        SqlTimeTrackingSource,
    )
    from shared.database import PostgresClient, RedisClient

    config = settings.classification
    try:
        store = get_snapshot_store(config, shared=True)
    except ValueError as e:
        logger.error("batch_reassessment_misconfigured", error=str(e))
        return 1

    repository = ClassificationRepository()
    contractors = SqlContractorRegistry()
    time_tracking = SqlTimeTrackingSource()
    engagements = SqlEngagementRegistry()

    factor_store = FactorStore(repository)
    recorder = AssessmentRecorder(
        factor_store,
        FactorDeriver(factor_store, time_tracking, engagements),
        contractors,
        repository=repository,
        config=config,
    )
    builder = AggregateViewBuilder(
        contractors,
        time_tracking,
        engagements,
        store=store,
        repository=repository,
        config=config,
    )
    reassessor = BatchReassessor(
        recorder,
        builder,
        contractors,
        config=config,
        max_concurrent=args.max_concurrent,
        time_budget_seconds=args.time_budget,
    )

    try:
        result = await reassessor.run(organization_id=args.organization)
    except ClassificationError as e:
        logger.error("batch_reassessment_aborted", **e.to_dict())
        return 1
    finally:
        await PostgresClient.close()
        await RedisClient.close()

    logger.info("=" * 60)
    logger.info("Reassessment Summary")
    logger.info("=" * 60)
    logger.info(f"  Contractors: {result.contractors_total}")
    logger.info(f"  Succeeded:   {result.succeeded}")
    logger.info(f"  Failed:      {result.failed}")
    logger.info(f"  Timed out:   {result.timed_out}")
    for level, count in result.counts_by_risk_level.items():
        logger.info(f"  {level.value:<12} {count}")

    if result.aggregate_error:
        logger.error(f"Aggregate rebuild failed: {result.aggregate_error}")
        return 1

    logger.info(f"Published snapshot v{result.snapshot_version}")
    return 0 if not (result.failed or result.timed_out) else 2


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Reassess active contractors and rebuild the risk summary",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--organization",
        default=None,
        help="Only reassess contractors of this organization",
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Concurrent assessments (default: CLASSIFICATION_BATCH_MAX_CONCURRENT)",
    )
    parser.add_argument(
        "--time-budget",
        type=float,
        default=None,
        help="Overall time budget in seconds (default: CLASSIFICATION_BATCH_TIME_BUDGET_SECONDS)",
    )

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
