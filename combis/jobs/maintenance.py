"""
Maintenance Job: periodic closing of expired votes.

Runs as a scheduled job (cron or similar) next to the API. Each run:
1. Closes every open vote past its end date (plurality rule) and applies
   the approved outcomes
2. Purges push notifications older than the retention period

Typical cron schedule: */15 * * * * (every 15 minutes)
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import async_database_url, get_settings
from ..core.database import async_session_factory
from ..core.tasks import drain_background_tasks
from ..models import VoteStatus
from ..services.notification_gateway import NotificationGateway
from ..services.realtime import RealtimeNotificationService
from ..services.vote_engine import VoteEngine

logger = logging.getLogger(__name__)


async def run_maintenance_job(
    database_url: str | None = None,
    retention_days: int | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the maintenance job.

    Args:
        database_url: Database connection string (defaults to the app engine)
        retention_days: Push notification retention (defaults to settings)
        session_factory: Explicit session factory, takes precedence over the URL

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting maintenance job at {start_time.isoformat()}")

    engine = None
    if session_factory is None and database_url:
        engine = create_async_engine(async_database_url(database_url))
        session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    session_factory = session_factory or async_session_factory

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "votes_closed": 0,
        "votes_approved": 0,
        "notifications_purged": 0,
    }

    try:
        # Step 1: Close expired votes
        async with session_factory() as session:
            async with session.begin():
                vote_engine = VoteEngine(
                    session,
                    notifier=NotificationGateway(session_factory=session_factory),
                )
                closed = await vote_engine.close_expired_votes()

        results["votes_closed"] = len(closed)
        results["votes_approved"] = sum(1 for c in closed if c.statut == VoteStatus.APPROUVE)
        logger.info(f"Closed {len(closed)} expired votes, {results['votes_approved']} approved")

        # Step 2: Purge old push notifications (separate transaction)
        async with session_factory() as session:
            async with session.begin():
                service = RealtimeNotificationService(session)
                results["notifications_purged"] = await service.purge_older_than(retention_days)

        # Notifications spawned by closing votes still need the engine
        await drain_background_tasks()

    except Exception as e:
        logger.error(f"Maintenance job failed: {e}")
        raise

    finally:
        if engine is not None:
            await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Maintenance job completed in {results['duration_seconds']:.2f}s: "
        f"{results['votes_closed']} votes closed, "
        f"{results['notifications_purged']} notifications purged"
    )
    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the maintenance job."""
    import argparse

    parser = argparse.ArgumentParser(description="Close expired votes and purge old notifications")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database connection string (defaults to the application settings)",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=get_settings().notification_retention_days,
        help="Delete push notifications older than this many days",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_maintenance_job(
            database_url=args.database_url,
            retention_days=args.retention_days,
        ))
    except Exception as e:
        logger.error(f"Job failed: {e}")
        raise SystemExit(1)

    logger.info(f"Job completed: {results}")


if __name__ == "__main__":
    main()
