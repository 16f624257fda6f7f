"""
Celery Tasks
Background housekeeping for the POS sync log.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from posbridge.celery_worker import celery_app
from posbridge.core.config import get_settings
from posbridge.database import utcnow
from posbridge.models import PosSyncLog

logger = logging.getLogger(__name__)


async def delete_sync_logs_older_than(
    db: AsyncSession,
    days: int,
    now: Optional[datetime] = None,
) -> int:
    """Delete sync log rows created more than ``days`` days ago; returns the count."""
    cutoff = (now or utcnow()) - timedelta(days=days)
    result = await db.execute(delete(PosSyncLog).where(PosSyncLog.created_at < cutoff))
    await db.commit()
    return result.rowcount or 0


async def _purge(days: int) -> int:
    # Each task run gets its own event loop, so it also gets its own engine
    engine = create_async_engine(get_settings().sqlalchemy_url)
    try:
        session_maker = async_sessionmaker(bind=engine, expire_on_commit=False)
        async with session_maker() as session:
            return await delete_sync_logs_older_than(session, days)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def purge_sync_logs(self, days: Optional[int] = None) -> dict:
    """
    Time-based retention sweep of ``pos_sync_logs``.

    Args:
        days: Keep this many days of history (defaults to SYNC_LOG_RETENTION_DAYS)

    Returns:
        dict: Number of deleted rows and timing
    """
    task_id = self.request.id
    days = days if days is not None else get_settings().sync_log_retention_days

    logger.info(f"🧹 Task {task_id}: purging sync logs older than {days} days")
    start_time = time.time()

    try:
        deleted = asyncio.run(_purge(days))
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: purge failed after {elapsed}s - {str(e)}")
        # Celery will auto-retry based on configuration
        raise

    elapsed = round(time.time() - start_time, 3)
    logger.info(f"✅ Task {task_id}: deleted {deleted} sync log row(s) in {elapsed}s")
    return {
        'success': True,
        'deleted': deleted,
        'retention_days': days,
        'task_id': task_id,
        'processing_time_seconds': elapsed,
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': utcnow().isoformat()
    }
