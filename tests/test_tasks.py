"""
Tests for the sync log retention sweep.
"""

from datetime import timedelta

from sqlalchemy import select

from posbridge.database import utcnow
from posbridge.models import PosSyncLog, SyncLogStatus
from posbridge.tasks import delete_sync_logs_older_than, health_check


async def test_purge_keeps_recent_rows(db, tenant):
    now = utcnow()
    db.add_all([
        PosSyncLog(tenant_id=tenant.id, event_type="print_acknowledgment",
                   status=SyncLogStatus.SUCCESS, created_at=now - timedelta(days=45)),
        PosSyncLog(tenant_id=tenant.id, event_type="print_acknowledgment",
                   status=SyncLogStatus.FAILED, created_at=now - timedelta(days=31)),
        PosSyncLog(tenant_id=tenant.id, event_type="pos_ping",
                   status=SyncLogStatus.RECEIVED, created_at=now - timedelta(days=2)),
    ])
    await db.commit()

    deleted = await delete_sync_logs_older_than(db, 30, now=now)

    assert deleted == 2
    result = await db.execute(select(PosSyncLog.event_type))
    assert result.scalars().all() == ["pos_ping"]


def test_health_check_task():
    result = health_check()

    assert result["status"] == "healthy"
    assert result["worker"] == "celery"
