"""
POS Health / Alerting Aggregator

Pure read-side summaries for the admin dashboard: device liveness, orders
that have not printed, failed prints and recent sync log activity. Everything
is recomputed from the stored rows on each call; there is no background
job and no cached state.

Aggregations are done in Python over the selected rows so the same code runs
on PostgreSQL and SQLite.
"""

import logging
from datetime import datetime, timedelta
from statistics import mean
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from posbridge.core.config import get_settings
from posbridge.core.exceptions import NotFoundError
from posbridge.database import utcnow
from posbridge.models import Order, PosDevice, PosSyncLog, PrintStatus, Tenant
from posbridge.services.delivery.payload import to_iso

logger = logging.getLogger(__name__)

DEVICE_ONLINE = "online"
DEVICE_OFFLINE = "offline"
DEVICE_DISABLED = "disabled"

SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"

UNPRINTED_STATUSES = (PrintStatus.PENDING, PrintStatus.SENT_TO_POS)

PERIODS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_PERIOD = "24h"
LOW_BROADCAST_RATE_PERCENT = 90.0
RECENT_FAILURES_LIMIT = 10
TOP_DEVICES_LIMIT = 10
RECENT_EVENTS_LIMIT = 10


def classify_device(
    device: PosDevice,
    now: datetime,
    online_window: Optional[timedelta] = None,
) -> str:
    """
    ``disabled`` if inactive, ``online`` if seen within the window
    (10 minutes by default), otherwise ``offline``.
    """
    if not device.is_active:
        return DEVICE_DISABLED
    if online_window is None:
        online_window = timedelta(minutes=get_settings().device_online_window_minutes)
    if device.last_seen_at is not None and device.last_seen_at > now - online_window:
        return DEVICE_ONLINE
    return DEVICE_OFFLINE


def _minutes_between(earlier: datetime, later: datetime) -> int:
    return int((later - earlier).total_seconds() // 60)


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class HealthAggregator:
    """
    Args:
        db: Session used for reads only
        now: Fixed "current time" (naive UTC); defaults to the real clock
    """

    def __init__(self, db: AsyncSession, now: Optional[datetime] = None):
        settings = get_settings()
        self.db = db
        self.now = now
        self.online_window = timedelta(minutes=settings.device_online_window_minutes)
        self.unprinted_threshold = timedelta(minutes=settings.unprinted_alert_minutes)

    def _current_time(self) -> datetime:
        return self.now or utcnow()

    async def _resolve_tenant(self, tenant_slug: Optional[str]) -> Optional[Tenant]:
        if not tenant_slug:
            return None
        result = await self.db.execute(select(Tenant).where(Tenant.slug == tenant_slug))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found", {"tenant": tenant_slug})
        return tenant

    async def _devices(self, tenant: Optional[Tenant]) -> list[tuple[PosDevice, Tenant]]:
        query = (
            select(PosDevice, Tenant)
            .join(Tenant, PosDevice.tenant_id == Tenant.id)
            .order_by(PosDevice.tenant_id, PosDevice.created_at.desc())
        )
        if tenant is not None:
            query = query.where(PosDevice.tenant_id == tenant.id)
        result = await self.db.execute(query)
        return [(device, owner) for device, owner in result.all()]

    async def _orders(self, tenant: Optional[Tenant], *conditions) -> list[tuple[Order, Tenant]]:
        query = select(Order, Tenant).join(Tenant, Order.tenant_id == Tenant.id).where(*conditions)
        if tenant is not None:
            query = query.where(Order.tenant_id == tenant.id)
        result = await self.db.execute(query)
        return [(order, owner) for order, owner in result.all()]

    # =========================================================================
    # HEALTH REPORT
    # =========================================================================

    async def compute_health(self, tenant_slug: Optional[str] = None) -> dict[str, Any]:
        """
        Device statuses, alerts and counts.

        Raises:
            NotFoundError: ``tenant_slug`` given but unknown
        """
        tenant = await self._resolve_tenant(tenant_slug)
        now = self._current_time()
        stamp = to_iso(now)

        devices = []
        for device, owner in await self._devices(tenant):
            offline_minutes = (
                _minutes_between(device.last_seen_at, now) if device.last_seen_at else None
            )
            devices.append({
                "device_id": device.device_id,
                "device_name": device.device_name,
                "tenant_name": owner.name,
                "tenant_slug": owner.slug,
                "is_active": device.is_active,
                "status": classify_device(device, now, self.online_window),
                "last_seen": to_iso(device.last_seen_at),
                "last_heartbeat": to_iso(device.last_heartbeat_at),
                "offline_duration_minutes": offline_minutes,
                "created_at": to_iso(device.created_at),
            })

        unprinted_rows = await self._orders(
            tenant,
            Order.created_at >= now - timedelta(hours=24),
            Order.print_status.in_(UNPRINTED_STATUSES),
        )
        unprinted_rows.sort(key=lambda row: row[0].created_at, reverse=True)

        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        failed_rows = await self._orders(
            tenant,
            Order.created_at >= today_start,
            Order.print_status == PrintStatus.FAILED,
        )
        failed_rows.sort(key=lambda row: row[0].print_status_updated_at or row[0].created_at, reverse=True)

        alerts = []
        for device in devices:
            if device["is_active"] and device["status"] == DEVICE_OFFLINE:
                duration = device["offline_duration_minutes"]
                alerts.append({
                    "type": "device_offline",
                    "severity": SEVERITY_HIGH,
                    "message": (
                        f"{device['device_name']} ({device['tenant_name']}) has been offline for "
                        + (f"{duration} minutes" if duration is not None else "an unknown time (never seen)")
                    ),
                    "device_id": device["device_id"],
                    "tenant": device["tenant_slug"],
                    "timestamp": stamp,
                })

        unprinted_orders = []
        for order, owner in unprinted_rows:
            age = now - order.created_at
            unprinted_orders.append({
                "id": order.id,
                "order_number": order.order_number,
                "created_at": to_iso(order.created_at),
                "print_status": order.print_status.value,
                "tenant_name": owner.name,
                "tenant_slug": owner.slug,
            })
            if age > self.unprinted_threshold:
                age_minutes = _minutes_between(order.created_at, now)
                alerts.append({
                    "type": "unprinted_order",
                    "severity": SEVERITY_CRITICAL,
                    "message": (
                        f"Order {order.order_number} ({owner.name}) has not been printed "
                        f"for {age_minutes} minutes"
                    ),
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "tenant": owner.slug,
                    "age_minutes": age_minutes,
                    "timestamp": stamp,
                })

        failed_prints = []
        for order, owner in failed_rows:
            failed_prints.append({
                "id": order.id,
                "order_number": order.order_number,
                "created_at": to_iso(order.created_at),
                "last_print_error": order.last_print_error,
                "last_pos_device_id": order.last_pos_device_id,
                "tenant_name": owner.name,
                "tenant_slug": owner.slug,
            })
            alerts.append({
                "type": "print_failed",
                "severity": SEVERITY_HIGH,
                "message": (
                    f"Order {order.order_number} ({owner.name}) failed to print: "
                    f"{order.last_print_error or 'Unknown error'}"
                ),
                "order_id": order.id,
                "order_number": order.order_number,
                "device_id": order.last_pos_device_id,
                "tenant": owner.slug,
                "error": order.last_print_error,
                "timestamp": stamp,
            })

        stats = {
            "total_devices": len(devices),
            "online_devices": sum(1 for d in devices if d["status"] == DEVICE_ONLINE),
            "offline_devices": sum(1 for d in devices if d["status"] == DEVICE_OFFLINE),
            "disabled_devices": sum(1 for d in devices if d["status"] == DEVICE_DISABLED),
            "unprinted_orders": len(unprinted_orders),
            "failed_prints_today": len(failed_prints),
            "critical_alerts": sum(1 for a in alerts if a["severity"] == SEVERITY_CRITICAL),
            "high_alerts": sum(1 for a in alerts if a["severity"] == SEVERITY_HIGH),
        }

        if alerts:
            logger.info(
                f"POS health for {tenant_slug or 'all'}: "
                f"{stats['critical_alerts']} critical, {stats['high_alerts']} high alert(s)"
            )

        return {
            "success": True,
            "timestamp": stamp,
            "tenant": tenant_slug or "all",
            "stats": stats,
            "devices": devices,
            "alerts": alerts,
            "unprinted_orders": unprinted_orders,
            "failed_prints": failed_prints,
        }

    # =========================================================================
    # DASHBOARD STATISTICS
    # =========================================================================

    async def dashboard_stats(
        self,
        tenant_slug: Optional[str] = None,
        period: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Success rates and device metrics over ``period`` (24h, 7d or 30d;
        anything else falls back to 24h).

        Raises:
            NotFoundError: ``tenant_slug`` given but unknown
        """
        if period not in PERIODS:
            period = DEFAULT_PERIOD

        tenant = await self._resolve_tenant(tenant_slug)
        now = self._current_time()
        start = now - PERIODS[period]

        orders = [order for order, _ in await self._orders(tenant, Order.created_at >= start)]
        devices = [device for device, _ in await self._devices(tenant)]

        breakdown = {status.value: 0 for status in PrintStatus}
        for order in orders:
            breakdown[order.print_status.value] += 1

        total = len(orders)
        broadcast_ok = sum(1 for order in orders if order.websocket_sent)
        broadcast_rate = _percent(broadcast_ok, total)
        print_rate = _percent(breakdown[PrintStatus.PRINTED.value], total)

        latencies = [
            (order.print_status_updated_at - order.websocket_sent_at).total_seconds()
            for order in orders
            if order.print_status == PrintStatus.PRINTED
            and order.websocket_sent_at is not None
            and order.print_status_updated_at is not None
        ]
        avg_print_time = f"{round(mean(latencies))}s" if latencies else "N/A"

        statuses = [classify_device(device, now, self.online_window) for device in devices]
        device_counts = {
            "total": len(devices),
            "active": sum(1 for device in devices if device.is_active),
            "online": statuses.count(DEVICE_ONLINE),
            "offline": statuses.count(DEVICE_OFFLINE),
        }

        failures = sorted(
            (order for order in orders if order.print_status == PrintStatus.FAILED),
            key=lambda order: order.print_status_updated_at or order.created_at,
            reverse=True,
        )[:RECENT_FAILURES_LIMIT]
        tenant_names = {}
        if failures:
            result = await self.db.execute(
                select(Tenant.id, Tenant.name, Tenant.slug)
                .where(Tenant.id.in_(sorted({order.tenant_id for order in failures})))
            )
            tenant_names = {row.id: (row.name, row.slug) for row in result.all()}
        recent_failures = [
            {
                "id": order.id,
                "order_number": order.order_number,
                "last_print_error": order.last_print_error,
                "last_pos_device_id": order.last_pos_device_id,
                "print_status_updated_at": to_iso(order.print_status_updated_at),
                "tenant_name": tenant_names.get(order.tenant_id, (None, None))[0],
                "tenant_slug": tenant_names.get(order.tenant_id, (None, None))[1],
            }
            for order in failures
        ]

        hourly: dict[int, dict[str, int]] = {}
        last_day = now - timedelta(hours=24)
        for order in orders:
            if order.created_at < last_day:
                continue
            bucket = hourly.setdefault(
                order.created_at.hour,
                {"hour": order.created_at.hour, "order_count": 0, "printed_count": 0, "failed_count": 0},
            )
            bucket["order_count"] += 1
            if order.print_status == PrintStatus.PRINTED:
                bucket["printed_count"] += 1
            elif order.print_status == PrintStatus.FAILED:
                bucket["failed_count"] += 1

        device_names = {device.device_id: device.device_name for device in devices}
        per_device: dict[str, dict[str, Any]] = {}
        for order in orders:
            if not order.last_pos_device_id:
                continue
            entry = per_device.setdefault(order.last_pos_device_id, {
                "device_id": order.last_pos_device_id,
                "device_name": device_names.get(order.last_pos_device_id),
                "orders_printed": 0,
                "successful_prints": 0,
                "failed_prints": 0,
                "_latencies": [],
            })
            entry["orders_printed"] += 1
            if order.print_status == PrintStatus.PRINTED:
                entry["successful_prints"] += 1
                if order.websocket_sent_at and order.print_status_updated_at:
                    entry["_latencies"].append(
                        (order.print_status_updated_at - order.websocket_sent_at).total_seconds()
                    )
            elif order.print_status == PrintStatus.FAILED:
                entry["failed_prints"] += 1

        top_devices = []
        for entry in sorted(per_device.values(), key=lambda e: e["orders_printed"], reverse=True)[:TOP_DEVICES_LIMIT]:
            latencies_for_device = entry.pop("_latencies")
            entry["avg_print_time"] = round(mean(latencies_for_device), 1) if latencies_for_device else None
            top_devices.append(entry)

        unprinted = breakdown[PrintStatus.PENDING.value] + breakdown[PrintStatus.SENT_TO_POS.value]
        critical_alerts = {
            "unprinted_old": unprinted,
            "devices_offline": device_counts["offline"],
            "failed_prints": breakdown[PrintStatus.FAILED.value],
            "low_websocket_rate": broadcast_rate < LOW_BROADCAST_RATE_PERCENT,
        }
        alert_count = sum(
            1 for value in critical_alerts.values()
            if value is True or (not isinstance(value, bool) and value > 0)
        )

        return {
            "success": True,
            "period": period,
            "timestamp": to_iso(now),
            "tenant": tenant_slug or "all",
            "summary": {
                "total_orders": total,
                "printed_orders": breakdown[PrintStatus.PRINTED.value],
                "failed_orders": breakdown[PrintStatus.FAILED.value],
                "pending_orders": unprinted,
                "print_success_rate": f"{print_rate:.2f}%",
                "websocket_success_rate": f"{broadcast_rate:.2f}%",
                "avg_print_time": avg_print_time,
                "alert_count": alert_count,
            },
            "devices": device_counts,
            "print_status_breakdown": breakdown,
            "websocket_performance": {
                "successful_broadcasts": broadcast_ok,
                "failed_broadcasts": total - broadcast_ok,
                "success_rate": f"{broadcast_rate:.2f}%",
            },
            "recent_failures": recent_failures,
            "hourly_distribution": [hourly[hour] for hour in sorted(hourly)],
            "top_devices": top_devices,
            "critical_alerts": critical_alerts,
        }

    # =========================================================================
    # SYNC ACTIVITY
    # =========================================================================

    async def sync_activity(self, tenant_id: int) -> dict[str, Any]:
        """Per-event-type counts over the last 24 hours and the latest sync log entries."""
        now = self._current_time()

        result = await self.db.execute(
            select(PosSyncLog.event_type, PosSyncLog.created_at)
            .where(
                PosSyncLog.tenant_id == tenant_id,
                PosSyncLog.created_at >= now - timedelta(hours=24),
            )
        )
        counts: dict[str, dict[str, Any]] = {}
        for event_type, created_at in result.all():
            entry = counts.setdefault(event_type, {"event_type": event_type, "count": 0, "last_event": created_at})
            entry["count"] += 1
            entry["last_event"] = max(entry["last_event"], created_at)

        result = await self.db.execute(
            select(PosSyncLog)
            .where(PosSyncLog.tenant_id == tenant_id)
            .order_by(PosSyncLog.created_at.desc(), PosSyncLog.id.desc())
            .limit(RECENT_EVENTS_LIMIT)
        )
        recent = [
            {
                "event_type": log.event_type,
                "status": log.status.value,
                "created_at": to_iso(log.created_at),
            }
            for log in result.scalars().all()
        ]

        return {
            "events24h": [
                {**entry, "last_event": to_iso(entry["last_event"])}
                for _, entry in sorted(counts.items())
            ],
            "recentEvents": recent,
        }
