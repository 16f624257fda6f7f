"""
Tests for the health report and dashboard statistics.
"""

from datetime import datetime, timedelta

import pytest

from posbridge.core.exceptions import NotFoundError
from posbridge.models import PrintStatus
from posbridge.services.health import (
    DEVICE_DISABLED,
    DEVICE_OFFLINE,
    DEVICE_ONLINE,
    HealthAggregator,
    classify_device,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)


async def seen_at(db, device, minutes_ago):
    device.last_seen_at = NOW - timedelta(minutes=minutes_ago)
    device.last_heartbeat_at = device.last_seen_at
    await db.commit()
    return device


class TestClassifyDevice:

    async def test_online_window(self, db, tenant, make_device):
        device = await make_device(tenant)
        window = timedelta(minutes=10)

        await seen_at(db, device, 9)
        assert classify_device(device, NOW, window) == DEVICE_ONLINE

        await seen_at(db, device, 11)
        assert classify_device(device, NOW, window) == DEVICE_OFFLINE

        await seen_at(db, device, 10)
        assert classify_device(device, NOW, window) == DEVICE_OFFLINE

    async def test_never_seen_and_disabled(self, db, tenant, make_device):
        never = await make_device(tenant, device_id="POS_NEW")
        disabled = await make_device(tenant, device_id="POS_OLD", is_active=False)

        assert classify_device(never, NOW) == DEVICE_OFFLINE
        assert classify_device(disabled, NOW) == DEVICE_DISABLED


class TestComputeHealth:

    @pytest.fixture
    async def seeded(self, db, tenant, other_tenant, make_device, make_order):
        await seen_at(db, await make_device(tenant, device_id="POS_ONLINE"), 9)
        await seen_at(db, await make_device(tenant, device_id="POS_OFFLINE"), 11)
        await make_device(tenant, device_id="POS_DISABLED", is_active=False)
        await seen_at(db, await make_device(other_tenant, device_id="POS_HARBOR"), 120)

        orders = {
            "stale": await make_order(tenant, created_at=NOW - timedelta(minutes=20)),
            "fresh": await make_order(
                tenant, created_at=NOW - timedelta(minutes=5), print_status=PrintStatus.SENT_TO_POS
            ),
            "failed": await make_order(
                tenant,
                created_at=NOW - timedelta(hours=2),
                print_status=PrintStatus.FAILED,
                print_status_updated_at=NOW - timedelta(hours=1),
                last_print_error="Paper jam",
                last_pos_device_id="POS_ONLINE",
            ),
            "printed": await make_order(
                tenant, created_at=NOW - timedelta(hours=3), print_status=PrintStatus.PRINTED
            ),
            "old": await make_order(tenant, created_at=NOW - timedelta(days=2)),
        }
        return orders

    async def test_report_for_tenant(self, db, seeded):
        report = await HealthAggregator(db, now=NOW).compute_health("kitchen")

        assert report["tenant"] == "kitchen"
        statuses = {d["device_id"]: d["status"] for d in report["devices"]}
        assert statuses == {
            "POS_ONLINE": DEVICE_ONLINE,
            "POS_OFFLINE": DEVICE_OFFLINE,
            "POS_DISABLED": DEVICE_DISABLED,
        }

        assert report["stats"]["total_devices"] == 3
        assert report["stats"]["online_devices"] == 1
        assert report["stats"]["offline_devices"] == 1
        assert report["stats"]["unprinted_orders"] == 2
        assert report["stats"]["failed_prints_today"] == 1

        unprinted_ids = [o["id"] for o in report["unprinted_orders"]]
        assert unprinted_ids == [seeded["fresh"].id, seeded["stale"].id]

    async def test_alerts(self, db, seeded):
        report = await HealthAggregator(db, now=NOW).compute_health("kitchen")
        alerts = report["alerts"]

        offline = [a for a in alerts if a["type"] == "device_offline"]
        assert [a["device_id"] for a in offline] == ["POS_OFFLINE"]
        assert offline[0]["severity"] == "high"
        assert "11 minutes" in offline[0]["message"]

        unprinted = [a for a in alerts if a["type"] == "unprinted_order"]
        assert [a["order_id"] for a in unprinted] == [seeded["stale"].id]
        assert unprinted[0]["severity"] == "critical"
        assert unprinted[0]["age_minutes"] == 20

        failed = [a for a in alerts if a["type"] == "print_failed"]
        assert [a["order_id"] for a in failed] == [seeded["failed"].id]
        assert failed[0]["error"] == "Paper jam"

        assert report["stats"]["critical_alerts"] == 1
        assert report["stats"]["high_alerts"] == 2

    async def test_all_tenants(self, db, seeded):
        report = await HealthAggregator(db, now=NOW).compute_health()

        assert report["tenant"] == "all"
        assert report["stats"]["total_devices"] == 4
        assert {a["tenant"] for a in report["alerts"] if a["type"] == "device_offline"} == {"kitchen", "harbor"}

    async def test_unknown_tenant(self, db, seeded):
        with pytest.raises(NotFoundError):
            await HealthAggregator(db, now=NOW).compute_health("nowhere")


class TestDashboardStats:

    async def test_summary(self, db, tenant, make_order, make_device):
        await seen_at(db, await make_device(tenant, device_id="POS_ONLINE"), 1)
        sent_at = NOW - timedelta(hours=1)
        await make_order(
            tenant,
            created_at=sent_at,
            websocket_sent=True,
            websocket_sent_at=sent_at,
            print_status=PrintStatus.PRINTED,
            print_status_updated_at=sent_at + timedelta(seconds=8),
            last_pos_device_id="POS_ONLINE",
        )
        await make_order(
            tenant,
            created_at=NOW - timedelta(hours=2),
            print_status=PrintStatus.FAILED,
            last_print_error="Jam",
            last_pos_device_id="POS_ONLINE",
        )
        await make_order(tenant, created_at=NOW - timedelta(days=3))

        stats = await HealthAggregator(db, now=NOW).dashboard_stats("kitchen", "24h")

        assert stats["period"] == "24h"
        assert stats["summary"]["total_orders"] == 2
        assert stats["summary"]["print_success_rate"] == "50.00%"
        assert stats["summary"]["websocket_success_rate"] == "50.00%"
        assert stats["summary"]["avg_print_time"] == "8s"
        assert stats["print_status_breakdown"] == {
            "pending": 0, "sent_to_pos": 0, "printed": 1, "failed": 1,
        }
        assert stats["devices"] == {"total": 1, "active": 1, "online": 1, "offline": 0}
        assert [f["last_print_error"] for f in stats["recent_failures"]] == ["Jam"]
        assert stats["recent_failures"][0]["tenant_slug"] == "kitchen"
        assert stats["top_devices"][0]["device_id"] == "POS_ONLINE"
        assert stats["top_devices"][0]["orders_printed"] == 2
        assert stats["critical_alerts"]["low_websocket_rate"] is True

        week = await HealthAggregator(db, now=NOW).dashboard_stats("kitchen", "7d")
        assert week["summary"]["total_orders"] == 3

    async def test_unknown_period_falls_back(self, db, tenant):
        stats = await HealthAggregator(db, now=NOW).dashboard_stats("kitchen", "1y")

        assert stats["period"] == "24h"
        assert stats["summary"]["total_orders"] == 0
        assert stats["summary"]["print_success_rate"] == "0.00%"
        assert stats["summary"]["avg_print_time"] == "N/A"
