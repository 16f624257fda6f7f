"""
POS Terminal Simulation Script

Simulates POS terminals polling for orders and acknowledging prints, to
exercise the delivery and acknowledgment paths end to end.
Run from project root: python scripts/simulate.py --tenant kitchen --api-key pos_...

Version: 1.0.0
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:9010"
POLL_INTERVAL_SECONDS = 2.0
FAILURE_REASONS = ["Paper jam", "Printer offline", "Out of paper", "Cover open"]


# =============================================================================
# TERMINAL
# =============================================================================

class SimulatedTerminal:
    """One POS terminal: polls pull-orders and acknowledges what it sees."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tenant: str,
        api_key: str,
        name: str,
        failure_rate: float,
    ):
        self.client = client
        self.tenant = tenant
        self.api_key = api_key
        self.name = name
        self.failure_rate = failure_rate
        self.etag: Optional[str] = None
        self.acked: set[int] = set()
        self.stats = {"polls": 0, "not_modified": 0, "printed": 0, "failed": 0, "errors": 0, "ack_times": []}

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def poll(self) -> list[dict[str, Any]]:
        headers = dict(self.headers)
        if self.etag:
            headers["If-None-Match"] = self.etag

        response = await self.client.get(
            f"{API_BASE_URL}/api/pos/pull-orders",
            params={"tenant": self.tenant},
            headers=headers,
            timeout=10.0,
        )
        self.stats["polls"] += 1

        if response.status_code == 304:
            self.stats["not_modified"] += 1
            return []
        if response.status_code != 200:
            self.stats["errors"] += 1
            print(f"   ❌ [{self.name}] pull failed: {response.status_code} {response.text[:80]}")
            return []

        self.etag = response.headers.get("etag")
        return [order for order in response.json()["orders"] if order["id"] not in self.acked]

    async def acknowledge(self, order: dict[str, Any]) -> None:
        failed = random.random() < self.failure_rate
        payload = {
            "tenant": self.tenant,
            "order_id": order["id"],
            "status": "failed" if failed else "printed",
            "printed_at": datetime.now(timezone.utc).isoformat(),
            "device_id": self.name,
        }
        if failed:
            payload["reason"] = random.choice(FAILURE_REASONS)

        start_time = time.time()
        response = await self.client.post(
            f"{API_BASE_URL}/api/pos/orders/ack",
            json=payload,
            headers=self.headers,
            timeout=10.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code != 200:
            self.stats["errors"] += 1
            print(f"   ❌ [{self.name}] ack for order {order['id']} failed: {response.text[:80]}")
            return

        self.acked.add(order["id"])
        self.stats["ack_times"].append(elapsed)
        self.stats["failed" if failed else "printed"] += 1
        icon = "🧾" if not failed else "⚠️"
        print(f"   {icon} [{self.name}] #{order['orderNumber']} -> {payload['status']} ({elapsed}s)")

    async def run(self, rounds: int) -> dict[str, Any]:
        for _ in range(rounds):
            try:
                for order in await self.poll():
                    await self.acknowledge(order)
            except httpx.HTTPError as e:
                self.stats["errors"] += 1
                print(f"   ❌ [{self.name}] {e.__class__.__name__}: {str(e)[:80]}")
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
        return self.stats


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    tenant: str,
    api_key: str,
    terminals: int = 2,
    rounds: int = 10,
    failure_rate: float = 0.1,
) -> dict[str, Any]:
    """
    Run several terminals against one tenant.

    Terminals share the tenant, so the same order may be acknowledged more
    than once; the last acknowledgment wins.
    """
    print("=" * 70)
    print("🖨️ POS TERMINAL SIMULATION")
    print("=" * 70)
    print(f"📋 Tenant: {tenant}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"🔧 Terminals: {terminals}, rounds: {rounds}, failure rate: {failure_rate:.0%}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        sims = [
            SimulatedTerminal(client, tenant, api_key, f"SIM_TERMINAL_{i + 1}", failure_rate)
            for i in range(terminals)
        ]
        results = await asyncio.gather(*(sim.run(rounds) for sim in sims))

    total_time = round(time.time() - start_time, 2)
    ack_times = [t for stats in results for t in stats["ack_times"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n🔁 Polls: {sum(s['polls'] for s in results)} ({sum(s['not_modified'] for s in results)} not modified)")
    print(f"✅ Printed: {sum(s['printed'] for s in results)}")
    print(f"⚠️  Failed prints: {sum(s['failed'] for s in results)}")
    print(f"❌ Errors: {sum(s['errors'] for s in results)}")
    print(f"⏱️  Total Time: {total_time}s")

    if ack_times:
        print(f"\n📈 Acknowledgment latency:")
        print(f"   Average: {round(sum(ack_times) / len(ack_times), 3)}s")
        print(f"   Fastest: {min(ack_times)}s")
        print(f"   Slowest: {max(ack_times)}s")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. GET /api/admin/pos-health to see failed prints and alerts")
    print("2. GET /api/admin/dashboard/stats for success rates")
    print("=" * 70)

    return {"total_time": total_time, "terminals": results}


async def preflight(api_key: str, tenant: str) -> bool:
    """Check the service is up and the key is accepted before simulating."""
    print("\n🧪 Pre-flight checks...")
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Health check failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')} (database: {data.get('database')})")

        response = await client.get(
            f"{API_BASE_URL}/api/pos/pull-orders",
            params={"tenant": tenant},
            headers={"Authorization": f"Bearer {api_key}"},
        )
        if response.status_code != 200:
            print(f"   ❌ API key rejected: {response.text[:100]}")
            return False
        print(f"   ✅ API key accepted, {response.json()['count']} order(s) waiting")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="POS Terminal Simulation Script")
    parser.add_argument("--tenant", required=True, help="Tenant slug")
    parser.add_argument("--api-key", required=True, help="Device or tenant POS API key")
    parser.add_argument("--terminals", type=int, default=2, help="Number of simulated terminals")
    parser.add_argument("--rounds", type=int, default=10, help="Polls per terminal")
    parser.add_argument("--failure-rate", type=float, default=0.1, help="Share of prints reported as failed")
    parser.add_argument("--base-url", default=API_BASE_URL, help="Service base URL")
    args = parser.parse_args()

    API_BASE_URL = args.base_url.rstrip("/")

    if not asyncio.run(preflight(args.api_key, args.tenant)):
        print("\n❌ Pre-flight checks failed. Fix issues before running simulation.")
        sys.exit(1)

    asyncio.run(run_simulation(
        args.tenant,
        args.api_key,
        terminals=args.terminals,
        rounds=args.rounds,
        failure_rate=args.failure_rate,
    ))
