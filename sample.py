"""
sentinel_pool: Sample
=====================

Connects to a Sentinel-monitored master and exercises the pool:
borrowing, pipelines, credential rotation and failover following.

Prerequisites:
    A Sentinel topology monitoring "mymaster" with password "foobared"
    pip install -e .

Run:
    python sample.py
"""

import asyncio
import logging
import time

from sentinel_pool import (
    CredentialsRejectedError,
    PoolConfig,
    PoolExhaustedError,
    SentinelPool,
    SentinelPoolConfig,
)

# ─────────────────────────────────────────────────────────────
# Logging: see discovery, listener and failover events
# ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-20s  %(levelname)-7s  %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("sample")


# ─────────────────────────────────────────────────────────────
# 1. Configuration
# ─────────────────────────────────────────────────────────────
CONFIG = SentinelPoolConfig(
    master_name="mymaster",
    sentinels=[
        "localhost:26379",
        "localhost:26380",
        "localhost:26381",
    ],
    password="foobared",
    db=2,
    client_name="sentinel_pool_sample",
    pool=PoolConfig(max_total=8, max_wait=2.0),
)


def banner(title: str) -> None:
    width = 60
    log.info("")
    log.info("=" * width)
    log.info(f"  {title}")
    log.info("=" * width)


# ─────────────────────────────────────────────────────────────
# 2. Borrow and return
# ─────────────────────────────────────────────────────────────
async def demo_borrow(pool: SentinelPool) -> None:
    banner("Borrow and Return")

    async with pool.resource() as conn:
        await conn.set("sample:greeting", "Hello from sentinel_pool!")
        log.info(f"  GET sample:greeting  → {await conn.get('sample:greeting')}")
        log.info(f"  Connected to         → {conn.address}")

    log.info(f"  Idle after return    → {pool.num_idle}")


# ─────────────────────────────────────────────────────────────
# 3. Pipelines are discarded on return
# ─────────────────────────────────────────────────────────────
async def demo_pipeline(pool: SentinelPool) -> None:
    banner("Pipeline Reset on Return")

    async with pool.resource() as conn:
        pipe = conn.pipeline(transaction=False)
        pipe.set("sample:pipe", "never-sent")
        # returned without execute()

    async with pool.resource() as conn:
        log.info(f"  GET sample:pipe      → {await conn.get('sample:pipe')}")


# ─────────────────────────────────────────────────────────────
# 4. Concurrency against a bounded pool
# ─────────────────────────────────────────────────────────────
async def demo_concurrency(pool: SentinelPool) -> None:
    banner("Concurrent Borrowers (Bounded Pool)")

    async def worker(task_id: int) -> str:
        async with pool.resource() as conn:
            key = f"sample:concurrent:{task_id}"
            await conn.set(key, f"value-{task_id}", ex=30)
            return await conn.get(key)

    t0 = time.perf_counter()
    try:
        results = await asyncio.gather(*(worker(i) for i in range(50)))
    except PoolExhaustedError as e:
        log.warning(f"  Pool exhausted: {e}")
        return
    elapsed = time.perf_counter() - t0

    log.info(f"  50 borrowers on {CONFIG.pool.max_total} connections in {elapsed:.3f}s")
    log.info(f"  Sample results: {results[:5]} ...")


# ─────────────────────────────────────────────────────────────
# 5. Credential rotation
# ─────────────────────────────────────────────────────────────
async def demo_credentials(pool: SentinelPool) -> None:
    banner("Credential Rotation")

    pool.set_password("wrong password")
    try:
        async with pool.resource():
            pass
    except CredentialsRejectedError as e:
        log.info(f"  Rejected as expected: {e}")
    finally:
        pool.set_password(CONFIG.password)

    log.info(f"  Health after restore → {await pool.health_check()}")


# ─────────────────────────────────────────────────────────────
# 6. Follow failovers for a while
# ─────────────────────────────────────────────────────────────
async def demo_failover_watch(pool: SentinelPool, seconds: int = 10) -> None:
    banner(f"Watching for failover ({seconds}s)")

    master = pool.current_master
    for _ in range(seconds):
        await asyncio.sleep(1)
        if pool.current_master != master:
            log.info(f"  Master moved: {master} → {pool.current_master}")
            master = pool.current_master
    log.info(f"  Current master       → {pool.current_master}")


async def main() -> None:
    log.info("Connecting through Sentinel …")
    log.info(f"Sentinels: {[str(s) for s in CONFIG.sentinels]}")
    log.info(f"Master name: {CONFIG.master_name}")

    async with SentinelPool(CONFIG) as pool:
        log.info(f"Master at {pool.current_master}, {len(pool.listeners)} listener(s)")
        await demo_borrow(pool)
        await demo_pipeline(pool)
        await demo_concurrency(pool)
        await demo_credentials(pool)
        await demo_failover_watch(pool)

    log.info("")
    log.info("All demos completed successfully.")


if __name__ == "__main__":
    asyncio.run(main())
