# scripts/check_redis.py

import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from dashboard_iam.infrastructure.cache.redis_client import RedisClient
from dashboard_iam.scalability.rate_limiter import LoginThrottle, RedisRateLimitBackend


async def check():
    r = RedisClient()
    print("Ping:", await r.ping())

    throttle = LoginThrottle(RedisRateLimitBackend(r), attempts_per_window=2, window_seconds=30)
    for attempt in range(3):
        print(f"Attempt {attempt + 1} allowed:", await throttle.allow_attempt("smoke-check"))
    await r.close()

asyncio.run(check())
