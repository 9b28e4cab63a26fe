#!/usr/bin/env python3
"""Check journal engine config values and table store reachability."""
import asyncio
import os
import sys
import time

# Add current directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import httpx

import config
from utils.supabase_client import SupabaseConfigurationError, SupabaseTableStore

print("=== Journal Engine Config Check ===")

print(f"SUPABASE_URL: {'SET' if config.SUPABASE_URL else 'NOT SET'}")
print(f"SUPABASE_SERVICE_ROLE_KEY: {'SET' if config.SUPABASE_SERVICE_ROLE_KEY else 'NOT SET'}")
print(f"SUPABASE_JWKS_URL: {config.SUPABASE_JWKS_URL or 'NOT SET'}")
print(f"SUPABASE_JWT_SECRET: {'SET' if config.SUPABASE_JWT_SECRET else 'NOT SET'}")
print(f"SUPABASE_WEBHOOK_SECRET: {'SET' if config.SUPABASE_WEBHOOK_SECRET else 'NOT SET (webhook signatures not checked)'}")
print(f"API_KEY: {'SET' if config.API_KEY else 'NOT SET (anonymous API access allowed)'}")
print(f"ALLOWED_ORIGINS: {', '.join(config.ALLOWED_ORIGINS)}")

print("\n=== Progression Tunables ===")
print(f"XP_PER_UNIT: {config.XP_PER_UNIT}")
print(f"VIOLATION_XP_PENALTY: {config.VIOLATION_XP_PENALTY}")
print(f"TRADE_CLOSE_XP: {config.TRADE_CLOSE_XP}")

print("\n=== Table Store Check ===")


async def test_store_performance() -> None:
    store = SupabaseTableStore()
    for table in ("user_progress", "user_goals", "trading_rules", "achievements"):
        start_time = time.time()
        rows = await store.select(table, columns="*", limit=1)
        elapsed = (time.time() - start_time) * 1000
        print(f"✅ {table}: {elapsed:.1f}ms ({len(rows)} row sampled)")


try:
    asyncio.run(test_store_performance())
except SupabaseConfigurationError as e:
    print(f"❌ {e}")
except httpx.HTTPStatusError as e:
    print(f"❌ Table store error: {e.response.status_code} {e.response.text[:200]}")
except httpx.HTTPError as e:
    print(f"❌ Connection error: {e}")

print("\nConfig check complete!")
