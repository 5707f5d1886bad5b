"""
Supabase Connection Check Script
Verifies that the configured project answers on its database, storage and
auth endpoints. Uses the service-role client when a key is configured.

Usage: python -m fireframe.scripts.check_connection
"""

import asyncio
import logging
import sys

from fireframe.config import settings
from fireframe.database.supabase_client import SupabaseClient
from fireframe.providers import SupabaseProvider

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def check_connection() -> bool:
    logger.info(f"Checking Supabase project at {settings.effective_supabase_url}")
    client = await SupabaseClient.get_service_client()
    provider = SupabaseProvider(client, health_table=settings.posts_table)
    results = await provider.check_connection()
    for service, ok in results.items():
        logger.info(f"- {service}: {'ok' if ok else 'FAILED'}")
    return all(results.values())


def main() -> int:
    try:
        ok = asyncio.run(check_connection())
    except Exception as e:
        logger.error(f"Connection check failed: {e}")
        return 1
    if ok:
        logger.info("Supabase connection successful")
        return 0
    logger.error("One or more Supabase services are unreachable")
    return 1


if __name__ == "__main__":
    sys.exit(main())
