"""
Profile service entry point.
Looks up the given user ids through the cached profile service and logs the
results along with cache statistics.

    python main.py <user_id> [<user_id> ...]
"""

import asyncio
import sys

from loguru import logger

from profile_service.datastore.engine import close_db, init_db
from profile_service.services import close_profile_service, get_profile_service
from profile_service.settings import global_settings


async def main(user_ids: list[str]) -> None:
    """Main function."""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())

    logger.info("Starting profile service...")

    try:
        if not global_settings.profile_api_url:
            logger.info("Initializing database...")
            await init_db()
            logger.info("Database initialized successfully")

        service = get_profile_service()
        service.start()

        for user_id in user_ids:
            result = await service.get_user_profile(user_id)
            if result.error:
                logger.warning(f"{user_id}: {result.error}")
            else:
                logger.info(
                    f"{user_id}: {result.data.role} profile "
                    f"(cached={result.cached})"
                )

        stats = service.get_cache_stats()
        logger.info(
            f"Cache: {stats['size']}/{stats['max_entries']} entries, "
            f"hit rate {stats['hit_rate']}"
        )

    except Exception as e:
        logger.error(f"Error in main: {e}")
    finally:
        await close_profile_service()
        await close_db()
        logger.info("Profile service stopped")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
