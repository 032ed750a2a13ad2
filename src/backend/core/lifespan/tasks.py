"""
Lifespan startup and shutdown task functions.

This module contains individual task functions for application startup
and shutdown sequences. Each function handles a specific responsibility.
"""

import logging


async def initialize_logging(settings, log_config):
    """Setup logging configuration."""
    from core.logging_config import setup_logging

    logger = logging.getLogger("main")
    setup_logging(log_config)
    logger.info(f"🚀 Starting {settings.api.app_name} {settings.api.app_version}...")


async def log_cors_configuration(settings, logger):
    """Log CORS configuration for debugging."""
    logger.info(f"🔒 CORS Allowed Origins: {settings.cors.origins}")


async def initialize_database():
    """Initialize database tables."""
    from core.database import init_db

    logger = logging.getLogger("main")
    await init_db()
    logger.info("✅ Database initialized")


async def setup_default_data():
    """Seed the default team and admin user."""
    from core.database import session_scope
    from db.setup import setup_database_default_data

    logger = logging.getLogger("main")
    logger.info("Setting up default database data...")
    try:
        async with session_scope() as db:
            if await setup_database_default_data(db):
                logger.info("✅ Default data setup completed successfully")
            else:
                logger.error("❌ Default data setup failed - check logs above")
    except Exception as e:
        logger.error(f"❌ Error during default data setup: {e}")


async def initialize_profile_cache(settings):
    """Size the in-process profile cache from settings."""
    from core.cache import configure_profile_cache

    logger = logging.getLogger("main")
    configure_profile_cache(
        max_entries=settings.profile_cache.max_entries,
        ttl_seconds=settings.profile_cache.ttl_seconds,
        enabled=settings.profile_cache.enabled,
    )
    logger.info(
        f"✅ Profile cache ready (max {settings.profile_cache.max_entries} entries, "
        f"TTL {settings.profile_cache.ttl_seconds}s)"
    )


async def initialize_minio(settings):
    """Initialize MinIO storage. A failure only degrades uploads."""
    from services.minio_service import MinIOStorageService

    logger = logging.getLogger("main")
    try:
        await MinIOStorageService.ensure_bucket_exists()
        logger.info(f"✅ MinIO storage initialized ({settings.minio.bucket_name})")
    except Exception as e:
        logger.warning(f"⚠️  MinIO initialization failed: {e}")


async def start_background_scheduler():
    """Start the periodic job scheduler."""
    from core.scheduler import start_scheduler

    logger = logging.getLogger("main")
    try:
        start_scheduler()
    except Exception as e:
        logger.warning(f"⚠️  Scheduler initialization failed: {e}")


async def shutdown_scheduler_task():
    """Shutdown the periodic job scheduler."""
    from core.scheduler import shutdown_scheduler

    logger = logging.getLogger("main")
    try:
        shutdown_scheduler()
    except Exception as e:
        logger.warning(f"⚠️  Scheduler shutdown error: {e}")


async def shutdown_database():
    """Close database connections."""
    from core.database import close_db

    logger = logging.getLogger("main")
    await close_db()
    logger.info("✅ Database connections closed")
