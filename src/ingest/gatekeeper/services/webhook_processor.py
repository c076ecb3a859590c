"""Webhook processor service for gatekeeper.

Owns the shared infrastructure the ROAM handlers need:
- the control database pool backing every repository
- health checks for monitoring

Verification is handled directly by each webhook handler using the
verifier classes from the connectors.
"""

from typing import Any

import asyncpg

from src.utils.config import get_control_database_url
from src.utils.logging import get_logger

logger = get_logger(__name__)


class WebhookProcessor:
    """Holds the control database pool for the lifetime of the app."""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url
        self.control_db_pool: asyncpg.Pool | None = None

    async def initialize(self) -> None:
        """Create the control database pool.

        A failure is logged and left for the health checks to report, so the
        service can still answer liveness checks while the database is down.
        """
        database_url = self.database_url or get_control_database_url()
        try:
            self.control_db_pool = await asyncpg.create_pool(
                database_url, min_size=1, max_size=5, timeout=30
            )
            logger.info("Control database pool initialized in WebhookProcessor")
        except Exception as e:
            logger.error(f"Failed to initialize control database pool: {e}")

    async def cleanup(self) -> None:
        """Clean up resources."""
        if self.control_db_pool:
            await self.control_db_pool.close()
            logger.info("Control database pool closed in WebhookProcessor")

    async def health_check(self) -> dict[str, Any]:
        """Perform health check of all dependencies.

        Returns:
            Dictionary with health status of each component
        """
        health_status: dict[str, Any] = {"status": "healthy", "components": {}}

        if self.control_db_pool:
            try:
                async with self.control_db_pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                health_status["components"]["control_db"] = "healthy"
            except Exception as e:
                health_status["components"]["control_db"] = f"unhealthy: {e}"
                health_status["status"] = "unhealthy"
        else:
            health_status["components"]["control_db"] = "not initialized"
            health_status["status"] = "unhealthy"

        return health_status
