"""
Liveness and readiness probes.

Liveness never touches the store. Readiness runs SELECT 1 through the same
transaction helper the services use and reports its latency.
"""
import time
from typing import Any, Dict

import structlog
from sqlalchemy import text

from core.exceptions import StoreError
from database import Database

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when a dependency does not answer."""

    pass


class HealthCheck:
    """Probes the dependencies the API cannot serve without (only the database)."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def check_database(self) -> Dict[str, Any]:
        """
        Round-trip a trivial query.

        Returns:
            Dict[str, Any]: Database status with latency in milliseconds

        Raises:
            HealthCheckError: If the query fails or no connection can be made
        """
        started = time.perf_counter()
        try:
            async with self.database.transaction() as db:
                await db.scalar(text("SELECT 1"))
        except (StoreError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database unavailable: {e}") from e

        return {
            "status": "healthy",
            "service": "database",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    async def liveness(self) -> Dict[str, Any]:
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness probe.

        Returns:
            Dict[str, Any]: "healthy" with per-check details, or "unhealthy"
            with the failing check's error
        """
        try:
            database = await self.check_database()
        except HealthCheckError as e:
            return {
                "status": "unhealthy",
                "checks": {"database": {"status": "unhealthy", "service": "database", "error": str(e)}},
            }
        return {"status": "healthy", "checks": {"database": database}}
