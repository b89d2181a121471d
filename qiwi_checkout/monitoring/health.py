"""
Readiness checks.

Checks:
- Bill store (database round trip)
- Lock backend (Redis ping when payout locks are distributed)

The QIWI APIs are not checked: each check would spend a rate-limited
authenticated call.
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger(__name__)

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class HealthCheckError(Exception):
    """Raised when a dependency does not answer."""

    pass


class HealthCheck:
    """Runs dependency checks for the /health endpoint."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_url: Optional[str] = None,
    ) -> None:
        """
        Args:
            session_factory: Session factory of the bill database
            redis_url: Redis used for payout locks; skipped when None
        """
        self.session_factory = session_factory
        self.redis_url = redis_url

    async def check_database(self) -> Dict[str, Any]:
        """
        Run ``SELECT 1`` against the bill store.

        Raises:
            HealthCheckError: If the database cannot be reached
        """
        try:
            async with self.session_factory() as session:
                await session.scalar(text("SELECT 1"))
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}")

        return {"status": HEALTHY, "service": "database"}

    async def check_lock_backend(self) -> Dict[str, Any]:
        """
        Ping Redis if payout locks live there.

        Raises:
            HealthCheckError: If Redis does not answer
        """
        if not self.redis_url:
            return {"status": HEALTHY, "service": "locks", "backend": "in-process"}

        client = aioredis.from_url(self.redis_url)
        try:
            await client.ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {e}")
        finally:
            await client.aclose()

        return {"status": HEALTHY, "service": "locks", "backend": "redis"}

    async def check_all(self) -> Dict[str, Any]:
        """
        Run every check and summarize.

        Returns:
            Dict[str, Any]: ``{"status": ..., "checks": {name: result}}``
        """
        checks: Dict[str, Any] = {}
        for name, check in (
            ("database", self.check_database),
            ("locks", self.check_lock_backend),
        ):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": UNHEALTHY, "service": name, "error": str(e)}

        healthy = all(result["status"] == HEALTHY for result in checks.values())
        return {"status": HEALTHY if healthy else UNHEALTHY, "checks": checks}
