"""
Health checks for readiness/liveness probes.

Checks:
- Ledger database connectivity
- Redis connectivity (when the deduplication cache is configured)
- Payout gateway circuit breaker state
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the settlement service's dependencies."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: Optional[aioredis.Redis] = None,
        circuit_breaker: Optional[Any] = None,
    ):
        self.session_factory = session_factory
        self.redis_client = redis_client
        self.circuit_breaker = circuit_breaker

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Raises:
            HealthCheckError: If Redis check fails
        """
        if self.redis_client is None:
            return {
                "status": "disabled",
                "service": "redis",
                "message": "Webhook deduplication cache not configured",
            }
        try:
            await self.redis_client.ping()
        except (aioredis.RedisError, OSError) as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "redis",
            "message": "Redis connection successful",
        }

    def check_gateway(self) -> Dict[str, Any]:
        """
        Report the payout gateway circuit breaker.

        Raises:
            HealthCheckError: If the circuit is open
        """
        state = getattr(self.circuit_breaker, "state", "closed")
        if state == "open":
            raise HealthCheckError("Payout gateway circuit breaker is open")
        return {
            "status": "healthy",
            "service": "payout_gateway",
            "circuit_state": state,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        The gateway check is reported but does not make the service
        unready: payouts left pending are retried later.
        """
        checks: Dict[str, Any] = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {"status": "unhealthy", "service": "database", "error": str(e)}
            all_healthy = False

        try:
            checks["redis"] = await self.check_redis()
        except HealthCheckError as e:
            checks["redis"] = {"status": "unhealthy", "service": "redis", "error": str(e)}
            all_healthy = False

        try:
            checks["payout_gateway"] = self.check_gateway()
        except HealthCheckError as e:
            checks["payout_gateway"] = {
                "status": "degraded",
                "service": "payout_gateway",
                "error": str(e),
            }

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe: the process is running. No dependency checks."""
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: all dependencies are available."""
        return await self.check_all()
