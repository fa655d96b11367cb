#!/usr/bin/env python3
"""
Health checks for the local discovery service: note cache database,
indexer reachability, host resources.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil
from sqlalchemy.ext.asyncio import AsyncEngine

from pool_notes.api.logging_config import get_logger
from pool_notes.database.config import test_connection_async
from pool_notes.indexer.client import IndexerClient

logger = get_logger("health")

SERVICE_START_TIME = time.time()

_OK_STATES = ("healthy", "disabled", "not_configured")


async def check_database_health(engine: AsyncEngine) -> Dict[str, Any]:
    """
    Returns:
        dict with status, response_time_ms, and error (if any)
    """
    try:
        start = time.time()
        await test_connection_async(engine)
        response_time = (time.time() - start) * 1000
        return {"status": "healthy", "response_time_ms": round(response_time, 2)}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


async def check_indexer_health(indexer: IndexerClient) -> Dict[str, Any]:
    """Query the indexer's ``_meta`` status; no pool or user data is sent."""
    try:
        start = time.time()
        meta = await indexer.health_check()
        response_time = (time.time() - start) * 1000
        return {
            "status": "healthy",
            "response_time_ms": round(response_time, 2),
            "indexer_url": indexer.endpoint,
            "indexer_status": meta.get("status"),
        }
    except Exception as e:
        logger.error(f"Indexer health check failed: {e}")
        return {"status": "unhealthy", "error": str(e), "indexer_url": indexer.endpoint}


def get_system_metrics() -> Dict[str, Any]:
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
        return {
            "cpu": {"usage_percent": round(cpu_percent, 2)},
            "memory": {
                "usage_percent": round(memory.percent, 2),
                "used_mb": round(memory.used / (1024 * 1024), 2),
                "total_mb": round(memory.total / (1024 * 1024), 2),
            },
            "disk": {
                "usage_percent": round(disk.percent, 2),
                "used_gb": round(disk.used / (1024 ** 3), 2),
                "total_gb": round(disk.total / (1024 ** 3), 2),
            },
        }
    except Exception as e:
        logger.error(f"Failed to get system metrics: {e}")
        return {"error": str(e)}


def get_uptime() -> Dict[str, Any]:
    uptime_seconds = time.time() - SERVICE_START_TIME
    uptime_minutes = uptime_seconds / 60
    uptime_hours = uptime_minutes / 60
    uptime_days = uptime_hours / 24

    if uptime_days >= 1:
        uptime_str = f"{int(uptime_days)}d {int(uptime_hours % 24)}h"
    elif uptime_hours >= 1:
        uptime_str = f"{int(uptime_hours)}h {int(uptime_minutes % 60)}m"
    else:
        uptime_str = f"{int(uptime_minutes)}m {int(uptime_seconds % 60)}s"

    return {"uptime_seconds": round(uptime_seconds, 2), "uptime_formatted": uptime_str}


async def comprehensive_health_check(
    engine: Optional[AsyncEngine] = None,
    indexer: Optional[IndexerClient] = None,
) -> Dict[str, Any]:
    """
    Args:
        engine: Note cache engine; None when running on the in-memory cache
        indexer: Indexer client; None when no indexer is configured

    Returns:
        dict with overall status and component statuses
    """
    checks: Dict[str, Any] = {}
    checks["database"] = await check_database_health(engine) if engine is not None else {"status": "disabled"}
    checks["indexer"] = await check_indexer_health(indexer) if indexer is not None else {"status": "not_configured"}
    checks["system"] = get_system_metrics()
    checks["uptime"] = get_uptime()

    components = [checks["database"].get("status"), checks["indexer"].get("status")]
    overall = "healthy" if all(s in _OK_STATES for s in components) else "unhealthy"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "checks": checks,
    }


async def readiness_check(
    engine: Optional[AsyncEngine] = None,
    indexer: Optional[IndexerClient] = None,
) -> bool:
    """Ready when every configured dependency answers."""
    checks = []
    if engine is not None:
        checks.append((await check_database_health(engine))["status"] == "healthy")
    if indexer is not None:
        checks.append((await check_indexer_health(indexer))["status"] == "healthy")
    return all(checks)


async def liveness_check() -> bool:
    return True
