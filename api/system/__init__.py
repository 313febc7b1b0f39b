"""System health endpoint."""

import logging
import time
from typing import Optional

import psutil
from asyncpg.exceptions import PostgresError
from fastapi import APIRouter
from pydantic import BaseModel

from database import get_pool
from database.exceptions import DatabaseError
from ..disputes.manager import manager as dispute_connections

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    uptime: float
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    active_connections: Optional[int] = None
    websocket_connections: int
    database_status: str

async def check_database() -> Optional[int]:
    """Active backend count, or None when the database is unreachable."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(
                '''
                SELECT COUNT(*)
                FROM pg_stat_activity
                WHERE state = 'active'
                '''
            )
    except (DatabaseError, PostgresError, OSError) as e:
        logger.error(f"Health check could not reach the database: {e}")
        return None

@router.get("/health")
async def get_system_health() -> SystemHealth:
    """Get system health status.

    Returns:
        SystemHealth object containing system metrics
    """
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')

    active_connections = await check_database()
    database_ok = active_connections is not None
    websocket_connections = len(dispute_connections.socket_users)

    return SystemHealth(
        status="healthy" if database_ok and cpu_percent < 80 else "degraded",
        uptime=time.time() - psutil.boot_time(),
        cpu_usage=cpu_percent,
        memory_usage=memory.percent,
        disk_usage=disk.percent,
        active_connections=active_connections,
        websocket_connections=websocket_connections,
        database_status="connected" if database_ok else "unavailable"
    )

__all__ = ['router']
