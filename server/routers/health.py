"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app accept players?)
- /metrics - Room and player counts for monitoring
"""

import json
import logging
from collections import Counter
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None


def set_health_dependencies(room_manager=None):
    """Set dependencies for health checks."""
    global _room_manager
    _room_manager = room_manager


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - is the room registry wired up?

    Returns 503 until the application has finished starting.
    """
    ready = _room_manager is not None
    return Response(
        content=json.dumps({
            "status": "ok" if ready else "starting",
            "checks": {"room_manager": {"status": "ok" if ready else "not_configured"}},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=200 if ready else 503,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """
    Expose application metrics for monitoring.

    Returns room, player and per-phase game counts.
    """
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        rooms = _room_manager.rooms
        phases = Counter(room.game.phase.value for room in rooms.values())
        metrics_data.update({
            "active_rooms": len(rooms),
            "total_players": _room_manager.player_count(),
            "games_by_phase": dict(phases),
        })

    return metrics_data
