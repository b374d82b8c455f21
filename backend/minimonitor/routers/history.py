from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from minimonitor.dependencies import get_history_store
from minimonitor.services.history import HistoryStore


router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("")
async def get_history(
    limit: int | None = Query(None, ge=1, description="Return only the newest N records"),
    history: HistoryStore = Depends(get_history_store),
) -> list[dict[str, Any]]:
    """Host metrics history, oldest first. Same payload as the initHistory event."""
    return history.to_wire(limit)
