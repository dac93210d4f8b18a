# api/app/routes/health.py
from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "ok",
        "service": "image-jobs-api",
        "dispatcherReady": bool(dispatcher and dispatcher.ready.is_set()),
    }
