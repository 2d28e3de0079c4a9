from __future__ import annotations

import os

from fastapi import APIRouter, Request

from ... import __version__

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthcheck(request: Request):
    manager = request.app.state.manager
    return {
        "status": "ok",
        "service": "tile-recorder",
        "version": os.getenv("APP_VERSION", __version__),
        "sessions": len(manager.registry),
    }
