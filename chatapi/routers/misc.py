from __future__ import annotations

from fastapi import APIRouter

from chatapi.core.time import now_ts
from chatapi.services.broker import broker

router = APIRouter(tags=["misc"])

@router.get("/healthz")
async def healthz():
    return {"ok": True, "ts": now_ts(), "subscriptions": broker.active_count}
