"""Transaction history route over the payment ledger."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Query, Request

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.get("/history")
async def transaction_history(request: Request, limit: int = Query(50, ge=1, le=500)) -> dict:
    entries = await asyncio.to_thread(request.app.state.ledger.recent, limit)
    return {"success": True, "count": len(entries), "transactions": entries}
