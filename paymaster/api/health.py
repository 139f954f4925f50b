from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Ledger snapshot, chain reachability and signer address"""
    return await request.app.state.service.health()
