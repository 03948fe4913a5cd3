from fastapi import APIRouter, Request
from marketplace.realtime.channels import get_channels
from marketplace.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root(request: Request):
    return {"ok": True, "rateLimit": rate_limit_health_info(request)}

@router.get("/realtime")
def health_realtime():
    rooms = get_channels().rooms()
    return {"ok": True, "rooms": len(rooms), "connections": sum(rooms.values())}
