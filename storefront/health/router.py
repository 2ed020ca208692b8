from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from storefront.health.service import commerce_health_info
from storefront.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/commerce")
async def health_commerce(request: Request):
    info = await commerce_health_info(request.app.state.http)
    return JSONResponse(info, status_code=200 if info["ok"] else 503)

@router.get("/rate-limit")
def health_rate_limit(request: Request):
    return rate_limit_health_info(request)
