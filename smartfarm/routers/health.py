from fastapi import APIRouter, Depends

from smartfarm.routers.devices import get_gateway
from smartfarm.services.gateway import Gateway

router = APIRouter(tags=["health"])

@router.get("/healthz")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "smartfarm-gateway"}

@router.get("/api/v1/health")
def api_health_check(gateway: Gateway = Depends(get_gateway)):
    """API health check endpoint with storage and transport state"""
    return {"status": "ok", "api_version": "v1", **gateway.health()}
