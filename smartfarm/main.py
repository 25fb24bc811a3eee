# smartfarm/main.py
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartfarm.database import settings
from smartfarm.services.gateway import Gateway

# Routers
from smartfarm.routers import devices_router, events_router, health_router


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    app = FastAPI(
        title="SmartFarm Gateway API",
        description="Telemetry aggregation and pump control for irrigation sensor devices",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.gateway = gateway if gateway is not None else Gateway(settings)

    # Mount router
    app.include_router(health_router)            # /healthz, /api/v1/health
    app.include_router(events_router)            # /api/v1/events/sse
    app.include_router(devices_router)           # /api/v1/devices/..., /api/v1/stats

    # Startup: seed + MQTT + liveness scheduler
    @app.on_event("startup")
    async def _startup():
        app.state.gateway.start()

    # Shutdown: close the broker connection, stop the sweep
    @app.on_event("shutdown")
    async def _shutdown():
        app.state.gateway.stop()

    return app
