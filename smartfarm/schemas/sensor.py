from pydantic import BaseModel, Field
from typing import Optional

from smartfarm.services.registry import DeviceStatus

class TelemetryPayload(BaseModel):
    """Reading published by a device on <prefix>/<device-id>/data"""
    temperature: float = Field(strict=True, allow_inf_nan=False)
    humidity: float = Field(strict=True, allow_inf_nan=False)
    soil_percent: float = Field(alias="soilPercent", strict=True, allow_inf_nan=False, ge=0, le=100)
    pump_active: Optional[bool] = Field(default=False, alias="pumpActive", strict=True)

    class Config:
        populate_by_name = True

class StatusPayload(BaseModel):
    """Self-reported status published on <prefix>/<device-id>/status"""
    status: DeviceStatus
