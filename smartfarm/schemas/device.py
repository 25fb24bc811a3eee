from pydantic import BaseModel, Field
from typing import Literal, Optional

from smartfarm.services.registry import DeviceMode

class DeviceCreate(BaseModel):
    name: str = Field(min_length=1)
    ip: str = Field(min_length=1)
    zone: Optional[str] = None
    id: Optional[str] = Field(default=None, min_length=1)

class DeviceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    zone: Optional[str] = None
    ip: Optional[str] = None

class PumpCommand(BaseModel):
    action: Literal["on", "off"]

class ModeCommand(BaseModel):
    mode: DeviceMode
