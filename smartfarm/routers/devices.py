from datetime import datetime
from fastapi import APIRouter, HTTPException, Depends, Query, Request
from starlette.concurrency import run_in_threadpool
from typing import Optional
import logging

from smartfarm.exceptions import DeviceNotFound, DuplicateDevice
from smartfarm.schemas.device import DeviceCreate, DeviceUpdate, PumpCommand, ModeCommand
from smartfarm.services.gateway import Gateway
from smartfarm.services.history import DEFAULT_QUERY_LIMIT
from smartfarm.services.registry import device_stats, new_device, zone_label_for

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["devices"])

def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway

def _not_found():
    return HTTPException(status_code=404, detail="Device not found")

@router.get("/devices")
def list_devices(gateway: Gateway = Depends(get_gateway)):
    """Get all devices"""
    devices = gateway.registry.list()
    return {
        "success": True,
        "data": [d.to_dict() for d in devices],
        "count": len(devices)
    }

@router.get("/devices/{device_id}")
def get_device(device_id: str, gateway: Gateway = Depends(get_gateway)):
    """Get device by ID"""
    device = gateway.registry.get(device_id)
    if not device:
        raise _not_found()
    return {"success": True, "data": device.to_dict()}

@router.post("/devices", status_code=201)
def create_device(payload: DeviceCreate, gateway: Gateway = Depends(get_gateway)):
    """Register a new device"""
    device = new_device(payload.name, payload.ip, zone=payload.zone, device_id=payload.id)
    try:
        created = gateway.registry.create(device)
    except DuplicateDevice:
        raise HTTPException(status_code=409, detail=f"Device {device.id} already exists")
    return {"success": True, "data": created.to_dict()}

@router.patch("/devices/{device_id}")
def update_device(device_id: str, payload: DeviceUpdate, gateway: Gateway = Depends(get_gateway)):
    """Update descriptive fields (name, zone, ip)"""
    patch = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "zone" in patch:
        patch["zone_label"] = zone_label_for(patch["zone"])
    if not patch:
        raise HTTPException(status_code=400, detail="Nothing to update")
    try:
        updated = gateway.registry.update(device_id, patch)
    except DeviceNotFound:
        raise _not_found()
    return {"success": True, "data": updated.to_dict()}

@router.delete("/devices/{device_id}")
def delete_device(device_id: str, gateway: Gateway = Depends(get_gateway)):
    """Deregister a device"""
    try:
        deleted = gateway.registry.delete(device_id)
    except DeviceNotFound:
        raise _not_found()
    return {"success": True, "message": f"Device {deleted.name} deleted"}

@router.post("/devices/{device_id}/pump")
def control_pump(device_id: str, command: PumpCommand, gateway: Gateway = Depends(get_gateway)):
    """Switch the pump on/off"""
    try:
        updated = gateway.commands.set_pump(device_id, command.action == "on")
    except DeviceNotFound:
        raise _not_found()
    return {
        "success": True,
        "message": f"Pump turned {command.action}",
        "data": updated.to_dict()
    }

@router.post("/devices/{device_id}/mode")
def set_mode(device_id: str, command: ModeCommand, gateway: Gateway = Depends(get_gateway)):
    """Set the device operating mode"""
    try:
        updated = gateway.commands.set_mode(device_id, command.mode)
    except DeviceNotFound:
        raise _not_found()
    return {
        "success": True,
        "message": f"Mode set to {command.mode.value}",
        "data": updated.to_dict()
    }

@router.post("/devices/{device_id}/data")
async def receive_data(device_id: str, request: Request, gateway: Gateway = Depends(get_gateway)):
    """HTTP fallback for device telemetry; same semantics as the MQTT data topic"""
    body = await request.body()
    await run_in_threadpool(gateway.ingest.handle_telemetry, device_id, body)
    return {"success": True}

@router.get("/devices/{device_id}/history")
def get_history(
    device_id: str,
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=100000),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    gateway: Gateway = Depends(get_gateway),
):
    """Sensor history, chronological, optionally bounded by a time window"""
    samples = gateway.history.query(device_id, limit=limit, start=start_date, end=end_date)
    return {
        "success": True,
        "data": [s.to_dict() for s in samples],
        "count": len(samples),
        "filters": {
            "limit": limit,
            "startDate": start_date.isoformat() if start_date else None,
            "endDate": end_date.isoformat() if end_date else None
        }
    }

@router.get("/stats")
def get_stats(gateway: Gateway = Depends(get_gateway)):
    """Dashboard counters"""
    return {"success": True, "data": device_stats(gateway.registry.list())}
