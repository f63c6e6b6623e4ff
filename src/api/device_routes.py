"""
Device control API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

# Response models
class DeviceResponse(BaseModel):
    name: str
    host: str
    port: int
    is_on: bool
    selected: bool = False

class ToggleResponse(BaseModel):
    success: bool
    device: Optional[DeviceResponse] = None
    error: Optional[str] = None

class DiscoveryTriggerResponse(BaseModel):
    message: str
    started: bool


def _device_response(endpoint, selected_name: Optional[str] = None) -> DeviceResponse:
    return DeviceResponse(**endpoint.to_dict(), selected=endpoint.name == selected_name)


def create_device_routes(server):
    """Create device listing, selection and toggle routes"""
    router = APIRouter(prefix="/api", tags=["devices"])
    registry = server.registry

    @router.get("/devices", response_model=List[DeviceResponse])
    async def list_devices():
        """List all registered devices in first-seen order"""
        selected = registry.selected()
        selected_name = selected.name if selected else None
        return [_device_response(e, selected_name) for e in registry.all()]

    @router.get("/devices/selected", response_model=DeviceResponse)
    async def get_selected_device():
        """Get the device under the selection cursor"""
        selected = registry.selected()
        if selected is None:
            raise HTTPException(status_code=404, detail="No devices registered")
        return _device_response(selected, selected.name)

    @router.post("/devices/selected/advance", response_model=DeviceResponse)
    async def advance_selection():
        """Move the selection cursor to the next device"""
        selected = registry.advance_selection()
        if selected is None:
            raise HTTPException(status_code=404, detail="No devices registered")
        return _device_response(selected, selected.name)

    @router.post("/devices/selected/toggle", response_model=ToggleResponse)
    async def toggle_selected_device():
        """Toggle the selected device on or off"""
        selected = registry.selected()
        if selected is None:
            raise HTTPException(status_code=404, detail="No devices registered")

        success = await server.toggle_selected()
        current = registry.get(selected.name)
        return ToggleResponse(
            success=success,
            device=_device_response(current, selected.name) if current else None,
            error=None if success else "State write failed"
        )

    @router.post("/devices/{name}/toggle", response_model=ToggleResponse)
    async def toggle_device(name: str):
        """Toggle a specific device by name"""
        if registry.get(name) is None:
            raise HTTPException(status_code=404, detail="Device not found")

        success = await server.toggle(name)
        current = registry.get(name)
        selected = registry.selected()
        return ToggleResponse(
            success=success,
            device=_device_response(current, selected.name if selected else None) if current else None,
            error=None if success else "State write failed"
        )

    @router.post("/discovery", response_model=DiscoveryTriggerResponse, status_code=202)
    async def trigger_discovery():
        """Trigger manual device discovery (merged into the registry as devices are found)"""
        if not server.start_discovery_in_background():
            raise HTTPException(status_code=409, detail="Discovery already in progress")
        return DiscoveryTriggerResponse(message="Discovery scan initiated", started=True)

    return router
