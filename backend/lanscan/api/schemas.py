from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional

from ..scanner.models import DeviceType, ScanState


class DeviceResponse(BaseModel):
    """Device response schema."""
    model_config = ConfigDict(from_attributes=True)
    
    name: str
    host: str
    mac_address: Optional[str] = None
    model: Optional[str] = None
    type: DeviceType


class DeviceListResponse(BaseModel):
    """Devices of the last finished scan."""
    devices: list[DeviceResponse]
    total: int
    subnet: Optional[str] = None
    completed_at: Optional[datetime] = None


class ScanSummary(BaseModel):
    """Summary of a finished scan."""
    model_config = ConfigDict(from_attributes=True)
    
    subnet: str
    started_at: datetime
    completed_at: datetime
    hosts_probed: int
    devices_found: int


class ScanStatusResponse(BaseModel):
    """Scanner state and progress."""
    state: ScanState
    running: bool
    completed: int
    total: int
    last_scan: Optional[ScanSummary] = None


class ScanTriggerResponse(BaseModel):
    """Scan trigger response schema."""
    success: bool
    message: str
    state: ScanState
