from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from typing import Optional

from ..scanner.models import ScanResult
from ..scanner.network_scanner import NetworkScanner
from .schemas import (
    DeviceResponse,
    DeviceListResponse,
    ScanStatusResponse,
    ScanSummary,
    ScanTriggerResponse,
)

router = APIRouter()


def get_scanner(request: Request) -> NetworkScanner:
    """Dependency returning the application's scanner."""
    return request.app.state.scanner


def _summary(result: Optional[ScanResult]) -> Optional[ScanSummary]:
    if result is None:
        return None
    return ScanSummary(
        subnet=result.subnet,
        started_at=result.started_at,
        completed_at=result.completed_at,
        hosts_probed=result.hosts_probed,
        devices_found=len(result.devices),
    )


def _status(scanner: NetworkScanner) -> ScanStatusResponse:
    completed, total = scanner.progress
    return ScanStatusResponse(
        state=scanner.state,
        running=scanner.is_running,
        completed=completed,
        total=total,
        last_scan=_summary(scanner.last_result),
    )


@router.get("/devices", response_model=DeviceListResponse)
async def get_devices(
    device_type: Optional[str] = Query(None, alias="type"),
    search: Optional[str] = Query(None),
    scanner: NetworkScanner = Depends(get_scanner)
):
    """Get the devices found by the last finished scan."""
    result = scanner.last_result
    if result is None:
        return DeviceListResponse(devices=[], total=0)
    
    devices = result.devices
    if device_type:
        devices = [d for d in devices if d.type.value == device_type]
    
    if search:
        search_term = search.lower()
        devices = [
            d for d in devices
            if search_term in d.name.lower() or
               search_term in d.host or
               (d.mac_address and search_term in d.mac_address.lower()) or
               (d.model and search_term in d.model.lower())
        ]
    
    return DeviceListResponse(
        devices=[DeviceResponse.model_validate(d) for d in devices],
        total=len(devices),
        subnet=result.subnet or None,
        completed_at=result.completed_at
    )


@router.get("/devices/{host}", response_model=DeviceResponse)
async def get_device(host: str, scanner: NetworkScanner = Depends(get_scanner)):
    """Get one device of the last scan by its IPv4 address."""
    result = scanner.last_result
    if result is not None:
        for device in result.devices:
            if device.host == host:
                return DeviceResponse.model_validate(device)
    raise HTTPException(status_code=404, detail="Device not found")


@router.get("/scan", response_model=ScanStatusResponse)
async def get_scan_status(scanner: NetworkScanner = Depends(get_scanner)):
    """Get scanner state, progress and the last scan summary."""
    return _status(scanner)


@router.post("/scan", response_model=ScanTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_scan(
    restart: bool = Query(False, description="Discard a running scan and start over"),
    scanner: NetworkScanner = Depends(get_scanner)
):
    """Start a network scan in the background."""
    if scanner.is_running and not restart:
        raise HTTPException(status_code=409, detail="A scan is already running")
    
    await scanner.start()
    return ScanTriggerResponse(
        success=True,
        message="Scan started",
        state=scanner.state
    )


@router.delete("/scan", response_model=ScanStatusResponse)
async def stop_scan(scanner: NetworkScanner = Depends(get_scanner)):
    """Stop the running scan, if any."""
    await scanner.stop()
    return _status(scanner)
