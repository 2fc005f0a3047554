from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Set
import json
import asyncio
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_INTERVAL = 30.0


def _encode(event_type: str, data: dict) -> str:
    return json.dumps({"type": event_type, "data": data}, default=str)


class ScanEventHub:
    """Fans scan events out to every connected WebSocket client."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    async def join(self, websocket: WebSocket):
        await websocket.accept()
        self.clients.add(websocket)

    def leave(self, websocket: WebSocket):
        self.clients.discard(websocket)

    async def publish(self, event_type: str, data: dict):
        """Send one scan event to all clients, dropping the ones that are gone."""
        message = _encode(event_type, data)

        gone = set()
        for client in self.clients:
            try:
                await client.send_text(message)
            except Exception:
                gone.add(client)

        self.clients -= gone
        if gone:
            logger.debug(f"Dropped {len(gone)} closed WebSocket clients")


hub = ScanEventHub()


async def scanner_callback(event_type: str, data: dict):
    """Scanner listener forwarding scan events to WebSocket clients."""
    await hub.publish(event_type, data)


def scan_status(scanner) -> dict:
    """Snapshot of the scanner for a client that joins mid-scan."""
    completed, total = scanner.progress
    result = scanner.last_result
    return {
        "state": scanner.state.value,
        "running": scanner.is_running,
        "completed": completed,
        "total": total,
        "last_subnet": result.subnet if result else None,
        "last_devices_found": len(result.devices) if result else None,
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Scan event stream.

    A new client first gets a `scan_status` snapshot, then every
    `scan_started`, `scan_progress`, `scan_completed` and `scan_failed`
    event. Clients may send `{"type": "status"}` for a fresh snapshot or
    `{"type": "ping"}`; the server pings idle clients.
    """
    scanner = websocket.app.state.scanner
    await hub.join(websocket)

    try:
        await websocket.send_text(_encode("scan_status", scan_status(scanner)))

        while True:
            try:
                raw = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=KEEPALIVE_INTERVAL
                )
            except asyncio.TimeoutError:
                try:
                    await websocket.send_text(_encode("ping", {}))
                except Exception:
                    break
                continue

            try:
                request = json.loads(raw)
            except json.JSONDecodeError:
                continue

            request_type = request.get("type") if isinstance(request, dict) else None
            if request_type == "ping":
                await websocket.send_text(_encode("pong", {}))
            elif request_type == "status":
                await websocket.send_text(_encode("scan_status", scan_status(scanner)))

    except WebSocketDisconnect:
        pass
    finally:
        hub.leave(websocket)
