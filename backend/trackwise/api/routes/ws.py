from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

from trackwise.core.realtime_manager import get_realtime_manager

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/sim")
async def simulation_stream(websocket: WebSocket) -> None:
	"""
	Stream simulation snapshots.

	Sends an "initial" frame on connect, then one "tick" frame per tick while
	the run loop is active. Incoming messages are treated as keep-alives.
	"""
	await websocket.accept()
	manager = get_realtime_manager()
	client_id = await manager.register_client(websocket)
	logger.info(f"WebSocket client {client_id} connected")
	try:
		while True:
			await websocket.receive_text()
	except WebSocketDisconnect:
		logger.info(f"WebSocket client {client_id} disconnected")
	finally:
		await manager.unregister_client(client_id)
