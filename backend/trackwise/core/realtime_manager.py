# backend/trackwise/core/realtime_manager.py

import asyncio
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid
import logging

from fastapi import WebSocketDisconnect

from trackwise.core.config import settings
from trackwise.services.adapter import build_simulation_async
from trackwise.simulation.engine import SimulationEngine

logger = logging.getLogger(__name__)


# ============================================================
# SIM RUN CLASS
# ============================================================

class SimRun:
    def __init__(self, engine: SimulationEngine):
        self.engine = engine
        self.clients: Dict[str, Any] = {}
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self.last_snapshot: Dict[str, Any] = {}
        self.lock = asyncio.Lock()

    async def broadcast(self, payload: dict):
        dead = []
        async with self.lock:
            for cid, ws in list(self.clients.items()):
                try:
                    await ws.send_json(payload)
                except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
                    logger.info(f"Dropping client {cid}: {e}")
                    dead.append(cid)

            for cid in dead:
                self.clients.pop(cid, None)


# ============================================================
# REALTIME MANAGER
# ============================================================

class RealtimeManager:
    """Drives a single simulation run with an asyncio task, one tick per TICK_SECONDS."""

    def __init__(self, engine: Optional[SimulationEngine] = None):
        self.run: Optional[SimRun] = SimRun(engine) if engine is not None else None
        self.tick_rate = settings.TICK_SECONDS
        self._build_lock = asyncio.Lock()

    async def ensure_run(self) -> SimRun:
        if self.run is None:
            async with self._build_lock:
                if self.run is None:
                    engine = await build_simulation_async()
                    self.run = SimRun(engine)
        return self.run

    async def get_engine(self) -> SimulationEngine:
        return (await self.ensure_run()).engine

    @property
    def is_running(self) -> bool:
        return self.run is not None and self.run.running

    async def start(self):
        run = await self.ensure_run()
        if run.running:
            return
        run.running = True
        run.task = asyncio.create_task(self._run_loop(run))
        logger.info("Simulation loop started")

    async def pause(self):
        run = self.run
        if run is None:
            return
        run.running = False
        if run.task:
            run.task.cancel()
            try:
                await run.task
            except asyncio.CancelledError:
                pass
            run.task = None
        logger.info("Simulation loop paused")

    async def stop(self):
        await self.pause()

    async def tick_once(self) -> Dict[str, Any]:
        run = await self.ensure_run()
        snapshot = run.engine.tick()
        run.last_snapshot = snapshot
        await run.broadcast({"type": "tick", "timestamp": datetime.now(timezone.utc).isoformat(), **snapshot})
        return snapshot

    async def _run_loop(self, run: SimRun):
        try:
            while run.running:
                await self.tick_once()
                await asyncio.sleep(self.tick_rate)

        except asyncio.CancelledError:
            pass

        except Exception as ex:
            run.last_snapshot = {"error": str(ex)}
            logger.error(f"Error in simulation loop: {ex}", exc_info=True)

        finally:
            run.running = False

    async def register_client(self, websocket) -> str:
        run = await self.ensure_run()
        client_id = uuid.uuid4().hex[:8]

        async with run.lock:
            run.clients[client_id] = websocket

        snapshot = run.last_snapshot or run.engine.snapshot()
        await websocket.send_json({
            "type": "initial",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **snapshot
        })
        return client_id

    async def unregister_client(self, client_id: str):
        if self.run is None:
            return
        async with self.run.lock:
            self.run.clients.pop(client_id, None)


# ============================================================
# SINGLETON MANAGER
# ============================================================

_manager: Optional[RealtimeManager] = None

def get_realtime_manager() -> RealtimeManager:
    global _manager
    if _manager is None:
        _manager = RealtimeManager()
    return _manager


def set_realtime_manager(manager: Optional[RealtimeManager]) -> None:
    global _manager
    _manager = manager
