from typing import Any, Dict

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
import logging

from trackwise.core.realtime_manager import get_realtime_manager
from trackwise.core.twin_schema import EvaluationRequest, SpeedRequest, StopRequest, TickRequest
from trackwise.simulation.evaluation import EvaluationParams

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/state")
async def get_state() -> Dict[str, Any]:
	"""Current clock, per-train positions and the ranked risk list."""
	engine = await get_realtime_manager().get_engine()
	return engine.snapshot()


@router.get("/risks")
async def get_risks() -> Dict[str, Any]:
	engine = await get_realtime_manager().get_engine()
	return {
		"clock": engine.state.clock.isoformat(),
		"risks": [r.to_dict() for r in engine.state.risks],
	}


@router.post("/speed")
async def set_speed(req: SpeedRequest) -> Dict[str, Any]:
	engine = await get_realtime_manager().get_engine()
	try:
		value = engine.set_speed_multiplier(req.multiplier)
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	return {"speedMultiplier": value}


@router.post("/stop")
async def request_stop(req: StopRequest) -> Dict[str, Any]:
	"""Forced stop for one or two trains; takes effect after the configured delay."""
	engine = await get_realtime_manager().get_engine()
	try:
		engine.request_stop(req.train_ids)
	except KeyError as e:
		raise HTTPException(status_code=404, detail=str(e.args[0]))
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	return {"trainIds": req.train_ids, "delaySeconds": engine.stop_delay_seconds}


@router.post("/stop/{train_id}/release")
async def release_stop(train_id: str) -> Dict[str, Any]:
	engine = await get_realtime_manager().get_engine()
	try:
		engine.release_stop(train_id)
	except KeyError as e:
		raise HTTPException(status_code=404, detail=str(e.args[0]))
	return {"trainId": train_id, "isStopped": False}


@router.post("/tick")
async def tick(req: TickRequest = TickRequest()) -> Dict[str, Any]:
	"""Advance the simulation manually (useful while the loop is paused)."""
	manager = get_realtime_manager()
	snapshot: Dict[str, Any] = {}
	for _ in range(req.steps):
		snapshot = await manager.tick_once()
	return snapshot


@router.get("/trains/{train_id}/schedule")
async def get_train_schedule(train_id: str, day: int = 0) -> Dict[str, Any]:
	engine = await get_realtime_manager().get_engine()
	train = engine.state.trains_by_id.get(train_id)
	if train is None:
		raise HTTPException(status_code=404, detail=f"Unknown train: {train_id}")
	entry = train.schedule_for_day(day)
	return {
		"id": train.train_id,
		"name": train.name,
		"category": train.category,
		"operatingDays": train.operating_days,
		"route": train.route,
		"schedule": entry.to_dict() if entry else None,
	}


@router.get("/trains/{train_id}/presence")
async def get_train_presence(train_id: str) -> Dict[str, Any]:
	"""Diffused occupancy mass of one train per station, from the latest risk pass."""
	engine = await get_realtime_manager().get_engine()
	if train_id not in engine.state.trains_by_id:
		raise HTTPException(status_code=404, detail=f"Unknown train: {train_id}")
	return {
		"id": train_id,
		"clock": engine.state.clock.isoformat(),
		"presence": engine.risk_engine.diffusion.train_mass(train_id),
	}


@router.get("/network")
async def get_network() -> Dict[str, Any]:
	engine = await get_realtime_manager().get_engine()
	data = engine.state.graph.to_dict()
	data["pathCache"] = engine.state.resolver.cache_stats()
	return data


@router.post("/evaluate")
async def evaluate(req: EvaluationRequest = EvaluationRequest()) -> Dict[str, Any]:
	engine = await get_realtime_manager().get_engine()
	result = engine.evaluate(EvaluationParams(**req.model_dump()))
	return result.to_dict()


@router.get("/evaluate/export", response_class=PlainTextResponse)
async def export_evaluation() -> PlainTextResponse:
	"""Last evaluation as CSV (runs one with default parameters if none exists)."""
	engine = await get_realtime_manager().get_engine()
	result = engine.state.last_evaluation or engine.evaluate()
	return PlainTextResponse(
		result.to_csv(),
		media_type="text/csv",
		headers={"Content-Disposition": "attachment; filename=metrics.csv"},
	)


@router.post("/run/start")
async def start_run() -> Dict[str, Any]:
	manager = get_realtime_manager()
	await manager.start()
	return {"running": manager.is_running}


@router.post("/run/pause")
async def pause_run() -> Dict[str, Any]:
	manager = get_realtime_manager()
	await manager.pause()
	return {"running": manager.is_running}
