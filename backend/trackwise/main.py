from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import simulation, ws
from .core.realtime_manager import get_realtime_manager
import os
import logging

from .core.config import settings

# Configure logging
logging.basicConfig(
	level=logging.INFO,
	format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:

	app = FastAPI(
		title="Trackwise Backend",
		description="Railway network simulation with collision-risk prediction (FastAPI)",
		version="0.1.0",
	)

	allowed_origins = [
		"http://localhost:5173",
		"http://127.0.0.1:5173",
	]
	# Allow override via env var (comma-separated)
	env_origins = os.getenv("CORS_ALLOW_ORIGINS")
	if env_origins:
		allowed_origins = [o.strip() for o in env_origins.split(",") if o.strip()]

	app.add_middleware(
		CORSMiddleware,
		allow_origins=allowed_origins,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	app.include_router(simulation.router, prefix=f"{settings.API_PREFIX}/sim", tags=["simulation"])
	app.include_router(ws.router, tags=["ws"])  # exposes /ws/sim

	@app.on_event("startup")
	async def on_startup() -> None:
		logger.info(f"Starting {settings.APP_NAME} (ENV={settings.ENV})")
		if settings.AUTO_START:
			await get_realtime_manager().start()

	@app.on_event("shutdown")
	async def on_shutdown() -> None:
		await get_realtime_manager().stop()

	@app.get("/health")
	def health() -> dict:
		return {"status": "ok"}

	@app.get("/")
	def root() -> dict:
		return {"message": f"{settings.APP_NAME} backend is running"}

	return app


app = create_app()
