import os
import logging
from dotenv import load_dotenv

# Reload .env file to pick up changes
load_dotenv(override=True)  # override=True ensures new values replace old ones

logger = logging.getLogger(__name__)


def _env_float(name: str, default: str) -> float:
	try:
		return float(os.getenv(name, default))
	except ValueError:
		logger.warning(f"Invalid float for {name}; using default {default}")
		return float(default)


def _env_int(name: str, default: str) -> int:
	try:
		return int(os.getenv(name, default))
	except ValueError:
		logger.warning(f"Invalid integer for {name}; using default {default}")
		return int(default)


class Settings:
	APP_NAME: str = os.getenv("APP_NAME", "Trackwise")
	ENV: str = os.getenv("ENV", "dev")
	API_PREFIX: str = os.getenv("API_PREFIX", "/api")

	# Input data (defaults to the bundled hub network)
	DATA_DIR: str | None = os.getenv("DATA_DIR")
	STATIONS_FILE: str = os.getenv("STATIONS_FILE", "stations_25_hubs.json")
	ROUTES_FILE: str = os.getenv("ROUTES_FILE", "route_templates.json")
	SCHEDULES_FILE: str | None = os.getenv("SCHEDULES_FILE")
	SIM_TIMEZONE: str = os.getenv("SIM_TIMEZONE", "Asia/Kolkata")
	AUTO_START: bool = os.getenv("AUTO_START", "false").lower() == "true"

	# Simulation clock
	TICK_SECONDS: float = _env_float("TICK_SECONDS", "1.0")
	DEFAULT_SPEED_MULTIPLIER: float = _env_float("DEFAULT_SPEED_MULTIPLIER", "1.0")
	FORCED_STOP_DELAY_SECONDS: float = _env_float("FORCED_STOP_DELAY_SECONDS", "5.0")
	MAX_TRAINS: int = _env_int("MAX_TRAINS", "100")
	FLEET_SEED: int = _env_int("FLEET_SEED", "7")

	# Graph
	PRIORITY_CORRIDOR_COUNT: int = _env_int("PRIORITY_CORRIDOR_COUNT", "4")
	DEFAULT_SPEED_LIMIT_KMH: float = _env_float("DEFAULT_SPEED_LIMIT_KMH", "90")

	# Timetable
	SIMULATED_DAYS: int = _env_int("SIMULATED_DAYS", "365")
	ACCELERATION_MS2: float = _env_float("ACCELERATION_MS2", "0.35")
	MAX_PLAUSIBLE_SPEED_KMH: float = _env_float("MAX_PLAUSIBLE_SPEED_KMH", "120")

	# Risk engine
	RISK_HORIZON_MINUTES: float = _env_float("RISK_HORIZON_MINUTES", "30")
	RISK_STEP_SECONDS: float = _env_float("RISK_STEP_SECONDS", "30")
	RISK_DISTANCE_KM: float = _env_float("RISK_DISTANCE_KM", "2.0")
	GEOMETRIC_RISK_SCORE: float = _env_float("GEOMETRIC_RISK_SCORE", "0.9")
	MIN_COMBINED_RISK: float = _env_float("MIN_COMBINED_RISK", "0.5")
	RISK_TOP_N: int = _env_int("RISK_TOP_N", "20")

	# Occupancy diffusion
	DIFFUSION_RATE: float = _env_float("DIFFUSION_RATE", "0.3")
	DIFFUSION_DECAY: float = _env_float("DIFFUSION_DECAY", "0.05")
	DIFFUSION_STEPS: int = _env_int("DIFFUSION_STEPS", "3")

	# Reservoir predictor
	ESN_RESERVOIR_SIZE: int = _env_int("ESN_RESERVOIR_SIZE", "64")
	ESN_LEAK: float = _env_float("ESN_LEAK", "0.6")
	ESN_RIDGE: float = _env_float("ESN_RIDGE", "0.01")

	# OpenStreetMap speed-limit enrichment (off unless explicitly enabled)
	ENABLE_OSM_FETCH: bool = os.getenv("ENABLE_OSM_FETCH", "false").lower() == "true"
	OVERPASS_URL: str = os.getenv("OVERPASS_URL", "https://overpass-api.de/api/interpreter")
	OSM_MAX_FETCH: int = _env_int("OSM_MAX_FETCH", "60")
	OSM_REQUEST_DELAY_SECONDS: float = _env_float("OSM_REQUEST_DELAY_SECONDS", "0.25")
	OSM_CACHE_PATH: str | None = os.getenv("OSM_CACHE_PATH")

	def __init__(self):
		"""Validate simulation configuration on initialization"""
		self._validate_simulation_config()

	def _validate_simulation_config(self):
		"""Clamp values the engine cannot run with and log warnings"""
		if self.TICK_SECONDS <= 0:
			logger.warning(f"TICK_SECONDS={self.TICK_SECONDS} is not positive; using 1.0")
			self.TICK_SECONDS = 1.0
		if self.DEFAULT_SPEED_MULTIPLIER <= 0:
			logger.warning(
				f"DEFAULT_SPEED_MULTIPLIER={self.DEFAULT_SPEED_MULTIPLIER} is not positive; using 1.0"
			)
			self.DEFAULT_SPEED_MULTIPLIER = 1.0
		if self.RISK_STEP_SECONDS <= 0:
			logger.warning(f"RISK_STEP_SECONDS={self.RISK_STEP_SECONDS} is not positive; using 30")
			self.RISK_STEP_SECONDS = 30.0
		if not 0.0 <= self.DIFFUSION_RATE <= 1.0 or not 0.0 <= self.DIFFUSION_DECAY <= 1.0:
			logger.warning("DIFFUSION_RATE and DIFFUSION_DECAY must lie in [0, 1]; using defaults")
			self.DIFFUSION_RATE = 0.3
			self.DIFFUSION_DECAY = 0.05
		if self.ENABLE_OSM_FETCH:
			logger.info(f"OSM speed enrichment enabled (max {self.OSM_MAX_FETCH} segments)")

	@property
	def data_dir(self) -> str:
		if self.DATA_DIR:
			return self.DATA_DIR
		return os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")


settings = Settings()
