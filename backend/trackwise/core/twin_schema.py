from typing import List, Optional
from pydantic import BaseModel, Field


class StationRecord(BaseModel):
    id: str = Field(..., description="Unique station code, e.g. NDLS")
    name: str = ""
    lat: float
    lon: float
    state: str = ""


class RouteTemplate(BaseModel):
    name: str = ""
    stations: List[str] = Field(..., min_length=2, description="Ordered station codes")
    speed_limit_kmh: float = 90.0
    # None means "use the corridor-priority default"
    tracks: Optional[int] = Field(default=None, ge=1, le=4)


class ScheduleStopIn(BaseModel):
    station: str
    arr: Optional[str] = None
    dep: Optional[str] = None


class ScheduleRecordIn(BaseModel):
    train_no: str
    train_name: str = ""
    days: List[str] = []
    avg_speed_kmh: Optional[float] = None
    category: Optional[str] = None
    stops: List[ScheduleStopIn] = []


class SpeedRequest(BaseModel):
    multiplier: float


class StopRequest(BaseModel):
    train_ids: List[str] = Field(..., min_length=1, max_length=2)


class TickRequest(BaseModel):
    steps: int = Field(default=1, ge=1, le=600)


class EvaluationRequest(BaseModel):
    horizon_min: float = Field(default=60.0, gt=0)
    step_sec: float = Field(default=60.0, gt=0)
    truth_dist_km: float = Field(default=1.0, gt=0)
    ours_dist_km: float = Field(default=2.0, gt=0)
    baseline_dist_km: float = Field(default=5.0, gt=0)
