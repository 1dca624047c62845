import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    # timezone-aware; sqlmodel rejects naive datetimes on write
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Machine(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    product_id: str = Field(index=True, unique=True)
    name: Optional[str] = None
    type: str = "M"                      # L | M | H
    status: str = "OPERATIONAL"
    location: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class SensorReading(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    machine_id: str = Field(foreign_key="machine.id", index=True)

    air_temp: float                      # K
    process_temp: float                  # K
    rotational_speed: float              # RPM
    torque: float                        # Nm
    tool_wear: float                     # min

    timestamp: datetime = Field(default_factory=utcnow, index=True)


class PredictionResult(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    machine_id: str = Field(foreign_key="machine.id", index=True)

    risk_score: float
    failure_predicted: bool = False
    failure_type: Optional[str] = None
    confidence: Optional[float] = None
    predicted_failure_time: Optional[datetime] = None
    anomaly_detected: bool = False

    timestamp: datetime = Field(default_factory=utcnow, index=True)
