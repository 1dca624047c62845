from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

RiskLevel = Literal["LOW", "MODERATE", "HIGH"]
CriteriaType = Literal["risk", "prediction", "anomaly", "overheating", "generic"]
MachineType = Literal["L", "M", "H"]

CRITERIA_TYPES = ("risk", "prediction", "anomaly", "overheating", "generic")


# ------------------------------------------------------------------
# Records read from the data facade
# ------------------------------------------------------------------
class SensorDataPoint(BaseModel):
    air_temp: float            # K
    process_temp: float        # K
    rotational_speed: float    # RPM
    torque: float              # Nm
    tool_wear: float           # min
    timestamp: datetime


class PredictionSnapshot(BaseModel):
    risk_score: float = Field(..., ge=0.0, le=1.0)
    failure_predicted: bool
    failure_type: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    predicted_failure_time: Optional[datetime] = None
    timestamp: datetime


class MachineContext(BaseModel):
    machine_id: str
    product_id: str
    name: Optional[str] = None
    type: str                  # L, M, H
    status: str
    location: Optional[str] = None


# ------------------------------------------------------------------
# Multi-machine criteria & results
# ------------------------------------------------------------------
class MachineFilters(BaseModel):
    product_id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    type: Optional[MachineType] = None

    def is_empty(self) -> bool:
        return not any((self.product_id, self.name, self.location, self.type))


class AnalysisCriteria(BaseModel):
    criteria_type: CriteriaType = "generic"
    time_window: Optional[str] = None          # 1_day | 3_days | 1_week | 1_month
    risk_threshold: Optional[str] = None       # high | moderate | low
    compound_intents: List[str] = Field(default_factory=list)
    machine_filters: Optional[MachineFilters] = None


class MachineRankEntry(BaseModel):
    id: str
    product_id: str
    name: Optional[str] = None
    type: str
    location: Optional[str] = None
    risk_score: float
    risk_level: RiskLevel
    critical_alerts: List[str] = Field(default_factory=list)
    # criterion-specific extras
    status: Optional[str] = None
    predicted_failure_type: Optional[str] = None
    predicted_failure_time: Optional[datetime] = None
    anomalies: List[str] = Field(default_factory=list)
    current_temp: Optional[float] = None
    avg_temp: Optional[float] = None
    last_update: Optional[datetime] = None


# ------------------------------------------------------------------
# Analysis & output
# ------------------------------------------------------------------
class AnalysisResult(BaseModel):
    risk_score: float
    risk_level: RiskLevel
    summary: str
    alerts: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    anomalies: List[str] = Field(default_factory=list)


class MachineAnalysis(BaseModel):
    machine_id: str
    product_id: str
    type: str
    status: str
    location: Optional[str] = None
    risk_score: float
    risk_level: RiskLevel
    failure_predicted: bool
    failure_type: Optional[str] = None
    confidence: Optional[float] = None
    recommendations: List[str] = Field(default_factory=list)
    latest_metrics: Optional[Dict[str, float]] = None


class StructuredResponse(BaseModel):
    summary: str
    machine_analysis: List[MachineAnalysis] = Field(default_factory=list)
    overall_risk: RiskLevel = "MODERATE"
    critical_alerts: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class StepOutcome(BaseModel):
    node: str
    status: Literal["ok", "degraded", "error"]
    detail: Optional[str] = None


# ------------------------------------------------------------------
# Intent extraction payload (what the model is asked to return)
# ------------------------------------------------------------------
class MachineMention(BaseModel):
    productId: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    type: Optional[str] = None


class ParsedQuery(BaseModel):
    isMultiMachineQuery: bool = False
    intent: Optional[str] = None
    compoundIntents: List[str] = Field(default_factory=list)
    timeWindow: Optional[str] = None
    riskThreshold: Optional[str] = None
    machine: MachineMention = Field(default_factory=MachineMention)
    confidence: float = 0.0

    @field_validator("machine", mode="before")
    @classmethod
    def _none_machine(cls, v: Any) -> Any:
        return v or {}

    @field_validator("compoundIntents", mode="before")
    @classmethod
    def _none_list(cls, v: Any) -> Any:
        return v or []

    @field_validator("confidence", mode="before")
    @classmethod
    def _none_confidence(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("isMultiMachineQuery", mode="before")
    @classmethod
    def _none_flag(cls, v: Any) -> Any:
        return bool(v)


# ------------------------------------------------------------------
# Caller surface
# ------------------------------------------------------------------
class ChatTurn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)
    conversation_history: List[ChatTurn] = Field(default_factory=list)
    machine_id: Optional[str] = None


class ChatResponse(BaseModel):
    text: str
    structured: StructuredResponse
    needs_clarification: bool = False
    candidate_machines: List[Dict[str, Any]] = Field(default_factory=list)
    usage: Dict[str, Any] = Field(default_factory=dict)
