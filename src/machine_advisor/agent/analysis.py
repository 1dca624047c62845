"""
Deterministic risk and anomaly rules shared by the workflow and the data facade.

Nothing here performs I/O; every function takes plain records and a
``Thresholds`` instance so the rules can be exercised against literal fixtures.
"""

from __future__ import annotations

from dataclasses import dataclass
from statistics import fmean, pvariance
from typing import Iterable, List, Optional, Sequence

from machine_advisor.agent.schemas import (
    AnalysisResult,
    MachineContext,
    PredictionSnapshot,
    RiskLevel,
    SensorDataPoint,
)
from machine_advisor.config import THRESHOLDS, Thresholds

_LEVEL_ORDER = {"LOW": 0, "MODERATE": 1, "HIGH": 2}


def risk_level_from_score(score: float, thresholds: Thresholds = THRESHOLDS) -> RiskLevel:
    if score >= thresholds.risk_high:
        return "HIGH"
    if score >= thresholds.risk_moderate:
        return "MODERATE"
    return "LOW"


def highest_risk_level(levels: Iterable[str]) -> RiskLevel:
    best: RiskLevel = "LOW"
    for level in levels:
        if _LEVEL_ORDER.get(level, 0) > _LEVEL_ORDER[best]:
            best = level  # type: ignore[assignment]
    return best


@dataclass(frozen=True)
class SensorMeans:
    air_temp: float
    process_temp: float
    rotational_speed: float
    torque: float
    tool_wear: float


def sensor_means(readings: Sequence[SensorDataPoint]) -> Optional[SensorMeans]:
    if not readings:
        return None
    return SensorMeans(
        air_temp=fmean(r.air_temp for r in readings),
        process_temp=fmean(r.process_temp for r in readings),
        rotational_speed=fmean(r.rotational_speed for r in readings),
        torque=fmean(r.torque for r in readings),
        tool_wear=fmean(r.tool_wear for r in readings),
    )


def detect_window_anomalies(readings: Sequence[SensorDataPoint], thresholds: Thresholds = THRESHOLDS) -> List[str]:
    """Heuristic scan of a short reading window, used when ranking the fleet."""
    if not readings:
        return []
    anomalies: List[str] = []
    if max(r.process_temp for r in readings) > thresholds.anomaly_max_process_temp:
        anomalies.append("Abnormally high process temperature detected")
    # population variance over the window
    if pvariance([r.rotational_speed for r in readings]) > thresholds.anomaly_speed_variance:
        anomalies.append("Unstable rotation")
    if max(r.torque for r in readings) > thresholds.anomaly_max_torque:
        anomalies.append("Abnormally high torque")
    return anomalies


def _summary(context: Optional[MachineContext], level: str, alerts: List[str]) -> str:
    product_id = context.product_id if context else "Unknown"
    summary = f"Machine {product_id} Status: **{level}**"
    if alerts:
        summary += "\n\n**Alerts:**\n" + "\n".join(f"• {a}" for a in alerts)
    return summary


def analyze_condition(
    context: Optional[MachineContext],
    sensor_data: Optional[Sequence[SensorDataPoint]],
    prediction: Optional[PredictionSnapshot],
    thresholds: Thresholds = THRESHOLDS,
) -> AnalysisResult:
    """Fuse sensor means and the latest prediction into a risk assessment.

    - base risk score is the prediction's score (0 without one)
    - a predicted failure raises an alert naming the failure type
    - mean process/air temperature, torque and tool wear each raise one alert
    - level is HIGH at score >= risk_high or two alerts, MODERATE at
      score >= risk_moderate or one alert, LOW otherwise
    """
    alerts: List[str] = []
    anomalies: List[str] = []
    recommendations: List[str] = []

    risk_score = 0.0
    if prediction is not None:
        risk_score = prediction.risk_score
        if prediction.failure_predicted:
            failure_type = prediction.failure_type or "Unknown type"
            alerts.append(f"FAILURE PREDICTED: {failure_type}")
            recommendations.append(f"URGENT: Investigate predicted {failure_type} failure")

    means = sensor_means(sensor_data or [])
    if means is not None:
        if means.process_temp > thresholds.process_temp_k or means.air_temp > thresholds.air_temp_k:
            anomalies.append("Temperature anomaly detected")
            alerts.append(f"Process temperature: {means.process_temp:.1f}K (abnormal)")
        if means.torque > thresholds.torque_nm:
            anomalies.append("Vibration/torque anomaly detected")
            alerts.append(f"Torque: {means.torque:.1f}Nm (high)")
        if means.tool_wear > thresholds.tool_wear_min:
            anomalies.append("Tool wear approaching limit")
            alerts.append(f"Tool wear: {means.tool_wear:.0f}min (high)")
            recommendations.append("Schedule tool replacement soon")

    if risk_score >= thresholds.risk_high or len(alerts) >= 2:
        level: RiskLevel = "HIGH"
        recommendations += [
            "Schedule immediate maintenance inspection",
            "Monitor machine continuously until maintenance is completed",
        ]
    elif risk_score >= thresholds.risk_moderate or len(alerts) == 1:
        level = "MODERATE"
        recommendations += [
            "Schedule preventative maintenance within 48 hours",
            "Increase monitoring frequency",
        ]
    else:
        level = "LOW"
        recommendations += [
            "Continue normal operations",
            "Maintain regular monitoring schedule",
        ]

    return AnalysisResult(
        risk_score=risk_score,
        risk_level=level,
        summary=_summary(context, level, alerts),
        alerts=alerts,
        recommendations=recommendations,
        anomalies=anomalies,
    )
