import json
import re
from typing import Any, Dict, List, Optional, Sequence

from machine_advisor.agent.errors import IntentParseError
from machine_advisor.agent.schemas import (
    AnalysisResult,
    MachineAnalysis,
    MachineContext,
    SensorDataPoint,
    StructuredResponse,
)
from machine_advisor.config import ALERT_CAP

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OPEN_BRACE = re.compile(r"\{")

_TYPE_SYNONYMS = {
    "l": "L", "low": "L",
    "m": "M", "mid": "M", "medium": "M",
    "h": "H", "high": "H",
}


def _as_object(text: str) -> Dict[str, Any]:
    value = json.loads(text)
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value


def decode_json_object(text: str) -> Dict[str, Any]:
    """
    Best-effort decode of a model reply that should contain one JSON object.

    Tries, in order: the raw text, the text with Markdown fences stripped and
    trimmed to the first ``{`` .. last ``}``, then the first brace-delimited
    span in the raw text that decodes on its own. Raises ``IntentParseError`` when all
    three fail.
    """
    if text is None:
        raise IntentParseError("empty model reply")

    try:
        return _as_object(text.strip())
    except ValueError:
        pass

    cleaned = _FENCE.sub("", text)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    last_err: Exception = IntentParseError("no JSON object in model reply")
    if start != -1 and end > start:
        try:
            return _as_object(cleaned[start:end + 1])
        except ValueError as e:
            last_err = e

    decoder = json.JSONDecoder()
    for match in _OPEN_BRACE.finditer(text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except ValueError as e:
            last_err = e
            continue
        if isinstance(value, dict):
            return value

    raise IntentParseError(f"Failed to parse LLM JSON response: {last_err}")


def normalize_machine_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return _TYPE_SYNONYMS.get(value.strip().lower())


def _matches(line: str, keywords: Sequence[str]) -> bool:
    upper = line.upper()
    return any(k in upper for k in keywords)


def parse_structured_response(
    text: str,
    analysis: Optional[AnalysisResult] = None,
    context: Optional[MachineContext] = None,
    sensor_data: Optional[Sequence[SensorDataPoint]] = None,
    failure_type: Optional[str] = None,
    confidence: Optional[float] = None,
) -> StructuredResponse:
    """
    Mine a free-text answer for a summary, alerts and recommendations.

    Substring matching only; the lines picked are not checked for meaning.
    """
    text = text or ""
    lines = text.split("\n")
    non_empty = [l.strip() for l in lines if l.strip()]
    summary = non_empty[0] if non_empty else text[:200]

    alerts: List[str] = [
        l.strip() for l in lines if _matches(l, ("ALERT", "CRITICAL", "WARNING"))
    ][:ALERT_CAP]
    recommendations: List[str] = [
        l.strip() for l in lines
        if _matches(l, ("RECOMMEND", "ACTION")) or "Schedule" in l
    ][:ALERT_CAP]

    machine_analysis: List[MachineAnalysis] = []
    if analysis is not None:
        latest = sensor_data[-1] if sensor_data else None
        machine_analysis.append(MachineAnalysis(
            machine_id=context.machine_id if context else "unknown",
            product_id=context.product_id if context else "unknown",
            type=context.type if context else "unknown",
            status=context.status if context else "unknown",
            location=context.location if context else None,
            risk_score=analysis.risk_score,
            risk_level=analysis.risk_level,
            failure_predicted=any("FAILURE" in a.upper() for a in analysis.alerts),
            failure_type=failure_type,
            confidence=confidence,
            recommendations=list(analysis.recommendations),
            latest_metrics=latest.model_dump(exclude={"timestamp"}) if latest else None,
        ))

    return StructuredResponse(
        summary=summary,
        machine_analysis=machine_analysis,
        overall_risk=analysis.risk_level if analysis else "MODERATE",
        critical_alerts=[a for a in alerts if a],
        recommendations=[r for r in recommendations if r],
    )
