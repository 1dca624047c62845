from typing import Any, Callable, Dict, List

from machine_advisor.agent.analysis import analyze_condition as run_condition_rules
from machine_advisor.agent.schemas import AnalysisCriteria, MachineRankEntry, StepOutcome
from machine_advisor.agent.state import MaintenanceState
from machine_advisor.config import SENSOR_WINDOW, THRESHOLDS, Thresholds
from machine_advisor.data.repository import MachineRepository
from machine_advisor.llm.prompts import NO_MACHINES_MATCHED
from machine_advisor.observability.logging_setup import logger


def _outcome(node: str, status: str, detail: str | None = None) -> List[StepOutcome]:
    return [StepOutcome(node=node, status=status, detail=detail)]


def fetch_sensor(state: MaintenanceState, *, repository: MachineRepository) -> Dict[str, Any]:
    machine_id = state.get("machine_id")
    if not machine_id:
        logger.warning("No machine_id in state, skipping sensor fetch", extra={"event": "fetch_sensor_skip"})
        return {"sensor_data": None, "should_continue": True,
                "outcomes": _outcome("fetch_sensor", "degraded", "no machine_id")}
    try:
        readings = repository.get_sensor_data(machine_id, SENSOR_WINDOW)
    except Exception as e:
        logger.error("fetch_sensor_failed", extra={"event": "fetch_sensor_failed", "machine_id": machine_id, "error": str(e)})
        return {"error": "Failed to fetch sensor data", "sensor_data": [], "should_continue": True,
                "outcomes": _outcome("fetch_sensor", "error", str(e))}

    if not readings:
        logger.warning("No sensor data found", extra={"event": "fetch_sensor_empty", "machine_id": machine_id})
        return {"sensor_data": [], "should_continue": True,
                "outcomes": _outcome("fetch_sensor", "degraded", "no readings")}
    return {"sensor_data": readings, "should_continue": True,
            "outcomes": _outcome("fetch_sensor", "ok", f"{len(readings)} readings")}


def fetch_prediction(state: MaintenanceState, *, repository: MachineRepository) -> Dict[str, Any]:
    machine_id = state.get("machine_id")
    if not machine_id:
        logger.warning("No machine_id in state, skipping prediction fetch", extra={"event": "fetch_prediction_skip"})
        return {"prediction_data": None, "should_continue": True,
                "outcomes": _outcome("fetch_prediction", "degraded", "no machine_id")}
    try:
        prediction = repository.get_latest_prediction(machine_id)
    except Exception as e:
        logger.error("fetch_prediction_failed", extra={"event": "fetch_prediction_failed", "machine_id": machine_id, "error": str(e)})
        return {"error": "Failed to fetch prediction data", "prediction_data": None, "should_continue": True,
                "outcomes": _outcome("fetch_prediction", "error", str(e))}

    if prediction is None:
        logger.warning("No prediction found", extra={"event": "fetch_prediction_empty", "machine_id": machine_id})
        return {"prediction_data": None, "should_continue": True,
                "outcomes": _outcome("fetch_prediction", "degraded", "no prediction")}
    return {"prediction_data": prediction, "should_continue": True,
            "outcomes": _outcome("fetch_prediction", "ok", f"risk={prediction.risk_score:.3f}")}


def analyze_condition(state: MaintenanceState, *, thresholds: Thresholds = THRESHOLDS) -> Dict[str, Any]:
    if not state.get("machine_id"):
        logger.warning("No machine_id in state, skipping analysis", extra={"event": "analyze_condition_skip"})
        return {"should_continue": True, "outcomes": _outcome("analyze_condition", "degraded", "no machine_id")}

    analysis = run_condition_rules(
        state.get("machine_context"),
        state.get("sensor_data"),
        state.get("prediction_data"),
        thresholds,
    )
    return {"analysis": analysis, "should_continue": True,
            "outcomes": _outcome("analyze_condition", "ok", analysis.risk_level)}


def _aggregate_call(criteria: AnalysisCriteria, repository: MachineRepository) -> Callable[[], List[MachineRankEntry]]:
    filters = criteria.machine_filters
    kind = criteria.criteria_type
    if kind == "risk":
        return lambda: repository.get_machines_by_risk(criteria.time_window, criteria.risk_threshold, filters)
    if kind == "prediction":
        return lambda: repository.get_machines_by_prediction(criteria.time_window, filters)
    if kind == "anomaly":
        return lambda: repository.get_machines_by_anomaly(filters)
    if kind == "overheating":
        return lambda: repository.get_machines_by_overheating(criteria.time_window, filters)
    return lambda: repository.get_all_machines_status(filters)


def analyze_machines(state: MaintenanceState, *, repository: MachineRepository) -> Dict[str, Any]:
    criteria = state.get("analysis_criteria")
    if criteria is None:
        return {"error": "No analysis criteria provided", "should_continue": False,
                "outcomes": _outcome("analyze_machines", "error", "no criteria")}

    update: Dict[str, Any] = {"should_continue": True}
    try:
        machines = _aggregate_call(criteria, repository)()
        status, detail = "ok", criteria.criteria_type
    except Exception as e:
        logger.error(
            "aggregate_failed",
            extra={"event": "aggregate_failed", "criteria": criteria.criteria_type, "error": str(e)},
        )
        machines = []
        update["error"] = f"Failed to fetch machines by {criteria.criteria_type}"
        status, detail = "error", str(e)

    if not machines:
        update.update({"machine_list": [], "response": NO_MACHINES_MATCHED})
        return {**update, "outcomes": _outcome("analyze_machines", "degraded" if status == "ok" else status, "no machines matched")}

    # highest risk first; sorted() is stable so ties keep repository order
    ranked = sorted(machines, key=lambda m: m.risk_score or 0.0, reverse=True)
    logger.info("machines_ranked", extra={"event": "machines_ranked", "count": len(ranked), "criteria": criteria.criteria_type})
    return {**update, "machine_list": ranked, "outcomes": _outcome("analyze_machines", status, detail)}
