"""
agent/nodes_llm.py
The two model-backed steps of the workflow:
- identify_machine: free text -> query type, criteria or a resolved machine
- generate_answer: grounded context + history -> reply and structured summary
Both degrade to a clarification or a fixed apology instead of raising.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from machine_advisor.agent.analysis import highest_risk_level
from machine_advisor.agent.errors import IntentParseError
from machine_advisor.agent.parsing import decode_json_object, normalize_machine_type, parse_structured_response
from machine_advisor.agent.schemas import (
    CRITERIA_TYPES,
    AnalysisCriteria,
    MachineContext,
    MachineFilters,
    MachineMention,
    ParsedQuery,
    StepOutcome,
    StructuredResponse,
)
from machine_advisor.agent.state import MaintenanceState
from machine_advisor.config import HISTORY_TURNS
from machine_advisor.data.models import Machine
from machine_advisor.data.repository import MachineRepository, machine_summary
from machine_advisor.llm.client import MaintenanceLLM
from machine_advisor.llm.prompts import (
    CLARIFY_AMBIGUOUS,
    CLARIFY_NO_GROUNDING,
    CLARIFY_NO_IDENTIFIER,
    CLARIFY_NOT_FOUND,
    CLARIFY_UNPARSED,
    EXTRACTION_PROMPT,
    GENERATION_APOLOGY,
    NO_MACHINES_MATCHED,
    SYSTEM_PROMPT,
)
from machine_advisor.observability.logging_setup import logger


def _outcome(node: str, status: str, detail: str | None = None) -> List[StepOutcome]:
    return [StepOutcome(node=node, status=status, detail=detail)]


# ------------------------------------------------------------------
# identify_machine
# ------------------------------------------------------------------
def _clarify(question: str, status: str = "ok", detail: str | None = None, **extra: Any) -> Dict[str, Any]:
    return {
        "needs_clarification": True,
        "clarification_question": question,
        "should_continue": False,
        "outcomes": _outcome("identify_machine", status, detail),
        **extra,
    }


def _single_machine(machine: Machine, detail: str) -> Dict[str, Any]:
    return {
        "query_type": "single_machine",
        "machine_id": machine.id,
        "machine_context": MachineContext(
            machine_id=machine.id,
            product_id=machine.product_id,
            name=machine.name,
            type=machine.type,
            status=machine.status,
            location=machine.location,
        ),
        "should_continue": True,
        "outcomes": _outcome("identify_machine", "ok", detail),
    }


def parse_query(user_input: str, llm: MaintenanceLLM) -> ParsedQuery:
    raw = llm.complete(EXTRACTION_PROMPT.format(user_input=user_input))
    try:
        return ParsedQuery.model_validate(decode_json_object(raw))
    except ValidationError as e:
        raise IntentParseError(f"Extraction reply did not match schema: {e}") from e


def resolve_machines(mention: MachineMention, repository: MachineRepository) -> List[Machine]:
    """Product-id fast path, then a fuzzy search over whatever was mentioned."""
    if mention.productId:
        try:
            machine = repository.get_machine(mention.productId)
            if machine:
                return [machine]
        except Exception as e:
            logger.warning(
                "product_id_lookup_failed",
                extra={"event": "product_id_lookup_failed", "product_id": mention.productId, "error": str(e)},
            )
    return repository.search_machines(
        product_id=mention.productId,
        name=mention.name,
        location=mention.location,
        type=normalize_machine_type(mention.type),
    )


def _criteria(parsed: ParsedQuery) -> AnalysisCriteria:
    intent = (parsed.intent or "generic").lower()
    m = parsed.machine
    filters = MachineFilters(
        product_id=m.productId or None,
        name=m.name or None,
        location=m.location or None,
        type=normalize_machine_type(m.type),
    )
    return AnalysisCriteria(
        criteria_type=intent if intent in CRITERIA_TYPES else "generic",
        time_window=parsed.timeWindow or None,
        risk_threshold=(parsed.riskThreshold or "").lower() or None,
        compound_intents=[i.lower() for i in parsed.compoundIntents if isinstance(i, str)],
        machine_filters=None if filters.is_empty() else filters,
    )


def identify_machine(state: MaintenanceState, *, repository: MachineRepository, llm: MaintenanceLLM) -> Dict[str, Any]:
    given = state.get("machine_id")
    if not given:
        return _identify_from_text(state["user_input"], repository, llm)

    # caller already knows the machine
    try:
        machine = repository.get_machine(given)
    except Exception as e:
        logger.warning("machine_id_lookup_failed", extra={"event": "machine_id_lookup_failed", "machine_id": given, "error": str(e)})
        machine = None
    if machine:
        return _single_machine(machine, "machine_id supplied by caller")

    logger.warning("Supplied machine_id not found, parsing query", extra={"event": "machine_id_unknown", "machine_id": given})
    update = _identify_from_text(state["user_input"], repository, llm)
    update.setdefault("machine_id", None)
    return update


def _identify_from_text(user_input: str, repository: MachineRepository, llm: MaintenanceLLM) -> Dict[str, Any]:
    try:
        parsed = parse_query(user_input, llm)
    except IntentParseError as e:
        logger.warning("intent_parse_failed", extra={"event": "intent_parse_failed", "error": str(e)})
        return _clarify(CLARIFY_UNPARSED, "error", str(e), error=str(e))
    except Exception as e:
        logger.error("intent_llm_failed", extra={"event": "intent_llm_failed", "error": str(e)})
        return _clarify(CLARIFY_UNPARSED, "error", str(e), error="Failed to identify machine")

    logger.info("intent_parsed", extra={"event": "intent_parsed", "parsed": parsed.model_dump()})

    if parsed.isMultiMachineQuery:
        criteria = _criteria(parsed)
        return {
            "query_type": "multi_machine",
            "analysis_criteria": criteria,
            "should_continue": True,
            "outcomes": _outcome("identify_machine", "ok", f"multi:{criteria.criteria_type}"),
        }

    mention = parsed.machine
    if not (mention.productId or mention.name or mention.location):
        return _clarify(CLARIFY_NO_IDENTIFIER, detail="no machine identifiers")

    try:
        machines = resolve_machines(mention, repository)
    except Exception as e:
        logger.error("machine_search_failed", extra={"event": "machine_search_failed", "error": str(e)})
        return _clarify(CLARIFY_NOT_FOUND, "error", str(e), error="Failed to search machines")

    if not machines:
        return _clarify(CLARIFY_NOT_FOUND, detail="no match")
    if len(machines) == 1:
        return _single_machine(machines[0], "resolved")
    return _clarify(
        CLARIFY_AMBIGUOUS.format(count=len(machines)),
        detail=f"{len(machines)} candidates",
        candidate_machines=[machine_summary(m) for m in machines],
    )


# ------------------------------------------------------------------
# generate_answer
# ------------------------------------------------------------------
def build_analysis_context(state: MaintenanceState) -> str:
    parts: List[str] = []
    machine_list = state.get("machine_list") or []
    context: Optional[MachineContext] = state.get("machine_context")
    sensor_data = state.get("sensor_data") or []
    prediction = state.get("prediction_data")
    analysis = state.get("analysis")

    if machine_list:
        parts.append("=== MULTI-MACHINE ANALYSIS ===")
        parts.append(f"Found {len(machine_list)} machines in database:")
        for m in machine_list:
            lines = [
                f"\nMachine: {m.product_id} (ID: {m.id})",
                f"- Type: {m.type}",
                f"- Location: {m.location or 'Unknown'}",
                f"- Risk Level: {m.risk_level}",
                f"- Risk Score: {m.risk_score:.2f}",
            ]
            if m.critical_alerts:
                lines.append(f"- Critical Alerts: {', '.join(m.critical_alerts)}")
            parts.append("\n".join(lines))
        parts.append("\n=== END MACHINE DATA ===")
        parts.append("IMPORTANT: Use ONLY the machines listed above. Do NOT create fictional machines.")
    elif context is not None:
        parts.append(f"Machine: {context.product_id}")
        parts.append(f"Type: {context.type}")
        parts.append(f"Status: {context.status}")
        if context.location:
            parts.append(f"Location: {context.location}")
        if not sensor_data:
            parts.append("\nWARNING: No sensor data available for this machine in the database.")
        if prediction is None:
            parts.append("\nWARNING: No prediction data available for this machine in the database.")

    if analysis is not None:
        parts.append(f"Risk Level: {analysis.risk_level}")
        parts.append(f"Risk Score: {analysis.risk_score:.3f}")
        if analysis.alerts:
            parts.append("Alerts:\n" + "\n".join(f"- {a}" for a in analysis.alerts))
        if analysis.anomalies:
            parts.append("Detected Anomalies:\n" + "\n".join(f"- {a}" for a in analysis.anomalies))
        if analysis.recommendations:
            parts.append("Preliminary Recommendations:\n" + "\n".join(f"- {r}" for r in analysis.recommendations))

    if sensor_data:
        latest = sensor_data[-1]
        parts.append(
            "Latest Sensor Readings:\n"
            f"- Air Temp: {latest.air_temp:.1f}K\n"
            f"- Process Temp: {latest.process_temp:.1f}K\n"
            f"- Rotational Speed: {latest.rotational_speed:.0f}RPM\n"
            f"- Torque: {latest.torque:.1f}Nm\n"
            f"- Tool Wear: {latest.tool_wear:.0f}min"
        )

    if prediction is not None:
        confidence = f"{prediction.confidence * 100:.1f}%" if prediction.confidence is not None else "N/A"
        block = (
            "Prediction Data:\n"
            f"- Failure Predicted: {'YES' if prediction.failure_predicted else 'NO'}\n"
            f"- Failure Type: {prediction.failure_type or 'None'}\n"
            f"- Confidence: {confidence}"
        )
        if prediction.predicted_failure_time:
            block += f"\n- Predicted Failure Time: {prediction.predicted_failure_time.isoformat()}"
        parts.append(block)

    return "\n\n".join(parts)


def generate_answer(state: MaintenanceState, *, llm: MaintenanceLLM) -> Dict[str, Any]:
    context = state.get("machine_context")
    machine_list = state.get("machine_list")

    if state.get("query_type") == "multi_machine" and machine_list == []:
        return {
            "response": NO_MACHINES_MATCHED,
            "structured_response": StructuredResponse(summary=NO_MACHINES_MATCHED, overall_risk="LOW"),
            "should_continue": False,
            "outcomes": _outcome("generate_answer", "degraded", "no machines matched"),
        }

    if context is None and not machine_list:
        logger.warning(
            "GenerateAnswer reached without machine context or machine list",
            extra={"event": "answer_without_grounding", "query_type": state.get("query_type")},
        )
        return {
            "needs_clarification": True,
            "clarification_question": CLARIFY_NO_GROUNDING,
            "response": CLARIFY_NO_GROUNDING,
            "should_continue": False,
            "outcomes": _outcome("generate_answer", "error", "no grounding data"),
        }

    user_turn = (
        f"User Query: {state['user_input']}\n\n"
        f"Analysis Context:\n{build_analysis_context(state)}\n\n"
        "Please provide a comprehensive response based on this analysis."
    )
    history = (state.get("conversation_history") or [])[-HISTORY_TURNS:] if HISTORY_TURNS > 0 else []

    try:
        text = llm.chat(SYSTEM_PROMPT, history, user_turn)
    except Exception as e:
        logger.error("generate_answer_failed", extra={"event": "generate_answer_failed", "error": str(e)})
        return {
            "error": "Failed to generate response",
            "response": GENERATION_APOLOGY,
            "structured_response": StructuredResponse(summary=GENERATION_APOLOGY, overall_risk="MODERATE"),
            "should_continue": False,
            "outcomes": _outcome("generate_answer", "error", str(e)),
        }

    analysis = state.get("analysis")
    prediction = state.get("prediction_data")
    try:
        structured = parse_structured_response(
            text,
            analysis,
            context,
            state.get("sensor_data"),
            failure_type=prediction.failure_type if prediction else None,
            confidence=prediction.confidence if prediction else None,
        )
    except (ValueError, TypeError) as e:
        logger.warning("structured_parse_failed", extra={"event": "structured_parse_failed", "error": str(e)})
        structured = StructuredResponse(
            summary=text[:200], overall_risk=analysis.risk_level if analysis else "MODERATE",
        )

    if machine_list:
        structured.overall_risk = highest_risk_level(m.risk_level for m in machine_list)

    return {
        "response": text,
        "structured_response": structured,
        "should_continue": False,
        "outcomes": _outcome("generate_answer", "ok"),
    }
