"""Step-level tests: each node is called directly with a hand-built state."""

from unittest.mock import MagicMock

import pytest

from machine_advisor.agent.nodes import analyze_condition, analyze_machines, fetch_prediction, fetch_sensor
from machine_advisor.agent.nodes_llm import build_analysis_context, generate_answer, identify_machine
from machine_advisor.agent.schemas import AnalysisCriteria, MachineContext
from machine_advisor.data.repository import MachineRepository
from machine_advisor.llm.prompts import (
    CLARIFY_AMBIGUOUS,
    CLARIFY_NO_GROUNDING,
    CLARIFY_NO_IDENTIFIER,
    CLARIFY_NOT_FOUND,
    CLARIFY_UNPARSED,
    GENERATION_APOLOGY,
    NO_MACHINES_MATCHED,
)
from tests.fixtures.fleet import add_machine, entry
from tests.mocks.mock_llm import ScriptedLLM, extraction


@pytest.fixture
def broken_repository():
    repo = MagicMock(spec=MachineRepository)
    for name in ("get_sensor_data", "get_latest_prediction", "get_machines_by_risk", "search_machines", "get_machine"):
        getattr(repo, name).side_effect = RuntimeError("database is locked")
    return repo


def _statuses(update):
    return [(o.node, o.status) for o in update["outcomes"]]


# ------------------------------------------------------------------
# fetch steps
# ------------------------------------------------------------------
def test_fetch_sensor_without_machine_is_degraded(repository):
    update = fetch_sensor({"user_input": "x"}, repository=repository)

    assert update["sensor_data"] is None
    assert _statuses(update) == [("fetch_sensor", "degraded")]


def test_fetch_sensor_failure_is_recorded(broken_repository):
    update = fetch_sensor({"machine_id": "m-1"}, repository=broken_repository)

    assert update["sensor_data"] == []
    assert update["error"] == "Failed to fetch sensor data"
    assert update["should_continue"] is True
    assert _statuses(update) == [("fetch_sensor", "error")]


def test_fetch_sensor_returns_window(repository, fleet):
    update = fetch_sensor({"machine_id": fleet["L47181"]}, repository=repository)

    assert len(update["sensor_data"]) == 10
    assert _statuses(update) == [("fetch_sensor", "ok")]


def test_fetch_sensor_empty(engine):
    machine_id = add_machine(engine, "E1", risk=0.3)

    update = fetch_sensor({"machine_id": machine_id}, repository=MachineRepository(engine))

    assert update["sensor_data"] == []
    assert _statuses(update) == [("fetch_sensor", "degraded")]


def test_fetch_prediction_failure_is_recorded(broken_repository):
    update = fetch_prediction({"machine_id": "m-1"}, repository=broken_repository)

    assert update["prediction_data"] is None
    assert update["error"] == "Failed to fetch prediction data"


def test_fetch_prediction_missing(engine):
    machine_id = add_machine(engine, "E2")

    update = fetch_prediction({"machine_id": machine_id}, repository=MachineRepository(engine))

    assert update["prediction_data"] is None
    assert _statuses(update) == [("fetch_prediction", "degraded")]


def test_analyze_condition_skips_without_machine():
    update = analyze_condition({})

    assert "analysis" not in update
    assert _statuses(update) == [("analyze_condition", "degraded")]


def test_analyze_condition_runs_rules(repository, fleet):
    state = {"machine_id": fleet["L47181"]}
    state.update(fetch_sensor(state, repository=repository))
    state.update(fetch_prediction(state, repository=repository))

    update = analyze_condition(state)

    assert update["analysis"].risk_level == "HIGH"
    assert update["analysis"].alerts[0] == "FAILURE PREDICTED: Heat Dissipation Failure"


# ------------------------------------------------------------------
# analyze_machines
# ------------------------------------------------------------------
def test_analyze_machines_requires_criteria(repository):
    update = analyze_machines({}, repository=repository)

    assert update["error"] == "No analysis criteria provided"
    assert update["should_continue"] is False


def test_analyze_machines_failure_yields_empty_list(broken_repository):
    state = {"analysis_criteria": AnalysisCriteria(criteria_type="risk")}

    update = analyze_machines(state, repository=broken_repository)

    assert update["machine_list"] == []
    assert update["response"] == NO_MACHINES_MATCHED
    assert update["error"] == "Failed to fetch machines by risk"


def test_analyze_machines_sorts_descending_and_keeps_ties_in_order():
    repo = MagicMock(spec=MachineRepository)
    repo.get_all_machines_status.return_value = [
        entry("A", 0.5, "MODERATE"), entry("B", 0.9, "HIGH"), entry("C", 0.5, "MODERATE"), entry("D", 0.1),
    ]

    update = analyze_machines({"analysis_criteria": AnalysisCriteria()}, repository=repo)

    assert [m.product_id for m in update["machine_list"]] == ["B", "A", "C", "D"]
    repo.get_all_machines_status.assert_called_once_with(None)


@pytest.mark.parametrize(
    "criteria,method",
    [
        (AnalysisCriteria(criteria_type="risk", risk_threshold="high"), "get_machines_by_risk"),
        (AnalysisCriteria(criteria_type="prediction", time_window="1_day"), "get_machines_by_prediction"),
        (AnalysisCriteria(criteria_type="anomaly"), "get_machines_by_anomaly"),
        (AnalysisCriteria(criteria_type="overheating"), "get_machines_by_overheating"),
        (AnalysisCriteria(criteria_type="generic"), "get_all_machines_status"),
    ],
)
def test_analyze_machines_dispatch(criteria, method):
    repo = MagicMock(spec=MachineRepository)
    getattr(repo, method).return_value = [entry("A", 0.5, "MODERATE")]

    update = analyze_machines({"analysis_criteria": criteria}, repository=repo)

    assert getattr(repo, method).call_count == 1
    assert [m.product_id for m in update["machine_list"]] == ["A"]


def test_analyze_machines_is_idempotent(repository):
    state = {"analysis_criteria": AnalysisCriteria(criteria_type="risk", risk_threshold="moderate")}

    first = analyze_machines(state, repository=repository)["machine_list"]
    second = analyze_machines(state, repository=repository)["machine_list"]

    assert [m.model_dump() for m in first] == [m.model_dump() for m in second]
    assert [m.product_id for m in first] == ["L47181", "M14860"]


# ------------------------------------------------------------------
# identify_machine
# ------------------------------------------------------------------
def test_identify_without_identifiers_never_touches_repository():
    repo = MagicMock(spec=MachineRepository)
    llm = ScriptedLLM(extraction=[extraction()])

    update = identify_machine({"user_input": "halo"}, repository=repo, llm=llm)

    assert update["needs_clarification"] is True
    assert update["clarification_question"] == CLARIFY_NO_IDENTIFIER
    assert repo.mock_calls == []


def test_identify_resolves_product_id(repository, fleet):
    llm = ScriptedLLM(extraction=[extraction(product_id="L47181")])

    update = identify_machine({"user_input": "How is L47181?"}, repository=repository, llm=llm)

    assert update["query_type"] == "single_machine"
    assert update["machine_id"] == fleet["L47181"]
    assert update["machine_context"].location == "Line A"
    assert "How is L47181?" in llm.complete_calls[0]


def test_identify_multi_machine_criteria(repository):
    reply = extraction(multi=True, intent="Risk", risk_threshold="HIGH", location="Line A", type="medium")
    llm = ScriptedLLM(extraction=[reply])

    update = identify_machine({"user_input": "risky machines on line A?"}, repository=repository, llm=llm)

    criteria = update["analysis_criteria"]
    assert update["query_type"] == "multi_machine"
    assert criteria.criteria_type == "risk"
    assert criteria.risk_threshold == "high"
    assert criteria.machine_filters.location == "Line A"
    assert criteria.machine_filters.type == "M"


def test_identify_multi_machine_unknown_intent_is_generic(repository):
    llm = ScriptedLLM(extraction=[extraction(multi=True, intent="vibes")])

    update = identify_machine({"user_input": "how is everything?"}, repository=repository, llm=llm)

    assert update["analysis_criteria"].criteria_type == "generic"
    assert update["analysis_criteria"].machine_filters is None


def test_identify_not_found(repository):
    llm = ScriptedLLM(extraction=[extraction(product_id="Z99999")])

    update = identify_machine({"user_input": "Z99999?"}, repository=repository, llm=llm)

    assert update["clarification_question"] == CLARIFY_NOT_FOUND
    assert "error" not in update


def test_identify_ambiguous_lists_candidates(engine, repository):
    add_machine(engine, "P1001", name="Press 1")
    add_machine(engine, "P1002", name="Press 2")
    llm = ScriptedLLM(extraction=[extraction(name="Press")])

    update = identify_machine({"user_input": "how is the press?"}, repository=repository, llm=llm)

    assert update["clarification_question"] == CLARIFY_AMBIGUOUS.format(count=2)
    assert [c["product_id"] for c in update["candidate_machines"]] == ["P1001", "P1002"]


def test_identify_unparseable_reply_asks_for_clarification(repository):
    llm = ScriptedLLM(extraction=["I am not sure what you mean."])

    update = identify_machine({"user_input": "??"}, repository=repository, llm=llm)

    assert update["needs_clarification"] is True
    assert update["clarification_question"] == CLARIFY_UNPARSED
    assert "Failed to parse" in update["error"]
    assert _statuses(update) == [("identify_machine", "error")]


def test_identify_llm_failure_asks_for_clarification(repository):
    llm = ScriptedLLM(extraction=[TimeoutError("upstream timeout")])

    update = identify_machine({"user_input": "L47181"}, repository=repository, llm=llm)

    assert update["clarification_question"] == CLARIFY_UNPARSED
    assert update["error"] == "Failed to identify machine"


def test_identify_search_failure_asks_for_clarification(broken_repository):
    llm = ScriptedLLM(extraction=[extraction(location="Line A")])

    update = identify_machine({"user_input": "line A machine"}, repository=broken_repository, llm=llm)

    assert update["clarification_question"] == CLARIFY_NOT_FOUND
    assert update["error"] == "Failed to search machines"


def test_identify_uses_supplied_machine_id_without_llm(repository, fleet):
    llm = ScriptedLLM()

    update = identify_machine(
        {"user_input": "status?", "machine_id": fleet["M14860"]}, repository=repository, llm=llm,
    )

    assert update["machine_context"].product_id == "M14860"
    assert llm.complete_calls == []


def test_identify_unknown_supplied_machine_id_falls_back_to_text(repository):
    llm = ScriptedLLM(extraction=[extraction()])

    update = identify_machine({"user_input": "status?", "machine_id": "nope"}, repository=repository, llm=llm)

    assert update["machine_id"] is None
    assert update["needs_clarification"] is True
    assert len(llm.complete_calls) == 1


# ------------------------------------------------------------------
# generate_answer
# ------------------------------------------------------------------
def _single_state(repository, fleet, product_id="L47181"):
    llm = ScriptedLLM(extraction=[extraction(product_id=product_id)])
    state = {"user_input": f"How is {product_id}?", "conversation_history": []}
    state.update(identify_machine(state, repository=repository, llm=llm))
    state.update(fetch_sensor(state, repository=repository))
    state.update(fetch_prediction(state, repository=repository))
    state.update(analyze_condition(state))
    return state


def test_generate_answer_single_machine(repository, fleet):
    state = _single_state(repository, fleet)
    llm = ScriptedLLM(answers=["L47181 needs attention.\nCRITICAL: Heat Dissipation Failure expected"])

    update = generate_answer(state, llm=llm)

    assert update["response"].startswith("L47181 needs attention.")
    assert update["structured_response"].overall_risk == "HIGH"
    assert update["structured_response"].machine_analysis[0].failure_type == "Heat Dissipation Failure"
    user_turn = llm.chat_calls[0]["user_turn"]
    assert user_turn.startswith("User Query: How is L47181?")
    assert "FAILURE PREDICTED: Heat Dissipation Failure" in user_turn


def test_generate_answer_trims_history(repository, fleet):
    state = _single_state(repository, fleet)
    state["conversation_history"] = [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"} for i in range(7)
    ]
    llm = ScriptedLLM(answers=["ok"])

    generate_answer(state, llm=llm)

    assert [t["content"] for t in llm.chat_calls[0]["history"]] == [f"turn {i}" for i in range(2, 7)]


def test_generate_answer_multi_uses_highest_level():
    state = {
        "user_input": "which machines?",
        "query_type": "multi_machine",
        "machine_list": [entry("B", 0.9, "HIGH"), entry("A", 0.1, "LOW")],
    }
    llm = ScriptedLLM(answers=["B is at risk."])

    update = generate_answer(state, llm=llm)

    assert update["structured_response"].overall_risk == "HIGH"
    assert "Machine: B (ID: id-B)" in llm.chat_calls[0]["user_turn"]


def test_generate_answer_empty_multi_list_skips_llm():
    llm = ScriptedLLM()

    update = generate_answer({"user_input": "x", "query_type": "multi_machine", "machine_list": []}, llm=llm)

    assert update["response"] == NO_MACHINES_MATCHED
    assert update["structured_response"].overall_risk == "LOW"
    assert llm.chat_calls == []


def test_generate_answer_without_grounding_asks_for_clarification():
    update = generate_answer({"user_input": "x", "query_type": "single_machine"}, llm=ScriptedLLM())

    assert update["needs_clarification"] is True
    assert update["response"] == CLARIFY_NO_GROUNDING


def test_generate_answer_llm_failure_returns_apology(repository, fleet):
    state = _single_state(repository, fleet)

    update = generate_answer(state, llm=ScriptedLLM(answers=[RuntimeError("rate limited")]))

    assert update["response"] == GENERATION_APOLOGY
    assert update["error"] == "Failed to generate response"
    assert update["structured_response"].overall_risk == "MODERATE"
    assert update["structured_response"].machine_analysis == []


def test_analysis_context_warns_about_missing_data():
    state = {
        "machine_context": MachineContext(machine_id="m", product_id="E1", type="M", status="OPERATIONAL"),
        "sensor_data": [],
        "prediction_data": None,
    }

    text = build_analysis_context(state)

    assert "Machine: E1" in text
    assert "No sensor data available" in text
    assert "No prediction data available" in text
