import copy
from functools import partial
from typing import Dict, List, Optional

from langgraph.graph import END, START, StateGraph

from machine_advisor.agent.errors import WorkflowError
from machine_advisor.agent.nodes import analyze_condition, analyze_machines, fetch_prediction, fetch_sensor
from machine_advisor.agent.nodes_llm import generate_answer, identify_machine
from machine_advisor.agent.state import MaintenanceState
from machine_advisor.config import THRESHOLDS, Thresholds
from machine_advisor.data.repository import MachineRepository
from machine_advisor.llm.client import MaintenanceLLM
from machine_advisor.llm.prompts import CLARIFY_DEFAULT
from machine_advisor.observability.instrumentation import end_run, instrument_node, run_id_var, start_run
from machine_advisor.observability.logging_setup import logger

GRAPH_STRUCTURE = {
    "nodes": [
        "identify_machine",
        "analyze_machines",
        "fetch_sensor",
        "fetch_prediction",
        "analyze_condition",
        "generate_answer",
    ],
    "workflows": {
        "single_machine": [
            "identify_machine",
            "fetch_sensor",
            "fetch_prediction",
            "analyze_condition",
            "generate_answer",
        ],
        "multi_machine": [
            "identify_machine",
            "analyze_machines",
            "generate_answer",
        ],
    },
}


def route_after_identify(state: MaintenanceState) -> str:
    if state.get("needs_clarification"):
        return "clarify"
    if state.get("query_type") == "multi_machine":
        return "multi_machine"
    return "single_machine"


def build_graph(repository: MachineRepository, llm: MaintenanceLLM, thresholds: Thresholds = THRESHOLDS):
    builder = StateGraph(MaintenanceState)

    def node(name, fn, **deps):
        builder.add_node(name, instrument_node(name)(partial(fn, **deps)))

    node("identify_machine", identify_machine, repository=repository, llm=llm)
    node("analyze_machines", analyze_machines, repository=repository)
    node("fetch_sensor", fetch_sensor, repository=repository)
    node("fetch_prediction", fetch_prediction, repository=repository)
    node("analyze_condition", analyze_condition, thresholds=thresholds)
    node("generate_answer", generate_answer, llm=llm)

    builder.add_edge(START, "identify_machine")
    builder.add_conditional_edges(
        "identify_machine",
        route_after_identify,
        {"clarify": END, "multi_machine": "analyze_machines", "single_machine": "fetch_sensor"},
    )
    builder.add_edge("analyze_machines", "generate_answer")
    builder.add_edge("fetch_sensor", "fetch_prediction")
    builder.add_edge("fetch_prediction", "analyze_condition")
    builder.add_edge("analyze_condition", "generate_answer")
    builder.add_edge("generate_answer", END)
    return builder.compile()


class MaintenanceGraph:
    """Entry point used by callers: one ``execute`` per chat message."""

    def __init__(self, repository: MachineRepository, llm: Optional[MaintenanceLLM] = None,
                 thresholds: Thresholds = THRESHOLDS):
        self.repository = repository
        self.llm = llm or MaintenanceLLM()
        self.graph = build_graph(repository, self.llm, thresholds)

    def execute(
        self,
        user_input: str,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        machine_id: Optional[str] = None,
    ) -> MaintenanceState:
        state_in: MaintenanceState = {
            "user_input": user_input,
            "conversation_history": list(conversation_history or []),
            "should_continue": True,
            "outcomes": [],
        }
        if machine_id:
            state_in["machine_id"] = machine_id

        # the API middleware may already own the run context
        owns_run = not run_id_var.get()
        if owns_run:
            start_run(user_input, machine_id)
        try:
            out: MaintenanceState = self.graph.invoke(state_in)
        except Exception as e:
            logger.error("graph_failed", extra={"event": "graph_failed", "error": str(e)}, exc_info=True)
            if owns_run:
                end_run(status="error", error=str(e))
            raise WorkflowError(f"Graph execution failed: {e}") from e

        if out.get("needs_clarification"):
            out["response"] = out.get("response") or out.get("clarification_question") or CLARIFY_DEFAULT
            out["should_continue"] = False
        if owns_run:
            end_run(
                status="ok",
                query_type=out.get("query_type"),
                clarification=bool(out.get("needs_clarification")),
                error=out.get("error"),
            )
        return out

    def get_graph_structure(self) -> Dict:
        return copy.deepcopy(GRAPH_STRUCTURE)
