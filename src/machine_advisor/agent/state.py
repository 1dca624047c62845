import operator
from typing import Annotated, Dict, List, Literal, Optional, TypedDict

from machine_advisor.agent.schemas import (
    AnalysisCriteria,
    AnalysisResult,
    MachineContext,
    MachineRankEntry,
    PredictionSnapshot,
    SensorDataPoint,
    StepOutcome,
    StructuredResponse,
)


class MaintenanceState(TypedDict, total=False):
    # input
    user_input: str
    conversation_history: List[Dict[str, str]]

    # routing
    query_type: Optional[Literal["single_machine", "multi_machine"]]

    # single machine
    machine_id: Optional[str]
    machine_context: Optional[MachineContext]
    sensor_data: Optional[List[SensorDataPoint]]
    prediction_data: Optional[PredictionSnapshot]
    analysis: Optional[AnalysisResult]

    # multi machine
    analysis_criteria: Optional[AnalysisCriteria]
    machine_list: Optional[List[MachineRankEntry]]

    # output
    response: Optional[str]
    structured_response: Optional[StructuredResponse]

    # clarification
    needs_clarification: bool
    clarification_question: Optional[str]
    candidate_machines: List[Dict[str, Optional[str]]]

    # metadata
    error: Optional[str]
    should_continue: bool
    outcomes: Annotated[List[StepOutcome], operator.add]  # one entry per executed step
