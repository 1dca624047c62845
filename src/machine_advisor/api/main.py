# api/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from machine_advisor.agent.errors import WorkflowError
from machine_advisor.agent.graph import MaintenanceGraph
from machine_advisor.agent.schemas import ChatRequest, ChatResponse, StructuredResponse
from machine_advisor.data.database import build_engine, init_db
from machine_advisor.data.repository import MachineRepository
from machine_advisor.llm.prompts import WORKFLOW_APOLOGY
from machine_advisor.observability.logging_setup import logger
from machine_advisor.observability.usage import clear_usage, estimate_cost, get_usage, start_usage


def default_agent() -> MaintenanceGraph:
    engine = build_engine()
    init_db(engine)
    return MaintenanceGraph(MachineRepository(engine))


def _usage_report() -> dict:
    usage = get_usage()
    return {
        "model": usage.get("model"),
        "calls": usage.get("calls", 0),
        "prompt_tokens": usage.get("prompt_tokens", 0),
        "completion_tokens": usage.get("completion_tokens", 0),
        "total_tokens": usage.get("total_tokens", 0),
        "estimated_cost_usd": round(estimate_cost(usage), 6),
    }


def create_app(agent: Optional[MaintenanceGraph] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "agent", None) is None:
            app.state.agent = default_agent()
        yield

    app = FastAPI(title="Machine Advisor (LangGraph)", lifespan=lifespan)
    app.state.agent = agent

    # --------- bind per-request usage bucket ----------
    # the run itself (run_start/run_end with the user input) is owned by agent.execute
    @app.middleware("http")
    async def bind_context(request: Request, call_next):
        start_usage()
        status = "error"
        try:
            response = await call_next(request)
            status = "ok" if response.status_code < 500 else "error"
            return response
        except Exception as e:
            logger.error("request_error", extra={"event": "request_error", "path": request.url.path, "error": str(e)})
            raise
        finally:
            logger.info(
                "request_end",
                extra={"event": "request_end", "method": request.method, "path": request.url.path, "status": status},
            )
            clear_usage()

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest, request: Request):
        agent: MaintenanceGraph = request.app.state.agent
        history = [t.model_dump() for t in req.conversation_history]
        try:
            out = agent.execute(req.message, history, req.machine_id)
        except WorkflowError as e:
            logger.error("chat_failed", extra={"event": "chat_failed", "error": str(e)})
            return ChatResponse(
                text=WORKFLOW_APOLOGY,
                structured=StructuredResponse(summary="Error occurred", overall_risk="MODERATE"),
                usage=_usage_report(),
            )

        text = out.get("response") or "No response generated"
        structured = out.get("structured_response") or StructuredResponse(summary=text[:200])
        return ChatResponse(
            text=text,
            structured=structured,
            needs_clarification=bool(out.get("needs_clarification")),
            candidate_machines=out.get("candidate_machines") or [],
            usage=_usage_report(),
        )

    @app.get("/graph")
    def graph_structure(request: Request):
        return request.app.state.agent.get_graph_structure()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
