# instrumentation.py
import functools
import time
import traceback
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict

from machine_advisor.observability.logging_setup import logger

run_id_var: ContextVar[str] = ContextVar("run_id", default="")
machine_var: ContextVar[str] = ContextVar("machine_id", default="")


def start_run(user_input: str, machine_id: str | None = None) -> str:
    rid = uuid.uuid4().hex[:12]
    run_id_var.set(rid)
    machine_var.set(machine_id or "")
    logger.info(
        "run_start",
        extra={"event": "run_start", "run_id": rid, "machine_id": machine_id or "-", "input": user_input[:80]},
    )
    return rid


def end_run(status: str = "ok", **kw):
    logger.info("run_end", extra={"event": "run_end", "run_id": run_id_var.get(), "status": status, **kw})
    run_id_var.set("")
    machine_var.set("")


def instrument_node(node_name: str) -> Callable:
    def deco(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(state: Dict[str, Any]) -> Dict[str, Any]:
            t0 = time.perf_counter()
            rid = run_id_var.get() or "-"
            machine_id = state.get("machine_id") or machine_var.get() or "-"

            logger.info(
                "node_start",
                extra={"event": "node_start", "run_id": rid, "node": node_name, "machine_id": machine_id},
            )
            try:
                out = fn(state)
                dt = (time.perf_counter() - t0) * 1000
                extras = {"event": "node_end", "run_id": rid, "node": node_name, "ms": round(dt, 2)}
                if out.get("machine_id"):
                    machine_var.set(out["machine_id"])
                    extras["machine_id"] = out["machine_id"]
                if "query_type" in out:
                    extras["query_type"] = out["query_type"]
                for outcome in out.get("outcomes", []):
                    extras["outcome"] = outcome.status
                if out.get("error"):
                    extras["error"] = out["error"]
                logger.info("node_end", extra=extras)
                return out
            except Exception as e:
                dt = (time.perf_counter() - t0) * 1000
                logger.error(
                    "node_error",
                    extra={
                        "event": "node_error", "run_id": rid, "node": node_name, "ms": round(dt, 2),
                        "machine_id": machine_id, "error": str(e),
                        "trace": traceback.format_exc(limit=3),
                    },
                )
                raise
        return wrapper
    return deco
