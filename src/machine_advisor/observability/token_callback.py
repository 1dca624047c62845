# observability/token_callback.py
from __future__ import annotations
from typing import Any, Optional
from uuid import UUID

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.outputs import LLMResult

from machine_advisor.observability.usage import add_usage


def _usage_from_generations(response: LLMResult) -> dict:
    # newer chat models report usage on the message itself
    for gens in response.generations or []:
        for gen in gens:
            meta = getattr(getattr(gen, "message", None), "usage_metadata", None)
            if meta:
                return {
                    "prompt_tokens": meta.get("input_tokens", 0),
                    "completion_tokens": meta.get("output_tokens", 0),
                    "total_tokens": meta.get("total_tokens", 0),
                }
    return {}


class TokenUsageHandler(BaseCallbackHandler):
    """Aggregates token usage from LLM responses into the per-run usage context."""

    def on_llm_end(self, response: LLMResult, *, run_id: UUID, parent_run_id: Optional[UUID] = None, **kwargs: Any) -> None:
        llm_output = response.llm_output or {}
        tu = llm_output.get("token_usage") or llm_output.get("usage") or _usage_from_generations(response)
        prompt = int(tu.get("prompt_tokens", 0) or 0)
        completion = int(tu.get("completion_tokens", 0) or 0)
        total = int(tu.get("total_tokens", 0) or (prompt + completion))
        model = llm_output.get("model_name") or llm_output.get("model")
        add_usage(prompt=prompt, completion=completion, total=total, model=model)
