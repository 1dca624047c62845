# observability/usage.py
from __future__ import annotations
from typing import Dict, Any
from contextvars import ContextVar
import os

# Per-run usage bucket; one per request context
_usage_ctx: ContextVar[Dict[str, Any] | None] = ContextVar("_usage_ctx", default=None)


def _empty() -> Dict[str, Any]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0, "calls": 0, "model": None}


def start_usage():
    _usage_ctx.set(_empty())


def add_usage(prompt: int = 0, completion: int = 0, total: int = 0, model: str | None = None):
    # updated in place; graph nodes run in a copied context
    u = _usage_ctx.get()
    if u is None:
        u = _empty()
        _usage_ctx.set(u)
    u["prompt_tokens"] += prompt or 0
    u["completion_tokens"] += completion or 0
    u["total_tokens"] += total or 0
    u["calls"] += 1
    if model:
        u["model"] = model


def get_usage() -> Dict[str, Any]:
    return _usage_ctx.get() or _empty()


def clear_usage():
    _usage_ctx.set(None)


# --- Pricing (configurable via env; defaults to 0 for safety) ---
# USD per 1K tokens
INPUT_PRICE_PER_1K = float(os.getenv("LLM_INPUT_PRICE_PER_1K", "0"))
OUTPUT_PRICE_PER_1K = float(os.getenv("LLM_OUTPUT_PRICE_PER_1K", "0"))


def estimate_cost(usage: Dict[str, Any]) -> float:
    return (usage.get("prompt_tokens", 0) / 1000.0) * INPUT_PRICE_PER_1K + \
           (usage.get("completion_tokens", 0) / 1000.0) * OUTPUT_PRICE_PER_1K
