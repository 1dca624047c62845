"""
llm/client.py
Chat-model wrapper shared by the workflow nodes:
- configurable model/provider via ENV (OpenAI or Ollama), or an injected model
- `complete` for single-prompt extraction, `chat` for history-aware generation
- bounded retries with backoff; the last error is re-raised to the caller
- token usage collected through the usage callback
"""

from __future__ import annotations

import time
from typing import Dict, List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from machine_advisor import config
from machine_advisor.observability.logging_setup import logger
from machine_advisor.observability.token_callback import TokenUsageHandler


# ------------------------------------------------------------------
# LLM factory (OpenAI or Ollama)
# ------------------------------------------------------------------
def build_chat_model(
    provider: str = config.LLM_PROVIDER,
    model: str = config.LLM_MODEL,
    temperature: float = config.LLM_TEMP,
    timeout: float = config.LLM_TIMEOUT,
) -> BaseChatModel:
    if provider == "ollama":
        from langchain_ollama import ChatOllama

        return ChatOllama(model=model, temperature=temperature, client_kwargs={"timeout": timeout})
    # default: openai; api key read from OPENAI_API_KEY
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=model, temperature=temperature, timeout=timeout, max_retries=0)


def _content_text(msg: BaseMessage) -> str:
    content = msg.content
    if isinstance(content, str):
        return content
    # content blocks (list of str / {"type": "text", "text": ...})
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class MaintenanceLLM:
    def __init__(
        self,
        model: Optional[BaseChatModel] = None,
        max_retries: int = config.MAX_RETRIES,
        backoff: float = 0.4,
    ):
        self._model = model
        self.max_retries = max_retries
        self.backoff = backoff

    @property
    def model(self) -> BaseChatModel:
        # built lazily so a missing API key only fails the first real call
        if self._model is None:
            self._model = build_chat_model()
        return self._model

    def complete(self, prompt: str) -> str:
        return self._invoke([HumanMessage(content=prompt)])

    def chat(self, system_prompt: str, history: Sequence[Dict[str, str]], user_turn: str) -> str:
        return self._invoke(self.build_messages(system_prompt, history, user_turn))

    @staticmethod
    def build_messages(system_prompt: str, history: Sequence[Dict[str, str]], user_turn: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        for turn in history:
            role, content = turn.get("role"), turn.get("content", "")
            if role == "user":
                messages.append(HumanMessage(content=content))
            elif role == "assistant":
                messages.append(AIMessage(content=content))
        messages.append(HumanMessage(content=user_turn))
        return messages

    def _invoke(self, messages: List[BaseMessage]) -> str:
        last_err: Optional[Exception] = None
        cb = TokenUsageHandler()
        for i in range(self.max_retries + 1):
            try:
                reply = self.model.invoke(messages, config={"callbacks": [cb]})
                return _content_text(reply)
            except Exception as e:
                last_err = e
                logger.warning(
                    "llm_retry",
                    extra={"event": "llm_retry", "attempt": i + 1, "error": str(e)},
                )
            if i < self.max_retries and self.backoff:
                time.sleep(min(self.backoff * (2 ** i), 2.0))
        raise last_err
