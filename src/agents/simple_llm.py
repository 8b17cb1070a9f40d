"""Simple LLM call service for persona turns"""

import logging
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, trim_messages
from langchain_openai import ChatOpenAI

from src.api.config import settings
from src.utils.llm_logger import get_llm_logger

logger = logging.getLogger(__name__)

# Approximate token budget kept for conversation history
DEFAULT_MAX_INPUT_TOKENS = 12000


def build_chat_model(
    model_id: Optional[str] = None,
    temperature: Optional[float] = None,
) -> ChatOpenAI:
    """Create the chat model for one call from application settings."""
    build_kwargs: Dict[str, Any] = {
        "model": model_id or settings.default_model_id,
        "temperature": settings.default_temperature if temperature is None else temperature,
    }
    if settings.llm_api_key:
        build_kwargs["api_key"] = settings.llm_api_key
    if settings.llm_base_url:
        build_kwargs["base_url"] = settings.llm_base_url
    return ChatOpenAI(**build_kwargs)


def to_langchain_messages(
    messages: List[Dict[str, str]],
    system_prompt: Optional[str] = None,
) -> List[BaseMessage]:
    """Convert role/content dicts into LangChain messages."""
    langchain_messages: List[BaseMessage] = []
    if system_prompt:
        langchain_messages.append(SystemMessage(content=system_prompt))
    for msg in messages:
        if msg.get("role") == "user":
            langchain_messages.append(HumanMessage(content=msg["content"]))
        elif msg.get("role") == "assistant":
            langchain_messages.append(AIMessage(content=msg["content"]))
    return langchain_messages


def _trim_to_context_limit(
    messages: List[BaseMessage], max_input_tokens: int
) -> List[BaseMessage]:
    """Trim messages to the token budget; the system message is always kept."""
    trimmed = trim_messages(
        messages,
        max_tokens=max_input_tokens,
        strategy="last",
        token_counter="approximate",
        include_system=True,
    )
    if len(trimmed) < len(messages):
        logger.info(
            f"[TRIM] Messages trimmed: {len(messages)} -> {len(trimmed)} "
            f"(budget: {max_input_tokens} tokens)"
        )
    return trimmed


def call_llm(
    messages: List[Dict[str, str]],
    persona_id: str = "unknown",
    model_id: Optional[str] = None,
    system_prompt: Optional[str] = None,
    temperature: Optional[float] = None,
    max_input_tokens: int = DEFAULT_MAX_INPUT_TOKENS,
    llm: Optional[Any] = None,
) -> str:
    """
    Blocking LLM call for one persona turn.

    Args:
        messages: Message list [{"role": "user/assistant", "content": "..."}]
        persona_id: Persona the reply is generated for (for logging)
        model_id: Model ID, if None uses the configured default model
        system_prompt: Persona and phase instructions
        temperature: Sampling temperature, if None uses the configured default
        llm: Pre-built chat model, mainly for tests

    Returns:
        AI response content
    """
    llm_logger = get_llm_logger()
    llm = llm or build_chat_model(model_id, temperature)
    actual_model_id = model_id or settings.default_model_id

    langchain_messages = to_langchain_messages(messages, system_prompt)
    langchain_messages = _trim_to_context_limit(langchain_messages, max_input_tokens)

    logger.info(
        f"Calling LLM for {persona_id} (model: {actual_model_id}), messages: {len(langchain_messages)}"
    )
    try:
        response = llm.invoke(langchain_messages)
    except Exception as e:
        llm_logger.log_error(persona_id, e, context=f"model={actual_model_id}")
        logger.error(f"LLM call failed for {persona_id}: {e}", exc_info=True)
        raise

    content = response.content if isinstance(response.content, str) else str(response.content or "")
    llm_logger.log_interaction(
        persona_id=persona_id,
        messages_sent=langchain_messages,
        response_text=content,
        model=actual_model_id,
        extra_params={"temperature": temperature} if temperature is not None else None,
    )
    return content
