"""Chat model and agent graph construction for Azure OpenAI."""

from __future__ import annotations

from typing import Any, Sequence

from langchain_core.tools import BaseTool
from langchain_openai import AzureChatOpenAI
from langgraph.prebuilt import create_react_agent

from app.core.config import AzureOpenAISettings, get_settings, require
from app.core.logging import get_logger

logger = get_logger(__name__)


class AgentError(RuntimeError):
    """Raised when the language model interaction fails."""


def build_chat_model(settings: AzureOpenAISettings | None = None) -> AzureChatOpenAI:
    """Create the Azure chat model; raises when Azure is not configured."""
    azure = settings or get_settings().azure_openai
    logger.info("Using Azure OpenAI deployment '%s'", azure.deployment_name)
    return AzureChatOpenAI(
        azure_endpoint=require(azure.endpoint, "AZURE_OPENAI_ENDPOINT"),
        api_key=require(azure.api_key, "AZURE_OPENAI_API_KEY"),
        azure_deployment=require(azure.deployment_name, "AZURE_OPENAI_DEPLOYMENT_NAME"),
        api_version=azure.api_version,
        temperature=azure.temperature,
    )


def build_agent(tools: Sequence[BaseTool], model: Any | None = None) -> Any:
    """Return a compiled ReAct agent graph over ``tools``."""
    return create_react_agent(model or build_chat_model(), tools=list(tools))
