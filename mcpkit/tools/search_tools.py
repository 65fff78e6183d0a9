from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field

from mcpkit.core.citations import apply_citations
from mcpkit.core.config import GeminiSettings, OpenAISettings
from mcpkit.core.llm_provider import GeminiSearchProvider, LLMProviderError, OpenAISearchProvider
from mcpkit.core.models import ResourceDocument, TimeoutPolicy, ToolDefinition
from mcpkit.framework.tool_runtime import InvocationContext, ToolHandler, ToolRuntime

from .cli_tools import GEMINI_CLI_DEFINITION, GEMINI_CLI_TOOL, build_gemini_cli_handlers

OPENAI_SEARCH_TOOL = "openai-search"
GOOGLE_SEARCH_TOOL = "google-search"

NO_GEMINI_RESPONSE = "No response from Gemini model"

OPENAI_SEARCH_DEFINITION = ToolDefinition(
    name=OPENAI_SEARCH_TOOL,
    description=(
        "An AI agent with advanced web search capabilities using OpenAI models. Useful for "
        "finding latest information and troubleshooting errors. Supports natural language queries."
    ),
    input_schema={
        "query": Annotated[
            str,
            Field(
                description=(
                    "Ask questions, search for information, or consult about complex problems "
                    "in English."
                )
            ),
        ],
    },
    output_schema=Annotated[str, Field(description="The search result")],
)

GOOGLE_SEARCH_DEFINITION = ToolDefinition(
    name=GOOGLE_SEARCH_TOOL,
    description=(
        "Performs a web search using Google Search (via the Gemini API) and returns the results. "
        "This tool is useful for finding information on the internet based on a query."
    ),
    input_schema={
        "query": Annotated[
            str, Field(description="The search query to find information on the web.")
        ],
    },
    output_schema=Annotated[
        str, Field(description="The search results with citations and sources")
    ],
)


def build_openai_search_handlers(provider: OpenAISearchProvider) -> Dict[str, ToolHandler]:
    def openai_search(params: Any, context: InvocationContext) -> str:
        return provider.search(params.query, cancel_wait=context.wait)

    return {OPENAI_SEARCH_TOOL: openai_search}


def build_google_search_handlers(provider: GeminiSearchProvider) -> Dict[str, ToolHandler]:
    def google_search(params: Any, context: InvocationContext) -> str:
        if not params.query.strip():
            raise ValueError("Search query cannot be empty")
        try:
            answer = provider.search(params.query, cancel_wait=context.wait)
        except (LLMProviderError, ValueError) as exc:
            raise LLMProviderError(f"Google search failed: {exc}") from exc
        processed = apply_citations(answer.text, answer.sources, answer.metadata)
        return processed or NO_GEMINI_RESPONSE

    return {GOOGLE_SEARCH_TOOL: google_search}


def register_openai_tools(
    runtime: ToolRuntime,
    provider: OpenAISearchProvider,
    timeout_policy: Optional[TimeoutPolicy] = None,
) -> None:
    runtime.register(
        [OPENAI_SEARCH_DEFINITION], build_openai_search_handlers(provider), timeout_policy
    )


def openai_resources(settings: OpenAISettings) -> List[ResourceDocument]:
    text = f"""OpenAI Search MCP Server
========================

Tools:
1. {OPENAI_SEARCH_TOOL} - web search through the OpenAI Responses API
   - query: question or search request (required)

Configuration:
- Model: {settings.openai_model}
- Search context size: {settings.search_context_size}
- Reasoning effort: {settings.reasoning_effort}
- Text verbosity: {settings.text_verbosity}
- Max output tokens: {settings.openai_max_tokens or 'provider default'}
- Tool timeout: {settings.openai_mcp_timeout}ms

Environment Variables:
- OPENAI_API_KEY (required), OPENAI_MODEL, OPENAI_BASE_URL
- SEARCH_CONTEXT_SIZE, REASONING_EFFORT, TEXT_VERBOSITY: low | medium | high
- OPENAI_MAX_TOKENS, OPENAI_MCP_TIMEOUT (milliseconds)"""
    return [
        ResourceDocument(
            uri="openai://info",
            name="OpenAI Search Server Information",
            description="Tools and configuration of the OpenAI search server",
            text=text,
        )
    ]


def gemini_resources(settings: GeminiSettings) -> List[ResourceDocument]:
    backend = (
        f"Vertex AI ({settings.google_cloud_project}, {settings.google_cloud_location})"
        if settings.google_genai_use_vertexai
        else "Gemini API"
    )
    text = f"""Gemini MCP Server
=================

Tools:
1. {GOOGLE_SEARCH_TOOL} - Google Search grounded answers with numbered citations
   - query: search query (required)
2. {GEMINI_CLI_TOOL} - run the local Gemini CLI with a prompt
   - prompt: prompt text (required)

Configuration:
- Backend: {backend}
- Model: {settings.gemini_model}
- CLI command: {settings.gemini_cli_command}
- Tool timeout: {settings.gemini_mcp_timeout}ms

Environment Variables:
- GEMINI_API_KEY, GEMINI_MODEL, GEMINI_CLI_COMMAND
- GOOGLE_GENAI_USE_VERTEXAI, GOOGLE_CLOUD_PROJECT, GOOGLE_CLOUD_LOCATION,
  GOOGLE_CLOUD_ACCESS_TOKEN
- GEMINI_MCP_TIMEOUT (milliseconds)"""
    return [
        ResourceDocument(
            uri="gemini://info",
            name="Gemini Server Information",
            description="Tools and configuration of the Gemini server",
            text=text,
        )
    ]


def register_gemini_tools(
    runtime: ToolRuntime,
    provider: GeminiSearchProvider,
    cli_command: str = "gemini",
    timeout_policy: Optional[TimeoutPolicy] = None,
) -> None:
    handlers = {
        **build_google_search_handlers(provider),
        **build_gemini_cli_handlers(cli_command),
    }
    runtime.register([GOOGLE_SEARCH_DEFINITION, GEMINI_CLI_DEFINITION], handlers, timeout_policy)
