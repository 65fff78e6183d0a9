from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class ToolDefinition(BaseModel):
    """Declarative contract of one tool.

    ``input_schema`` is a field shape (``{"msg": str}``) or a ``Schema``;
    ``output_schema`` is any annotation or a ``Schema``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    description: str
    input_schema: Any
    output_schema: Any
    title: Optional[str] = None


class TimeoutPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_timeout_ms: Optional[PositiveInt] = None
    per_tool_timeout_ms: Dict[str, PositiveInt] = Field(default_factory=dict)

    def resolve(self, name: str) -> Optional[int]:
        if name in self.per_tool_timeout_ms:
            return self.per_tool_timeout_ms[name]
        return self.default_timeout_ms


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResultEnvelope(BaseModel):
    content: List[TextContent]

    @classmethod
    def from_text(cls, text: str) -> "ToolResultEnvelope":
        return cls(content=[TextContent(text=text)])


class ResourceDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    name: str
    description: str = ""
    mime_type: str = "text/plain"
    text: str


class GroundingSource(BaseModel):
    title: str
    url: str


class GroundingSupport(BaseModel):
    segment_end_index: Optional[int] = None
    chunk_indices: Optional[List[int]] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "GroundingSupport":
        # The API omits zero-valued offsets, so a present segment without
        # endIndex ends at 0.
        segment = payload.get("segment")
        end_index = None
        if isinstance(segment, dict):
            end_index = segment.get("endIndex", 0)
        return cls(
            segment_end_index=end_index,
            chunk_indices=payload.get("groundingChunkIndices"),
        )


class GroundingMetadata(BaseModel):
    supports: List[GroundingSupport] = Field(default_factory=list)
    web_search_queries: List[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "GroundingMetadata":
        supports = [
            GroundingSupport.from_api(item)
            for item in payload.get("groundingSupports") or []
            if isinstance(item, dict)
        ]
        return cls(
            supports=supports,
            web_search_queries=list(payload.get("webSearchQueries") or []),
        )


def grounding_sources_from_api(payload: Dict[str, Any]) -> List[GroundingSource]:
    # One source per chunk, even incomplete ones: supports refer to chunks by position.
    sources: List[GroundingSource] = []
    for chunk in payload.get("groundingChunks") or []:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not isinstance(web, dict):
            web = {}
        url = str(web.get("uri") or "")
        sources.append(GroundingSource(title=str(web.get("title") or url), url=url))
    return sources


class CliResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    output: str = Field(..., description="The output from the CLI")
    exit_code: int = Field(..., alias="exitCode", description="The exit code of the process")
    error: Optional[str] = Field(default=None, description="Any error output if present")
