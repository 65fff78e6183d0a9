from __future__ import annotations

import os
from typing import Any, List, Literal, Mapping, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    ValidationError,
    field_validator,
    model_validator,
)

from .models import TimeoutPolicy

Level = Literal["low", "medium", "high"]

DEFAULT_MCP_TIMEOUT_MS = 10 * 60 * 1000

SettingsT = TypeVar("SettingsT", bound="ServiceSettings")


class ConfigError(Exception):
    def __init__(self, details: List[str]) -> None:
        self.details = list(details)
        lines = "\n".join(f"  - {detail}" for detail in self.details)
        super().__init__(f"Invalid environment variables:\n{lines}")


class ServiceSettings(BaseModel):
    """Settings read once from the environment at process entry.

    Fields are populated by their upper-case alias; blank variables count
    as unset.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @classmethod
    def from_env(cls: Type[SettingsT], environ: Optional[Mapping[str, str]] = None) -> SettingsT:
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name, field in cls.model_fields.items():
            key = field.alias or field_name
            raw = env.get(key)
            if raw is None or not raw.strip():
                continue
            values[key] = raw
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            details = [
                f"{'.'.join(str(part) for part in err['loc']) or '<settings>'}: {err['msg']}"
                for err in exc.errors()
            ]
            raise ConfigError(details) from exc

    def timeout_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy()


class OpenAISettings(ServiceSettings):
    openai_api_key: str = Field(..., alias="OPENAI_API_KEY", min_length=1)
    openai_model: str = Field("o3", alias="OPENAI_MODEL")
    openai_base_url: str = Field("https://api.openai.com", alias="OPENAI_BASE_URL")
    search_context_size: Level = Field("high", alias="SEARCH_CONTEXT_SIZE")
    reasoning_effort: Level = Field("high", alias="REASONING_EFFORT")
    text_verbosity: Level = Field("high", alias="TEXT_VERBOSITY")
    openai_max_tokens: Optional[PositiveInt] = Field(None, alias="OPENAI_MAX_TOKENS")
    openai_mcp_timeout: PositiveInt = Field(DEFAULT_MCP_TIMEOUT_MS, alias="OPENAI_MCP_TIMEOUT")

    def timeout_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(default_timeout_ms=self.openai_mcp_timeout)


class GeminiSettings(ServiceSettings):
    google_genai_use_vertexai: bool = Field(False, alias="GOOGLE_GENAI_USE_VERTEXAI")
    google_cloud_project: Optional[str] = Field(None, alias="GOOGLE_CLOUD_PROJECT")
    google_cloud_location: str = Field("us-central1", alias="GOOGLE_CLOUD_LOCATION", min_length=1)
    google_cloud_access_token: Optional[str] = Field(None, alias="GOOGLE_CLOUD_ACCESS_TOKEN")
    gemini_api_key: Optional[str] = Field(None, alias="GEMINI_API_KEY")
    gemini_model: str = Field("gemini-2.5-pro", alias="GEMINI_MODEL")
    gemini_cli_command: str = Field("gemini", alias="GEMINI_CLI_COMMAND")
    gemini_mcp_timeout: PositiveInt = Field(DEFAULT_MCP_TIMEOUT_MS, alias="GEMINI_MCP_TIMEOUT")

    @field_validator("google_genai_use_vertexai", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() == "true"

    @model_validator(mode="after")
    def _require_project_for_vertex(self) -> "GeminiSettings":
        if self.google_genai_use_vertexai and not self.google_cloud_project:
            raise ValueError("GOOGLE_CLOUD_PROJECT is not set")
        return self

    def timeout_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(default_timeout_ms=self.gemini_mcp_timeout)


class GitHubSettings(ServiceSettings):
    github_token: Optional[str] = Field(None, alias="GITHUB_TOKEN")
    github_api_base: str = Field("https://api.github.com", alias="GITHUB_API_BASE")
    github_request_timeout_s: float = Field(30.0, alias="GITHUB_REQUEST_TIMEOUT_S", gt=0)
    github_mcp_timeout: Optional[PositiveInt] = Field(None, alias="GITHUB_MCP_TIMEOUT")

    def timeout_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(default_timeout_ms=self.github_mcp_timeout)


def load_settings(
    settings_cls: Type[SettingsT], environ: Optional[Mapping[str, str]] = None
) -> SettingsT:
    return settings_cls.from_env(environ)
