from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from subprocess import TimeoutExpired, run
from typing import Any, Callable, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import GeminiSettings, OpenAISettings
from .models import GroundingMetadata, GroundingSource, grounding_sources_from_api

SEARCH_SYSTEM_PROMPT = """You are a web search assistant. Follow these rules:

1. **Use verifiable public information**
    - Cite sources for technical details (Linux docs, GitHub repos, etc.)
    - Mark clearly when information cannot be verified

2. **No speculation**
    - State only what you can verify
    - If context requires inference, explicitly label it as such

3. **Be transparent**
    - Say "I couldn't find this information" when applicable
    - Distinguish between official docs and third-party sources

Keep responses factual, sourced, and honest about limitations."""

GEMINI_API_BASE = "https://generativelanguage.googleapis.com"
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# Blocks for the given seconds; returns True if the call was cancelled meanwhile.
CancelWait = Callable[[float], bool]


class LLMProviderError(Exception):
    pass


@dataclass
class GroundedAnswer:
    text: str
    sources: List[GroundingSource] = field(default_factory=list)
    metadata: Optional[GroundingMetadata] = None


class OpenAISearchProvider:
    """Web search through the OpenAI Responses API and its web search tool."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com",
        search_context_size: str = "high",
        reasoning_effort: str = "high",
        text_verbosity: str = "high",
        max_output_tokens: Optional[int] = None,
        timeout_s: float = 600.0,
        max_retries: int = 2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.search_context_size = search_context_size
        self.reasoning_effort = reasoning_effort
        self.text_verbosity = text_verbosity
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self.max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: OpenAISettings) -> "OpenAISearchProvider":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            search_context_size=settings.search_context_size,
            reasoning_effort=settings.reasoning_effort,
            text_verbosity=settings.text_verbosity,
            max_output_tokens=settings.openai_max_tokens,
            timeout_s=settings.openai_mcp_timeout / 1000,
        )

    def build_payload(self, query: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "instructions": SEARCH_SYSTEM_PROMPT,
            "input": [{"role": "user", "content": query}],
            "tools": [
                {"type": "web_search_preview", "search_context_size": self.search_context_size}
            ],
            "tool_choice": "auto",
            "parallel_tool_calls": True,
        }
        if _is_reasoning_model(self.model):
            payload["reasoning"] = {"effort": self.reasoning_effort}
        if _supports_verbosity(self.model):
            payload["text"] = {"verbosity": self.text_verbosity}
        if self.max_output_tokens is not None:
            payload["max_output_tokens"] = self.max_output_tokens
        return payload

    def search(self, query: str, cancel_wait: Optional[CancelWait] = None) -> str:
        data = post_json(
            f"{self.base_url}/v1/responses",
            self.build_payload(query),
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            label="OpenAI API",
            cancel_wait=cancel_wait,
        )
        return extract_output_text(data)


class GeminiSearchProvider:
    """Google Search grounded generation via the Gemini or Vertex AI REST API."""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        use_vertexai: bool = False,
        project: Optional[str] = None,
        location: str = "us-central1",
        access_token: Optional[str] = None,
        timeout_s: float = 600.0,
        max_retries: int = 2,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.use_vertexai = use_vertexai
        self.project = project
        self.location = location
        self.access_token = access_token
        self.timeout_s = timeout_s
        self.max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: GeminiSettings) -> "GeminiSearchProvider":
        return cls(
            model=settings.gemini_model,
            api_key=settings.gemini_api_key,
            use_vertexai=settings.google_genai_use_vertexai,
            project=settings.google_cloud_project,
            location=settings.google_cloud_location,
            access_token=settings.google_cloud_access_token,
            timeout_s=settings.gemini_mcp_timeout / 1000,
        )

    def endpoint(self) -> str:
        if not self.use_vertexai:
            return f"{GEMINI_API_BASE}/v1beta/models/{self.model}:generateContent"
        if not self.project:
            raise LLMProviderError("GOOGLE_CLOUD_PROJECT is not set")
        host = (
            "aiplatform.googleapis.com"
            if self.location == "global"
            else f"{self.location}-aiplatform.googleapis.com"
        )
        return (
            f"https://{host}/v1/projects/{self.project}/locations/{self.location}"
            f"/publishers/google/models/{self.model}:generateContent"
        )

    def auth_headers(self) -> Dict[str, str]:
        if self.use_vertexai:
            return {"Authorization": f"Bearer {self._vertex_access_token()}"}
        if not self.api_key:
            raise LLMProviderError("GEMINI_API_KEY is not set")
        return {"x-goog-api-key": self.api_key}

    def build_payload(self, query: str) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": SEARCH_SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": query}]}],
            "tools": [{"googleSearch": {}}],
        }

    def search(self, query: str, cancel_wait: Optional[CancelWait] = None) -> GroundedAnswer:
        data = post_json(
            self.endpoint(),
            self.build_payload(query),
            headers=self.auth_headers(),
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            label="Gemini API",
            cancel_wait=cancel_wait,
        )
        return parse_grounded_answer(data)

    def _vertex_access_token(self) -> str:
        if self.access_token:
            return self.access_token
        try:
            completed = run(
                ["gcloud", "auth", "print-access-token"],
                capture_output=True,
                text=True,
                timeout=30,
                check=False,
            )
        except (OSError, TimeoutExpired) as exc:
            raise LLMProviderError(f"Unable to obtain a Vertex AI access token: {exc}") from exc
        token = completed.stdout.strip()
        if completed.returncode != 0 or not token:
            raise LLMProviderError(
                f"gcloud auth print-access-token failed: {completed.stderr.strip() or 'no token'}"
            )
        return token


def post_json(
    url: str,
    payload: Dict[str, Any],
    *,
    headers: Dict[str, str],
    timeout_s: float,
    max_retries: int = 0,
    label: str = "API",
    cancel_wait: Optional[CancelWait] = None,
) -> Dict[str, Any]:
    """POST ``payload`` as JSON, retrying throttling, server errors and network failures.

    With ``cancel_wait`` the backoff between attempts ends early on
    cancellation and no further attempt is made.
    """
    attempts = max_retries + 1
    attempt = 0
    while True:
        request = Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={**headers, "Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=timeout_s) as response:
                body = response.read().decode("utf-8")
            return json.loads(body) if body else {}
        except HTTPError as exc:
            detail = exc.read().decode("utf-8") if exc.fp else str(exc)
            if exc.code in _RETRYABLE_STATUS and attempt < attempts - 1:
                _backoff(attempt, label, cancel_wait)
                attempt += 1
                continue
            raise LLMProviderError(f"{label} error ({exc.code}): {detail}") from exc
        except (URLError, TimeoutError) as exc:
            if attempt < attempts - 1:
                _backoff(attempt, label, cancel_wait)
                attempt += 1
                continue
            raise LLMProviderError(f"{label} connection error: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise LLMProviderError(f"{label} returned invalid JSON: {exc}") from exc


def _backoff(attempt: int, label: str, cancel_wait: Optional[CancelWait]) -> None:
    delay = min(2**attempt, 8)
    if cancel_wait is None:
        time.sleep(delay)
        return
    if cancel_wait(delay):
        raise LLMProviderError(f"{label} request cancelled before retry")


def extract_output_text(response: Dict[str, Any]) -> str:
    parts: list[str] = []
    for item in response.get("output", []):
        if item.get("type") != "message":
            continue
        for content in item.get("content", []):
            if content.get("type") == "output_text":
                parts.append(content.get("text", ""))
    return "".join(parts).strip()


def parse_grounded_answer(response: Dict[str, Any]) -> GroundedAnswer:
    candidates = response.get("candidates") or []
    if not candidates:
        return GroundedAnswer(text="")
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if not part.get("thought"))
    raw_metadata = candidate.get("groundingMetadata")
    if not isinstance(raw_metadata, dict):
        return GroundedAnswer(text=text)
    return GroundedAnswer(
        text=text,
        sources=grounding_sources_from_api(raw_metadata),
        metadata=GroundingMetadata.from_api(raw_metadata),
    )


def _is_reasoning_model(model: str) -> bool:
    normalized = (model or "").strip().lower()
    return normalized.startswith(("o1", "o3", "o4", "gpt-5"))


def _supports_verbosity(model: str) -> bool:
    return (model or "").strip().lower().startswith("gpt-5")
