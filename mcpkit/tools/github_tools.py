from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode, urlparse
from urllib.request import Request, urlopen

from mcpkit.core.config import GitHubSettings
from mcpkit.core.models import ResourceDocument, TimeoutPolicy, ToolDefinition
from mcpkit.core.schemas import JsonSchema
from mcpkit.framework.tool_runtime import ToolHandler, ToolRuntime

USER_AGENT = "MCP-GitHub-Proxy/1.0"
HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]

_RESPONSE_SCHEMA = JsonSchema(
    {
        "type": "object",
        "properties": {
            "status": {"type": "integer"},
            "reason": {"type": "string"},
            "body": {},
        },
        "required": ["status", "body"],
    }
)

GITHUB_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="github_api",
        description="Make a generic GitHub API call",
        input_schema=JsonSchema(
            {
                "type": "object",
                "properties": {
                    "endpoint": {
                        "type": "string",
                        "minLength": 1,
                        "description": "API endpoint (e.g., /users/octocat or full URL)",
                    },
                    "method": {
                        "type": "string",
                        "enum": HTTP_METHODS,
                        "description": "HTTP method (GET, POST, PUT, DELETE, PATCH)",
                    },
                    "token": {
                        "type": "string",
                        "description": "GitHub personal access token (optional)",
                    },
                    "body": {
                        "type": "object",
                        "description": "Request body for POST/PUT/PATCH requests",
                    },
                    "headers": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                        "description": "Additional headers to include",
                    },
                },
                "required": ["endpoint"],
            }
        ),
        output_schema=_RESPONSE_SCHEMA,
    ),
    ToolDefinition(
        name="search_repos",
        description="Search GitHub repositories",
        input_schema=JsonSchema(
            {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Search query (e.g., 'language:go stars:>1000')",
                    },
                    "sort": {
                        "type": "string",
                        "enum": ["stars", "forks", "help-wanted-issues", "updated"],
                    },
                    "order": {"type": "string", "enum": ["asc", "desc"]},
                    "per_page": {"type": "integer", "minimum": 1, "maximum": 100},
                    "page": {"type": "integer", "minimum": 1},
                },
                "required": ["query"],
            }
        ),
        output_schema=_RESPONSE_SCHEMA,
    ),
    ToolDefinition(
        name="get_user",
        description="Get GitHub user information",
        input_schema=JsonSchema(
            {
                "type": "object",
                "properties": {
                    "username": {
                        "type": "string",
                        "minLength": 1,
                        "description": "GitHub username",
                    },
                },
                "required": ["username"],
            }
        ),
        output_schema=_RESPONSE_SCHEMA,
    ),
]


class GitHubAPIError(Exception):
    pass


class GitHubClient:
    """Thin proxy over the GitHub REST API.

    HTTP error statuses are returned to the caller as data; only transport
    failures raise.
    """

    def __init__(
        self,
        api_base: str = "https://api.github.com",
        default_token: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.default_token = default_token
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: GitHubSettings) -> "GitHubClient":
        return cls(
            api_base=settings.github_api_base,
            default_token=settings.github_token,
            timeout_s=settings.github_request_timeout_s,
        )

    def resolve_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.api_base}/{endpoint.lstrip('/')}"

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        token: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = self.resolve_url(endpoint)
        request_headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github.v3+json",
        }
        data = None
        if body:
            data = json.dumps(body).encode("utf-8")
            request_headers["Content-Type"] = "application/json"
        auth_token = token or self._default_token_for(url)
        if auth_token:
            request_headers["Authorization"] = f"token {auth_token}"
        request_headers.update(headers or {})

        request = Request(url, data=data, headers=request_headers, method=method)
        try:
            with urlopen(request, timeout=self.timeout_s) as response:
                return _response_payload(response.status, response.reason, response.read())
        except HTTPError as exc:
            raw = exc.read() if exc.fp else b""
            return _response_payload(exc.code, str(exc.reason or ""), raw)
        except (URLError, TimeoutError) as exc:
            raise GitHubAPIError(f"GitHub API connection failed: {exc}") from exc

    def _default_token_for(self, url: str) -> Optional[str]:
        # The configured token never leaves the configured API host.
        if urlparse(url).netloc != urlparse(self.api_base).netloc:
            return None
        return self.default_token


def build_github_handlers(client: GitHubClient) -> Dict[str, ToolHandler]:
    def github_api(payload: Dict[str, Any]) -> Dict[str, Any]:
        return client.request(
            payload["endpoint"],
            method=payload.get("method") or "GET",
            token=payload.get("token"),
            body=payload.get("body"),
            headers=payload.get("headers"),
        )

    def search_repos(payload: Dict[str, Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"q": payload["query"]}
        for key in ("sort", "order", "per_page", "page"):
            if payload.get(key):
                params[key] = payload[key]
        return client.request(f"/search/repositories?{urlencode(params)}")

    def get_user(payload: Dict[str, Any]) -> Dict[str, Any]:
        return client.request(f"/users/{quote(payload['username'], safe='')}")

    return {
        "github_api": github_api,
        "search_repos": search_repos,
        "get_user": get_user,
    }


def register_github_tools(
    runtime: ToolRuntime,
    client: GitHubClient,
    timeout_policy: Optional[TimeoutPolicy] = None,
) -> None:
    runtime.register(GITHUB_TOOLS, build_github_handlers(client), timeout_policy)


def github_resources(settings: GitHubSettings) -> List[ResourceDocument]:
    token_state = "Configured" if settings.github_token else "Not configured"
    text = f"""GitHub Proxy MCP Server
=======================

This server provides a proxy to the GitHub API with the following tools:

1. github_api - Make generic GitHub API calls
   - endpoint: API endpoint path or full URL
   - method: HTTP method (default: GET)
   - token: GitHub personal access token (optional, uses GITHUB_TOKEN env if not provided)
   - body: Request body for POST/PUT/PATCH
   - headers: Additional headers

2. search_repos - Search GitHub repositories
   - query: Search query (required)
   - sort: Sort by (stars, forks, help-wanted-issues, updated)
   - order: Order (asc, desc)
   - per_page: Results per page
   - page: Page number

3. get_user - Get GitHub user information
   - username: GitHub username (required)

Configuration:
- API Base: {settings.github_api_base}
- Default Token: {token_state}

Environment Variables:
- GITHUB_TOKEN: Default GitHub personal access token
- GITHUB_API_BASE: Custom GitHub API base URL (for GitHub Enterprise)

Rate Limiting:
- Unauthenticated: 60 requests/hour
- Authenticated: 5,000 requests/hour"""
    return [
        ResourceDocument(
            uri="github://api-docs",
            name="GitHub API Documentation",
            description="Information about using the GitHub proxy server",
            text=text,
        )
    ]


def _response_payload(status: int, reason: str, raw: bytes) -> Dict[str, Any]:
    text = raw.decode("utf-8", errors="replace")
    try:
        body: Any = json.loads(text) if text else None
    except json.JSONDecodeError:
        body = text
    return {"status": status, "reason": reason, "body": body}
