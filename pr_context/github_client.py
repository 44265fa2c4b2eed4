"""GitHub API wrapper and auth helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import httpx
from dotenv import load_dotenv

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_GRAPHQL_ENDPOINT = "/graphql"
GITHUB_JSON_MEDIA_TYPE = "application/vnd.github+json"
GITHUB_DIFF_MEDIA_TYPE = "application/vnd.github.diff"


class GitHubAuthError(RuntimeError):
    """Raised when required GitHub authentication is missing."""


class GitHubInputError(ValueError):
    """Raised when repository or PR input values are invalid."""


class GitHubApiError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitHubRateLimitError(GitHubApiError):
    """Raised when GitHub API rate limiting prevents request completion."""


class GitHubGraphQLError(GitHubApiError):
    """Raised when a GraphQL response carries an ``errors`` array."""

    def __init__(self, message: str, *, errors: list[Any], endpoint: str) -> None:
        super().__init__(message, status_code=200, endpoint=endpoint)
        self.errors = errors


def _ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def _decode_json(response: httpx.Response, endpoint: str) -> dict[str, Any]:
    """Decode a response body that must be a JSON object."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise GitHubApiError(
            f"Expected JSON body for {endpoint}.",
            status_code=response.status_code,
            endpoint=endpoint,
        ) from exc
    return _ensure_mapping(payload, context=endpoint)


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitHubApiError(
            f"Expected string field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429:
        raise GitHubRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitHubApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


async def _request(
    client: httpx.AsyncClient,
    method: str,
    endpoint: str,
    *,
    accept_header: str,
    json_body: dict[str, Any] | None = None,
) -> httpx.Response:
    """Perform one request and raise a typed error on failure status."""
    response = await client.request(
        method,
        endpoint,
        headers={"Accept": accept_header},
        json=json_body,
    )
    if response.status_code >= 400:
        _raise_http_error(response, endpoint)
    return response


async def _request_json(client: httpx.AsyncClient, endpoint: str) -> dict[str, Any]:
    """Perform a JSON GET request against GitHub API."""
    response = await _request(client, "GET", endpoint, accept_header=GITHUB_JSON_MEDIA_TYPE)
    return _decode_json(response, endpoint)


async def _request_text(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    accept_header: str,
) -> str:
    """Perform a text GET request with explicit Accept header."""
    response = await _request(client, "GET", endpoint, accept_header=accept_header)
    return response.text


async def execute_graphql_query(
    client: httpx.AsyncClient,
    query: str,
    variables: dict[str, Any],
) -> dict[str, Any]:
    """Run one parameterized GraphQL query and return its ``data`` object."""
    response = await _request(
        client,
        "POST",
        GITHUB_GRAPHQL_ENDPOINT,
        accept_header=GITHUB_JSON_MEDIA_TYPE,
        json_body={"query": query, "variables": variables},
    )
    payload = _decode_json(response, GITHUB_GRAPHQL_ENDPOINT)

    errors = payload.get("errors")
    if errors:
        messages = [
            str(error.get("message", error)) if isinstance(error, dict) else str(error)
            for error in errors
        ]
        raise GitHubGraphQLError(
            f"GitHub GraphQL query failed: {'; '.join(messages)}",
            errors=list(errors),
            endpoint=GITHUB_GRAPHQL_ENDPOINT,
        )
    return _ensure_mapping(payload.get("data"), context=GITHUB_GRAPHQL_ENDPOINT)


async def fetch_pull_request_diff(
    *,
    client: httpx.AsyncClient,
    repo_full_name: str,
    pr_number: int,
) -> str:
    """Fetch full raw diff for a pull request."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/pulls/{normalized_pr_number}"
    return await _request_text(
        client,
        endpoint,
        accept_header=GITHUB_DIFF_MEDIA_TYPE,
    )


def parse_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    """Parse and validate repository input in owner/repo format."""
    owner, separator, repo = repo_full_name.strip().partition("/")
    if not separator or not owner or not repo or "/" in repo:
        raise GitHubInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is owner/repo."
        )
    return owner, repo


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise GitHubInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number


def get_github_token() -> str:
    """Read GitHub token from environment and fail fast if missing."""
    token, _source = get_github_token_with_source()
    return token


def get_github_token_with_source() -> tuple[str, str]:
    """Read GitHub token and return token value with environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token:
        return github_token, "GITHUB_TOKEN"

    gh_token = os.getenv("GH_TOKEN")
    if gh_token:
        return gh_token, "GH_TOKEN"

    message = "Missing GitHub token. Set GITHUB_TOKEN (preferred) or GH_TOKEN."
    raise GitHubAuthError(message)


async def fetch_authenticated_user_login(*, client: httpx.AsyncClient) -> str:
    """Fetch authenticated GitHub user login for token validation."""
    endpoint = "/user"
    payload = await _request_json(client, endpoint)
    return _require_str(payload, key="login", endpoint=endpoint)


def build_github_client(
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.AsyncClient:
    """Build an authenticated GitHub HTTP client."""
    token = get_github_token()
    headers = {
        "Accept": GITHUB_JSON_MEDIA_TYPE,
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    return httpx.AsyncClient(
        base_url=GITHUB_API_BASE_URL,
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
