"""Pull request context bundle construction."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from pr_context.budget import DiffResult, TokenBudget, fetch_pull_request_details
from pr_context.comments import (
    MAX_COMMENT_PAGES,
    LinkedIssue,
    PullRequestComments,
    SimplifiedComment,
    fetch_pull_request_comments,
)
from pr_context.github_client import (
    execute_graphql_query,
    parse_repo_full_name,
    validate_pr_number,
)
from pr_context.tokens import TiktokenCounter, TokenCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PullRequestContext:
    """Size-bounded context bundle for one pull request."""

    repository: str
    pr_number: int
    comments: tuple[SimplifiedComment, ...]
    linked_issues: tuple[LinkedIssue, ...]
    diff: str | None


async def fetch_pull_request_context(
    *,
    client: httpx.AsyncClient,
    repo_full_name: str,
    pr_number: int,
    budget: TokenBudget,
    token_counter: TokenCounter | None = None,
    max_comment_pages: int = MAX_COMMENT_PAGES,
) -> PullRequestContext:
    """Fetch the diff and the conversation for a PR concurrently.

    Either half degrades to an empty value on transport failure without
    affecting the other.
    """
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    counter = token_counter if token_counter is not None else TiktokenCounter()

    async def execute_query(query: str, variables: dict[str, Any]) -> dict[str, Any]:
        return await execute_graphql_query(client, query, variables)

    diff_result, conversation = await asyncio.gather(
        fetch_pull_request_details(
            client=client,
            repo_full_name=repo_full_name,
            pr_number=normalized_pr_number,
            budget=budget,
            token_counter=counter,
        ),
        fetch_pull_request_comments(
            execute_query=execute_query,
            owner=owner,
            repo=repo,
            pr_number=normalized_pr_number,
            max_pages=max_comment_pages,
        ),
    )
    return _assemble_context(
        repository=f"{owner}/{repo}",
        pr_number=normalized_pr_number,
        diff_result=diff_result,
        conversation=conversation,
    )


def _assemble_context(
    *,
    repository: str,
    pr_number: int,
    diff_result: DiffResult,
    conversation: PullRequestComments,
) -> PullRequestContext:
    logger.info(
        "Built context for %s#%s: %d comments, %d linked issues, diff %s",
        repository,
        pr_number,
        len(conversation.comments),
        len(conversation.linked_issues),
        "included" if diff_result.diff is not None else "omitted",
    )
    return PullRequestContext(
        repository=repository,
        pr_number=pr_number,
        comments=conversation.comments,
        linked_issues=conversation.linked_issues,
        diff=diff_result.diff,
    )


def build_context_artifact(context: PullRequestContext) -> dict[str, Any]:
    """Build JSON-serializable payload for a context bundle."""
    captured_at = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
    return {
        "schema_version": "v1",
        "captured_at": captured_at,
        "repository": context.repository,
        "pr_number": context.pr_number,
        "comments": [asdict(comment) for comment in context.comments],
        "linked_issues": [asdict(issue) for issue in context.linked_issues],
        "diff": context.diff,
    }
