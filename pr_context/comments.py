"""Paginated aggregation of pull request comments, reviews and linked issues."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from pr_context.github_client import GITHUB_GRAPHQL_ENDPOINT, GitHubApiError
from pr_context.schema import (
    AuthorNode,
    CommentNode,
    PageInfo,
    PullRequestCommentsResponse,
    PullRequestNode,
)

logger = logging.getLogger(__name__)

MAX_COMMENT_PAGES = 100
GRAPHQL_PAGE_SIZE = 100
BOT_AUTHOR_TYPE = "Bot"
GHOST_USER_LOGIN = "ghost"

PULL_REQUEST_COMMENTS_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!, $commentsAfter: String, $reviewsAfter: String) {{
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      body
      closingIssuesReferences(first: {GRAPHQL_PAGE_SIZE}) {{
        nodes {{
          number
          url
          body
          repository {{
            owner {{
              login
            }}
            name
          }}
        }}
      }}
      reviews(first: {GRAPHQL_PAGE_SIZE}, after: $reviewsAfter) {{
        pageInfo {{
          hasNextPage
          endCursor
        }}
        nodes {{
          comments(first: {GRAPHQL_PAGE_SIZE}) {{
            nodes {{
              id
              body
              author {{
                login
                type: __typename
              }}
            }}
          }}
        }}
      }}
      comments(first: {GRAPHQL_PAGE_SIZE}, after: $commentsAfter) {{
        pageInfo {{
          hasNextPage
          endCursor
        }}
        nodes {{
          id
          body
          author {{
            login
            type: __typename
          }}
        }}
      }}
    }}
  }}
}}
"""

GraphQLExecutor = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(frozen=True, slots=True)
class CommentUser:
    login: str
    type: str


@dataclass(frozen=True, slots=True)
class SimplifiedComment:
    """Caller-facing comment shape shared by PR comments and review comments."""

    id: str
    body: str
    org: str
    repo: str
    issue_url: str
    user: CommentUser


@dataclass(frozen=True, slots=True)
class LinkedIssue:
    """Issue the pull request declares it closes."""

    number: int
    owner: str
    repo: str
    url: str
    body: str


@dataclass(frozen=True, slots=True)
class PageCursor:
    """Pagination state for one GraphQL connection."""

    has_next_page: bool = True
    end_cursor: str | None = None

    def advance(self, page_info: PageInfo) -> PageCursor:
        """Move past one page, keeping the last known cursor when GitHub returns none."""
        return PageCursor(
            has_next_page=page_info.has_next_page,
            end_cursor=page_info.end_cursor or self.end_cursor,
        )


@dataclass(frozen=True, slots=True)
class PullRequestComments:
    """Aggregated conversational context for one pull request."""

    comments: tuple[SimplifiedComment, ...] = ()
    linked_issues: tuple[LinkedIssue, ...] = ()


def is_human_author(author: AuthorNode | CommentUser) -> bool:
    """Return whether an entry should be kept; only bot authors are dropped."""
    return author.type != BOT_AUTHOR_TYPE


def _comment_user(author: AuthorNode | None) -> CommentUser:
    """Normalize an author node; deleted accounts surface as the ghost user."""
    if author is None:
        return CommentUser(login=GHOST_USER_LOGIN, type="User")
    return CommentUser(login=author.login, type=author.type)


def _simplify_comments(
    nodes: list[CommentNode],
    *,
    owner: str,
    repo: str,
    issue_url: str,
) -> list[SimplifiedComment]:
    simplified: list[SimplifiedComment] = []
    for node in nodes:
        user = _comment_user(node.author)
        if not is_human_author(user):
            continue
        simplified.append(
            SimplifiedComment(
                id=node.id,
                body=node.body,
                org=owner,
                repo=repo,
                issue_url=issue_url,
                user=user,
            )
        )
    return simplified


def _linked_issues(pull_request: PullRequestNode) -> list[LinkedIssue]:
    return [
        LinkedIssue(
            number=issue.number,
            owner=issue.repository.owner.login,
            repo=issue.repository.name,
            url=issue.url,
            body=issue.body,
        )
        for issue in pull_request.closing_issues_references.nodes
    ]


async def _fetch_comments_page(
    execute_query: GraphQLExecutor,
    *,
    owner: str,
    repo: str,
    pr_number: int,
    comments_cursor: PageCursor,
    reviews_cursor: PageCursor,
) -> PullRequestNode:
    """Run one combined round-trip for both cursors and decode it."""
    data = await execute_query(
        PULL_REQUEST_COMMENTS_QUERY,
        {
            "owner": owner,
            "repo": repo,
            "number": pr_number,
            "commentsAfter": comments_cursor.end_cursor,
            "reviewsAfter": reviews_cursor.end_cursor,
        },
    )
    response = PullRequestCommentsResponse.model_validate(data)
    if response.repository is None or response.repository.pull_request is None:
        raise GitHubApiError(
            f"Pull request {owner}/{repo}#{pr_number} not found.",
            status_code=404,
            endpoint=GITHUB_GRAPHQL_ENDPOINT,
        )
    return response.repository.pull_request


async def fetch_pull_request_comments(
    *,
    execute_query: GraphQLExecutor,
    owner: str,
    repo: str,
    pr_number: int,
    max_pages: int = MAX_COMMENT_PAGES,
) -> PullRequestComments:
    """Fetch all non-bot PR comments and review comments plus linked issues.

    Comments and reviews are paginated independently but advance together,
    one combined query per round. Linked issues come from the first round.
    Hitting ``max_pages`` returns what was gathered so far. Transport and
    decode failures are logged and produce an empty result, since comments
    only enrich the bundle.
    """
    issue_url = f"https://github.com/{owner}/{repo}/pull/{pr_number}"
    comments: list[SimplifiedComment] = []
    linked_issues: list[LinkedIssue] = []
    comments_cursor = PageCursor()
    reviews_cursor = PageCursor()
    page_count = 0

    try:
        while comments_cursor.has_next_page or reviews_cursor.has_next_page:
            if page_count >= max_pages:
                logger.warning(
                    "Reached maximum page limit (%d) while fetching PR comments for %s/%s#%s",
                    max_pages,
                    owner,
                    repo,
                    pr_number,
                )
                break
            page_count += 1

            logger.info(
                "Fetching PR comments page %d for %s/%s#%s", page_count, owner, repo, pr_number
            )
            pull_request = await _fetch_comments_page(
                execute_query,
                owner=owner,
                repo=repo,
                pr_number=pr_number,
                comments_cursor=comments_cursor,
                reviews_cursor=reviews_cursor,
            )

            comments.extend(
                _simplify_comments(
                    pull_request.comments.nodes,
                    owner=owner,
                    repo=repo,
                    issue_url=issue_url,
                )
            )
            for review in pull_request.reviews.nodes:
                comments.extend(
                    _simplify_comments(
                        review.comments.nodes,
                        owner=owner,
                        repo=repo,
                        issue_url=issue_url,
                    )
                )

            if page_count == 1:
                linked_issues.extend(_linked_issues(pull_request))

            comments_cursor = comments_cursor.advance(pull_request.comments.page_info)
            reviews_cursor = reviews_cursor.advance(pull_request.reviews.page_info)
    except (httpx.HTTPError, GitHubApiError, ValidationError):
        logger.exception("Error fetching PR comments for %s/%s#%s", owner, repo, pr_number)
        return PullRequestComments()

    return PullRequestComments(comments=tuple(comments), linked_issues=tuple(linked_issues))
