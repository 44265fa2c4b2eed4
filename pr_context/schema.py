"""Typed GraphQL response contract for the pull request comments query."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class GraphQLModel(BaseModel):
    """Base model for GraphQL payload fragments; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class PageInfo(GraphQLModel):
    """Connection cursor state."""

    has_next_page: bool = Field(alias="hasNextPage")
    end_cursor: str | None = Field(default=None, alias="endCursor")


class AuthorNode(GraphQLModel):
    """Comment author; ``type`` is the GraphQL ``__typename`` alias."""

    login: str
    type: str


class CommentNode(GraphQLModel):
    """Issue-style comment or review comment."""

    id: str
    body: str = ""
    author: AuthorNode | None = None


class CommentNodes(GraphQLModel):
    """Non-paginated list of comments nested under a review."""

    nodes: list[CommentNode] = Field(default_factory=list)


class ReviewNode(GraphQLModel):
    """Pull request review with its nested comments."""

    comments: CommentNodes = Field(default_factory=CommentNodes)


class CommentConnection(GraphQLModel):
    """Paginated pull request comments."""

    page_info: PageInfo = Field(alias="pageInfo")
    nodes: list[CommentNode] = Field(default_factory=list)


class ReviewConnection(GraphQLModel):
    """Paginated pull request reviews."""

    page_info: PageInfo = Field(alias="pageInfo")
    nodes: list[ReviewNode] = Field(default_factory=list)


class RepositoryOwner(GraphQLModel):
    login: str


class IssueRepository(GraphQLModel):
    owner: RepositoryOwner
    name: str


class ClosingIssueNode(GraphQLModel):
    """Issue the pull request declares it closes."""

    number: int
    url: str
    body: str = ""
    repository: IssueRepository


class ClosingIssueConnection(GraphQLModel):
    nodes: list[ClosingIssueNode] = Field(default_factory=list)


class PullRequestNode(GraphQLModel):
    body: str | None = None
    closing_issues_references: ClosingIssueConnection = Field(
        default_factory=ClosingIssueConnection,
        alias="closingIssuesReferences",
    )
    reviews: ReviewConnection
    comments: CommentConnection


class RepositoryNode(GraphQLModel):
    pull_request: PullRequestNode | None = Field(default=None, alias="pullRequest")


class PullRequestCommentsResponse(GraphQLModel):
    """``data`` object returned by the pull request comments query."""

    repository: RepositoryNode | None = None
