"""Typer CLI for building pull request context bundles."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import httpx
import typer

from pr_context.budget import TokenBudget
from pr_context.comments import MAX_COMMENT_PAGES
from pr_context.context import (
    PullRequestContext,
    build_context_artifact,
    fetch_pull_request_context,
)
from pr_context.github_client import (
    GitHubApiError,
    GitHubAuthError,
    GitHubInputError,
    build_github_client,
    fetch_authenticated_user_login,
    fetch_pull_request_diff,
    get_github_token_with_source,
)
from pr_context.logger import resolve_log_level, setup_logger
from pr_context.tokens import TiktokenCounter

app = typer.Typer(help="Assemble token-bounded context bundles for GitHub pull requests.")


async def _collect_context(
    *,
    repo: str,
    pr: int,
    budget: TokenBudget,
    encoding: str | None,
    max_comment_pages: int,
    timeout_seconds: int,
    trust_env: bool,
) -> PullRequestContext:
    async with build_github_client(timeout_seconds=timeout_seconds, trust_env=trust_env) as client:
        return await fetch_pull_request_context(
            client=client,
            repo_full_name=repo,
            pr_number=pr,
            budget=budget,
            token_counter=TiktokenCounter(encoding),
            max_comment_pages=max_comment_pages,
        )


@app.command("bundle")
def bundle_command(
    repo: Annotated[str, typer.Option(help="Repository in owner/repo format.")],
    pr: Annotated[int, typer.Option(help="Pull request number.")],
    tokens_remaining: Annotated[
        int, typer.Option(help="Token ceiling the running total may reach.")
    ],
    running_token_count: Annotated[
        int, typer.Option(help="Tokens already committed elsewhere in the context window.")
    ] = 0,
    encoding: Annotated[
        str | None, typer.Option(help="tiktoken encoding used for exact token counts.")
    ] = None,
    max_comment_pages: Annotated[
        int, typer.Option(help="Maximum GraphQL pages fetched for comments and reviews.")
    ] = MAX_COMMENT_PAGES,
    output: Annotated[
        Path | None, typer.Option(help="Write the JSON bundle here instead of stdout.")
    ] = None,
    log_level: Annotated[
        str | None, typer.Option(help="Log level; defaults to PR_CONTEXT_LOG_LEVEL or INFO.")
    ] = None,
    timeout_seconds: Annotated[int, typer.Option(help="GitHub API timeout in seconds.")] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Fetch comments, linked issues and a budget-fitting diff for a PR."""
    setup_logger(resolve_log_level(log_level))
    try:
        budget = TokenBudget(
            running_token_count=running_token_count,
            tokens_remaining=tokens_remaining,
        )
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error

    try:
        context = asyncio.run(
            _collect_context(
                repo=repo,
                pr=pr,
                budget=budget,
                encoding=encoding,
                max_comment_pages=max_comment_pages,
                timeout_seconds=timeout_seconds,
                trust_env=trust_env,
            )
        )
    except GitHubAuthError as error:
        typer.echo(f"Context bundle failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    except GitHubInputError as error:
        typer.echo(f"Context bundle failed: {error}", err=True)
        raise typer.Exit(code=1) from error

    payload = json.dumps(build_context_artifact(context), indent=2, sort_keys=True)
    if output is None:
        typer.echo(payload)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(payload + "\n", encoding="utf-8")
    typer.echo(str(output))


async def _check_access(
    *,
    repo: str | None,
    pr: int | None,
    timeout_seconds: int,
    trust_env: bool,
) -> str:
    async with build_github_client(timeout_seconds=timeout_seconds, trust_env=trust_env) as client:
        login = await fetch_authenticated_user_login(client=client)
        if repo is not None and pr is not None:
            await fetch_pull_request_diff(client=client, repo_full_name=repo, pr_number=pr)
        return login


@app.command("auth-check")
def auth_check_command(
    repo: Annotated[
        str | None,
        typer.Option(help="Optional repository in owner/repo format for permission check."),
    ] = None,
    pr: Annotated[
        int | None,
        typer.Option(help="Optional pull request number used with --repo for permission check."),
    ] = None,
    timeout_seconds: Annotated[
        int, typer.Option(help="GitHub API timeout in seconds for the validation call.")
    ] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate GitHub token setup and optional PR read access."""
    if (repo is None) != (pr is None):
        raise typer.BadParameter("Provide both --repo and --pr together, or neither.")

    try:
        _token, token_source = get_github_token_with_source()
    except GitHubAuthError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Token detected in {token_source}.")

    try:
        login = asyncio.run(
            _check_access(repo=repo, pr=pr, timeout_seconds=timeout_seconds, trust_env=trust_env)
        )
    except GitHubInputError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error
    except GitHubApiError as error:
        typer.echo(
            "GitHub auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitHub auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error
    except ImportError as error:
        typer.echo(
            "GitHub auth check failed: proxy transport dependency is missing. "
            "Try `pr-context auth-check --no-trust-env`, or install `httpx[socks]`."
        )
        raise typer.Exit(code=1) from error

    typer.echo(f"Authenticated as GitHub user '{login}'.")
    if repo is not None and pr is not None:
        typer.echo(f"Repository/PR access check passed for {repo}#{pr}.")
    typer.echo("GitHub token setup is valid.")
