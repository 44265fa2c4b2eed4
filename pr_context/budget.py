"""Token-budget allocation for pull request diffs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from pr_context.diff_parsing import FileDiffSegment, filter_essential_files, parse_per_file_diffs
from pr_context.github_client import GitHubApiError, fetch_pull_request_diff
from pr_context.tokens import TokenCounter, estimate_token_count

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TokenBudget:
    """Token allowance for the diff.

    ``running_token_count`` is what the caller has already committed elsewhere
    in the context window; ``tokens_remaining`` is the ceiling the running
    total may reach.
    """

    running_token_count: int = 0
    tokens_remaining: int = 0

    def __post_init__(self) -> None:
        if self.running_token_count < 0:
            raise ValueError("running_token_count must be greater than or equal to 0")
        if self.tokens_remaining < 0:
            raise ValueError("tokens_remaining must be greater than or equal to 0")


@dataclass(frozen=True, slots=True)
class EstimatedSegment:
    """Segment with its length-based token estimate and source position."""

    segment: FileDiffSegment
    estimated_token_count: int
    position: int


@dataclass(frozen=True, slots=True)
class MeasuredSegment:
    """Estimate-accepted segment with its exact token count."""

    segment: FileDiffSegment
    estimated_token_count: int
    token_count: int
    position: int


@dataclass(frozen=True, slots=True)
class DiffResult:
    """Budget-fitting diff, or ``None`` when no file fits."""

    diff: str | None


def estimate_segments(segments: Sequence[FileDiffSegment]) -> tuple[EstimatedSegment, ...]:
    """Estimate every segment and sort smallest first, ties in source order."""
    estimated = [
        EstimatedSegment(
            segment=segment,
            estimated_token_count=estimate_token_count(segment.diff_content),
            position=position,
        )
        for position, segment in enumerate(segments)
    ]
    return tuple(sorted(estimated, key=lambda item: item.estimated_token_count))


def select_by_estimate(
    estimated: Sequence[EstimatedSegment],
    budget: TokenBudget,
) -> tuple[EstimatedSegment, ...]:
    """Greedily accept segments whose estimate still fits the budget.

    A candidate that does not fit is skipped and the scan continues.
    """
    running_total = budget.running_token_count
    accepted: list[EstimatedSegment] = []
    for candidate in estimated:
        if running_total + candidate.estimated_token_count > budget.tokens_remaining:
            logger.info("Skipping %s to stay within token limits.", candidate.segment.filename)
            continue
        accepted.append(candidate)
        running_total += candidate.estimated_token_count
    return tuple(accepted)


async def measure_segments(
    accepted: Sequence[EstimatedSegment],
    token_counter: TokenCounter,
) -> tuple[MeasuredSegment, ...]:
    """Count tokens for all accepted segments concurrently.

    Segments whose count fails are dropped.
    """
    counts = await asyncio.gather(
        *(token_counter(item.segment.diff_content) for item in accepted),
        return_exceptions=True,
    )
    measured: list[MeasuredSegment] = []
    for item, count in zip(accepted, counts, strict=True):
        if isinstance(count, BaseException):
            if not isinstance(count, Exception):
                raise count
            logger.warning(
                "Dropping %s after token counting failed: %s",
                item.segment.filename,
                count,
            )
            continue
        measured.append(
            MeasuredSegment(
                segment=item.segment,
                estimated_token_count=item.estimated_token_count,
                token_count=count,
                position=item.position,
            )
        )
    return tuple(measured)


def evict_to_budget(
    measured: Sequence[MeasuredSegment],
    budget: TokenBudget,
) -> tuple[MeasuredSegment, ...]:
    """Drop the most recently accepted segments until the exact total fits."""
    survivors = list(measured)
    running_total = budget.running_token_count + sum(item.token_count for item in survivors)
    while running_total > budget.tokens_remaining and survivors:
        removed = survivors.pop()
        running_total -= removed.token_count
        logger.info(
            "Excluded %s after accurate token count exceeded limits.",
            removed.segment.filename,
        )
    return tuple(survivors)


async def allocate_diff_budget(
    segments: Sequence[FileDiffSegment],
    budget: TokenBudget,
    token_counter: TokenCounter,
) -> tuple[FileDiffSegment, ...] | None:
    """Select the segments that fit the budget, in source order.

    Returns ``None`` when nothing fits.
    """
    accepted = select_by_estimate(estimate_segments(segments), budget)
    if not accepted:
        logger.error("Cannot include any files from diff without exceeding token limits.")
        return None

    survivors = evict_to_budget(await measure_segments(accepted, token_counter), budget)
    if not survivors:
        logger.error("Cannot include any files from diff after accurate token count calculation.")
        return None

    return tuple(item.segment for item in sorted(survivors, key=lambda item: item.position))


async def process_pull_request_diff(
    diff: str,
    budget: TokenBudget,
    token_counter: TokenCounter,
) -> DiffResult:
    """Split, filter and budget a raw diff into the string handed to the caller."""
    essential_segments = filter_essential_files(parse_per_file_diffs(diff))
    if not essential_segments:
        logger.info("No essential files found in diff.")
        return DiffResult(diff=None)

    selected = await allocate_diff_budget(essential_segments, budget, token_counter)
    if selected is None:
        return DiffResult(diff=None)
    return DiffResult(diff="\n".join(segment.diff_content for segment in selected))


async def fetch_pull_request_details(
    *,
    client: httpx.AsyncClient,
    repo_full_name: str,
    pr_number: int,
    budget: TokenBudget,
    token_counter: TokenCounter,
) -> DiffResult:
    """Fetch a PR diff and fit it to the budget; transport failures yield no diff."""
    try:
        diff = await fetch_pull_request_diff(
            client=client,
            repo_full_name=repo_full_name,
            pr_number=pr_number,
        )
    except (httpx.HTTPError, GitHubApiError):
        logger.exception("Error fetching PR diff for %s#%s", repo_full_name, pr_number)
        return DiffResult(diff=None)
    return await process_pull_request_diff(diff, budget, token_counter)
