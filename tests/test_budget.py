"""Unit tests for diff token-budget allocation."""

from __future__ import annotations

import asyncio
import logging

import httpx
import pytest
from pr_context.budget import (
    DiffResult,
    EstimatedSegment,
    MeasuredSegment,
    TokenBudget,
    allocate_diff_budget,
    estimate_segments,
    evict_to_budget,
    fetch_pull_request_details,
    measure_segments,
    process_pull_request_diff,
    select_by_estimate,
)
from pr_context.diff_parsing import FileDiffSegment


def make_file_diff(filename: str, length: int) -> str:
    """Build a one-file diff of exactly ``length`` characters."""
    header = f"diff --git a/{filename} b/{filename}\n"
    padding = length - len(header) - 1
    assert padding > 0
    return header + "+" + "x" * padding


def make_segment(filename: str, length: int) -> FileDiffSegment:
    return FileDiffSegment(filename=filename, diff_content=make_file_diff(filename, length))


def make_estimated(filename: str, estimate: int, position: int) -> EstimatedSegment:
    return EstimatedSegment(
        segment=FileDiffSegment(filename=filename, diff_content=filename),
        estimated_token_count=estimate,
        position=position,
    )


def make_measured(filename: str, tokens: int, position: int) -> MeasuredSegment:
    return MeasuredSegment(
        segment=FileDiffSegment(filename=filename, diff_content=filename),
        estimated_token_count=tokens,
        token_count=tokens,
        position=position,
    )


class ScriptedTokenCounter:
    """Counter returning preset counts per filename marker, or raising."""

    def __init__(self, counts: dict[str, int | Exception]) -> None:
        self.counts = counts

    async def __call__(self, text: str) -> int:
        for marker, value in self.counts.items():
            if f"a/{marker} " in text:
                if isinstance(value, Exception):
                    raise value
                return value
        raise AssertionError(f"Unexpected text: {text[:40]}")


@pytest.mark.unit
def test_token_budget_rejects_negative_values() -> None:
    with pytest.raises(ValueError):
        TokenBudget(running_token_count=-1, tokens_remaining=10)
    with pytest.raises(ValueError):
        TokenBudget(running_token_count=0, tokens_remaining=-5)


@pytest.mark.unit
def test_estimate_segments_sorts_ascending_and_keeps_ties_in_source_order() -> None:
    segments = [
        make_segment("big.py", 400),
        make_segment("tie_a.py", 70),
        make_segment("small.py", 40),
        make_segment("tie_b.py", 70),
    ]

    estimated = estimate_segments(segments)

    assert [item.segment.filename for item in estimated] == [
        "small.py",
        "tie_a.py",
        "tie_b.py",
        "big.py",
    ]
    assert [item.estimated_token_count for item in estimated] == [12, 20, 20, 115]
    assert [item.position for item in estimated] == [2, 1, 3, 0]


@pytest.mark.unit
def test_select_by_estimate_skips_without_stopping_the_scan() -> None:
    candidates = [
        make_estimated("fits.py", 4, 0),
        make_estimated("too_big.py", 10, 1),
        make_estimated("still_fits.py", 3, 2),
    ]
    budget = TokenBudget(running_token_count=2, tokens_remaining=10)

    accepted = select_by_estimate(candidates, budget)

    assert [item.segment.filename for item in accepted] == ["fits.py", "still_fits.py"]


@pytest.mark.unit
def test_select_by_estimate_seeds_running_total_with_committed_tokens() -> None:
    candidates = [make_estimated("a.py", 5, 0)]

    assert select_by_estimate(candidates, TokenBudget(running_token_count=5, tokens_remaining=10))
    assert not select_by_estimate(
        candidates, TokenBudget(running_token_count=6, tokens_remaining=10)
    )


@pytest.mark.unit
def test_evict_to_budget_drops_latest_accepted_first() -> None:
    measured = [
        make_measured("a.py", 4, 2),
        make_measured("b.py", 5, 0),
        make_measured("c.py", 6, 1),
    ]

    survivors = evict_to_budget(measured, TokenBudget(running_token_count=1, tokens_remaining=10))

    assert [item.segment.filename for item in survivors] == ["a.py", "b.py"]


@pytest.mark.unit
def test_evict_to_budget_can_empty_the_selection() -> None:
    measured = [make_measured("a.py", 50, 0)]

    assert evict_to_budget(measured, TokenBudget(running_token_count=0, tokens_remaining=10)) == ()


@pytest.mark.unit
def test_measure_segments_drops_failed_counts(
    caplog: pytest.LogCaptureFixture,
) -> None:
    segments = [
        make_segment("ok.py", 60),
        make_segment("broken.py", 60),
        make_segment("fine.py", 60),
    ]
    accepted = estimate_segments(segments)
    counter = ScriptedTokenCounter(
        {"ok.py": 7, "broken.py": RuntimeError("tokenizer"), "fine.py": 9}
    )

    with caplog.at_level(logging.WARNING, logger="pr_context.budget"):
        measured = asyncio.run(measure_segments(accepted, counter))

    assert [(item.segment.filename, item.token_count) for item in measured] == [
        ("ok.py", 7),
        ("fine.py", 9),
    ]
    assert "broken.py" in caplog.text


class BarrierTokenCounter:
    """Counter that only returns once every expected call has started."""

    def __init__(self, parties: int) -> None:
        self.parties = parties
        self.barrier: asyncio.Barrier | None = None

    async def __call__(self, text: str) -> int:
        if self.barrier is None:
            self.barrier = asyncio.Barrier(self.parties)
        await self.barrier.wait()
        return len(text)


@pytest.mark.unit
def test_measure_segments_runs_counts_concurrently() -> None:
    accepted = estimate_segments(
        [make_segment("a.py", 40), make_segment("b.py", 60), make_segment("c.py", 80)]
    )
    counter = BarrierTokenCounter(parties=len(accepted))

    async def _run() -> tuple[MeasuredSegment, ...]:
        return await asyncio.wait_for(measure_segments(accepted, counter), timeout=1)

    measured = asyncio.run(_run())

    assert [item.token_count for item in measured] == [40, 60, 80]


@pytest.mark.unit
def test_allocate_returns_none_when_committed_tokens_exceed_remaining(length_token_counter) -> None:
    segments = [make_segment("a.py", 30)]

    selected = asyncio.run(
        allocate_diff_budget(
            segments,
            TokenBudget(running_token_count=100, tokens_remaining=99),
            length_token_counter,
        )
    )

    assert selected is None
    assert length_token_counter.calls == []


@pytest.mark.unit
def test_allocate_prefers_small_files_under_scarce_budget(length_token_counter) -> None:
    segments = [
        make_segment("small.py", 50),
        make_segment("huge.py", 4000),
        make_segment("mid.py", 120),
    ]

    selected = asyncio.run(
        allocate_diff_budget(
            segments,
            TokenBudget(running_token_count=0, tokens_remaining=40),
            length_token_counter,
        )
    )

    assert selected is not None
    assert [segment.filename for segment in selected] == ["small.py"]
    assert len(length_token_counter.calls) == 1


@pytest.mark.unit
def test_allocate_evicts_by_exact_count_but_keeps_what_fits() -> None:
    segments = [make_segment("a.py", 35), make_segment("b.py", 70), make_segment("c.py", 105)]
    # Estimates are 10, 20 and 30; exact counts come out higher.
    counter = ScriptedTokenCounter({"a.py": 12, "b.py": 25, "c.py": 40})

    selected = asyncio.run(
        allocate_diff_budget(
            segments,
            TokenBudget(running_token_count=0, tokens_remaining=60),
            counter,
        )
    )

    assert selected is not None
    assert [segment.filename for segment in selected] == ["a.py", "b.py"]


@pytest.mark.unit
def test_allocate_returns_none_when_eviction_empties_selection() -> None:
    segments = [make_segment("a.py", 35)]
    counter = ScriptedTokenCounter({"a.py": 500})

    selected = asyncio.run(
        allocate_diff_budget(
            segments,
            TokenBudget(running_token_count=0, tokens_remaining=20),
            counter,
        )
    )

    assert selected is None


@pytest.mark.unit
def test_process_pull_request_diff_joins_survivors_in_source_order(length_token_counter) -> None:
    large = make_file_diff("large.py", 300)
    small = make_file_diff("small.py", 60)
    medium = make_file_diff("medium.py", 150)
    raw_diff = "\n".join([large, small, medium]) + "\n"

    result = asyncio.run(
        process_pull_request_diff(
            raw_diff,
            TokenBudget(running_token_count=0, tokens_remaining=1000),
            length_token_counter,
        )
    )

    assert result == DiffResult(diff="\n".join([large, small, medium]))


@pytest.mark.unit
def test_process_pull_request_diff_scenario_three_files(length_token_counter) -> None:
    files = [
        make_file_diff("first.py", 50),
        make_file_diff("second.py", 4000),
        make_file_diff("third.py", 120),
    ]

    result = asyncio.run(
        process_pull_request_diff(
            "\n".join(files),
            TokenBudget(running_token_count=0, tokens_remaining=40),
            length_token_counter,
        )
    )

    assert result.diff is not None
    assert files[0] in result.diff
    assert "second.py" not in result.diff


@pytest.mark.unit
def test_process_pull_request_diff_is_deterministic(length_token_counter) -> None:
    raw_diff = "\n".join(
        make_file_diff(f"file_{index}.py", length)
        for index, length in enumerate([90, 40, 300, 40, 150, 75])
    )
    budget = TokenBudget(running_token_count=10, tokens_remaining=100)

    first = asyncio.run(process_pull_request_diff(raw_diff, budget, length_token_counter))
    second = asyncio.run(process_pull_request_diff(raw_diff, budget, length_token_counter))

    assert first == second
    assert first.diff is not None


@pytest.mark.unit
def test_process_pull_request_diff_more_budget_never_includes_fewer_files(
    length_token_counter,
) -> None:
    raw_diff = "\n".join(
        make_file_diff(f"file_{index}.py", length)
        for index, length in enumerate([90, 40, 300, 40, 150, 75, 600])
    )

    included_counts: list[int] = []
    for tokens_remaining in range(0, 500, 10):
        result = asyncio.run(
            process_pull_request_diff(
                raw_diff,
                TokenBudget(running_token_count=5, tokens_remaining=tokens_remaining),
                length_token_counter,
            )
        )
        included_counts.append(0 if result.diff is None else result.diff.count("diff --git "))

    assert included_counts == sorted(included_counts)
    assert included_counts[-1] == 7


@pytest.mark.unit
def test_process_pull_request_diff_empty_diff_returns_none(length_token_counter) -> None:
    result = asyncio.run(
        process_pull_request_diff(
            "",
            TokenBudget(running_token_count=0, tokens_remaining=1000),
            length_token_counter,
        )
    )

    assert result == DiffResult(diff=None)


@pytest.mark.unit
def test_process_pull_request_diff_only_non_essential_files_returns_none(
    length_token_counter,
) -> None:
    raw_diff = "\n".join(
        [make_file_diff("assets/logo.png", 80), make_file_diff("package-lock.lock", 80)]
    )

    result = asyncio.run(
        process_pull_request_diff(
            raw_diff,
            TokenBudget(running_token_count=0, tokens_remaining=1000),
            length_token_counter,
        )
    )

    assert result.diff is None
    assert length_token_counter.calls == []


@pytest.mark.unit
def test_fetch_pull_request_details_returns_none_on_transport_failure(length_token_counter) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=502)

    async def _run() -> DiffResult:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(
            base_url="https://api.github.com", transport=transport
        ) as client:
            return await fetch_pull_request_details(
                client=client,
                repo_full_name="acme/rocket",
                pr_number=42,
                budget=TokenBudget(running_token_count=0, tokens_remaining=1000),
                token_counter=length_token_counter,
            )

    assert asyncio.run(_run()) == DiffResult(diff=None)


@pytest.mark.unit
def test_fetch_pull_request_details_budgets_fetched_diff(length_token_counter) -> None:
    raw_diff = make_file_diff("src/app.py", 90) + "\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Accept"] == "application/vnd.github.diff"
        return httpx.Response(status_code=200, text=raw_diff)

    async def _run() -> DiffResult:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(
            base_url="https://api.github.com", transport=transport
        ) as client:
            return await fetch_pull_request_details(
                client=client,
                repo_full_name="acme/rocket",
                pr_number=42,
                budget=TokenBudget(running_token_count=0, tokens_remaining=1000),
                token_counter=length_token_counter,
            )

    assert asyncio.run(_run()) == DiffResult(diff=raw_diff.strip())
