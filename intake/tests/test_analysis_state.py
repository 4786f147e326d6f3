from datetime import datetime, timezone

import pytest

from intake.analysis_state import AnalysisStateGate, build_state_key
from intake.models import EventKind


@pytest.fixture
def gate(store):
    return AnalysisStateGate(store)


def test_state_key_strips_braces():
    assert build_state_key("{repo-1}", 7) == "pr-analysis:repo-1:7"


@pytest.mark.asyncio
async def test_first_analysis_proceeds(gate):
    decision = await gate.should_analyze("{repo-1}", 7, "abc")

    assert decision.proceed is True
    assert decision.reason == "first_analysis"
    assert decision.previous is None


@pytest.mark.asyncio
async def test_same_commit_is_skipped_without_writes(gate, store):
    await gate.record("{repo-1}", 7, "abc", analyzed_at=datetime(2024, 6, 1, tzinfo=timezone.utc))
    writes_before = list(store.writes)

    decision = await gate.should_analyze("{repo-1}", 7, "abc")

    assert decision.proceed is False
    assert decision.reason == "unchanged_commit"
    assert decision.previous.last_source_commit_hash == "abc"
    assert store.writes == writes_before


@pytest.mark.asyncio
async def test_new_commit_proceeds_with_previous_state(gate):
    await gate.record("{repo-1}", 7, "abc")

    decision = await gate.should_analyze("{repo-1}", 7, "def")

    assert decision.proceed is True
    assert decision.reason == "new_commit"
    assert decision.previous.last_source_commit_hash == "abc"


@pytest.mark.asyncio
async def test_should_analyze_does_not_record(gate):
    await gate.should_analyze("{repo-1}", 7, "abc")

    assert await gate.get("{repo-1}", 7) is None


@pytest.mark.asyncio
async def test_missing_commit_hash_is_skipped(gate):
    decision = await gate.should_analyze("{repo-1}", 7, None)

    assert decision.proceed is False
    assert decision.reason == "no_source_commit"


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [EventKind.MERGED, EventKind.REJECTED])
async def test_closing_event_clears_state(gate, kind):
    await gate.record("{repo-1}", 7, "abc")

    decision = await gate.should_analyze("{repo-1}", 7, "abc", event_kind=kind)

    assert decision.proceed is False
    assert decision.reason == "pr_closed"
    assert await gate.get("{repo-1}", 7) is None


@pytest.mark.asyncio
async def test_record_round_trip(gate):
    analyzed_at = datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)
    assert await gate.record("{repo-1}", 7, "abc", analyzed_at=analyzed_at) is True

    state = await gate.get("{repo-1}", 7)

    assert state.last_source_commit_hash == "abc"
    assert state.last_analyzed_at == analyzed_at


@pytest.mark.asyncio
async def test_unreadable_state_fails_open(gate, store):
    store.fail_reads.add("pr-analysis:repo-1:7")

    decision = await gate.should_analyze("{repo-1}", 7, "abc")

    assert decision.proceed is True
    assert decision.reason == "state_unavailable"


@pytest.mark.asyncio
async def test_write_failure_reported(gate, store):
    store.fail_writes.add("pr-analysis:repo-1:7")

    assert await gate.record("{repo-1}", 7, "abc") is False
    assert await gate.clear("{repo-1}", 7) is False


@pytest.mark.asyncio
async def test_malformed_state_is_ignored(gate, store):
    await store.set("pr-analysis:repo-1:7", {"unexpected": True})

    assert await gate.get("{repo-1}", 7) is None
