from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from intake.analysis import DiffStat, FileChange, ScoringConfig
from intake.analysis_state import AnalysisStateGate
from intake.bitbucket import CommentUpdate
from intake.pipeline import PipelineStatus, RiskPipeline
from intake.pr_storage import PrStorage
from intake.redis_client import InMemoryKeyValueStore

NOW = datetime(2024, 6, 17, 12, 0, tzinfo=timezone.utc)
PR_KEY = "PR:ws-1:repo-1:42"

RISKY_DIFF = DiffStat([
    FileChange("src/core/auth.ts", lines_added=150, lines_removed=40),
    FileChange("src/infra/database.ts", lines_added=75, lines_removed=20),
])
SAFE_DIFF = DiffStat([
    FileChange("src/utils.ts", lines_added=10, lines_removed=3),
    FileChange("src/utils.test.ts", lines_added=8, lines_removed=2),
])


def payload(event_type="avi:bitbucket:created:pullrequest", commit="abc123", state="OPEN", **extra):
    body = {
        "timestamp": "2024-06-15T22:00:00Z",
        "eventType": event_type,
        "actor": {"accountId": "user-123"},
        "repository": {"uuid": "{repo-1}"},
        "workspace": {"uuid": "{ws-1}"},
        "pullrequest": {
            "id": 42,
            "title": "Rework auth tokens",
            "state": state,
            "source": {"branch": {"name": "feature/auth"}, "commit": {"hash": commit}},
            "destination": {"branch": "main"},
            "reviewers": [{"accountId": "reviewer-1"}],
            "created_on": "2024-06-15T20:00:00Z",
        },
    }
    body["pullrequest"].update(extra)
    return body


@pytest.fixture
def client():
    client = AsyncMock()
    client.fetch_diffstat.return_value = RISKY_DIFF
    client.create_comment.return_value = "9001"
    client.update_comment.return_value = CommentUpdate.UPDATED
    return client


@pytest.fixture
def storage(store):
    return PrStorage(store)


@pytest.fixture
def gate(store):
    return AnalysisStateGate(store)


@pytest.fixture
def pipeline(gate, storage, client):
    return RiskPipeline(gate, storage, client, ScoringConfig(), clock=lambda: NOW)


@pytest.mark.asyncio
async def test_full_analysis_saves_and_comments(pipeline, storage, gate, client, store):
    result = await pipeline.handle_event(payload(), correlation_id="corr-1")

    assert result.status == PipelineStatus.ANALYZED
    assert result.correlation_id == "corr-1"
    assert result.pr_key == PR_KEY
    assert result.color == "red"
    assert result.comment_action == "created"

    snapshot = await storage.get(PR_KEY)
    assert snapshot.risk.score == result.score
    assert snapshot.diff.critical_paths == ["core", "infra"]
    assert snapshot.last_analyzed_at == NOW
    assert snapshot.comment_id == "9001"
    assert snapshot.comment_fingerprint
    assert (await gate.get("{repo-1}", 42)).last_source_commit_hash == "abc123"
    assert await store.get("PR_INDEX:byRisk:ws-1:repo-1:red") == [PR_KEY]

    client.fetch_diffstat.assert_awaited_once()
    args = client.create_comment.await_args.args
    assert args[:3] == ("{ws-1}", "{repo-1}", 42)
    assert "Critical Files Modified" in args[3]


@pytest.mark.asyncio
async def test_replayed_delivery_is_a_no_op(pipeline, client, store):
    await pipeline.handle_event(payload())
    writes = list(store.writes)
    client.reset_mock()

    result = await pipeline.handle_event(payload())

    assert result.status == PipelineStatus.SKIPPED
    assert result.reason == "unchanged_commit"
    assert store.writes == writes
    client.fetch_diffstat.assert_not_called()
    client.create_comment.assert_not_called()
    client.update_comment.assert_not_called()


@pytest.mark.asyncio
async def test_new_commit_with_same_result_skips_comment(pipeline, client):
    await pipeline.handle_event(payload(commit="abc123"))
    client.reset_mock()

    result = await pipeline.handle_event(payload(event_type="avi:bitbucket:updated:pullrequest", commit="def456"))

    assert result.status == PipelineStatus.ANALYZED
    assert result.comment_action == "skipped"
    client.fetch_diffstat.assert_awaited_once()
    client.update_comment.assert_not_called()
    client.create_comment.assert_not_called()


@pytest.mark.asyncio
async def test_changed_result_updates_comment_and_moves_partition(pipeline, client, storage, store):
    await pipeline.handle_event(payload(commit="abc123"))
    client.fetch_diffstat.return_value = SAFE_DIFF

    result = await pipeline.handle_event(payload(event_type="avi:bitbucket:updated:pullrequest", commit="def456"))

    assert result.comment_action == "updated"
    assert client.update_comment.await_args.args[3] == "9001"
    assert await store.get("PR_INDEX:byRisk:ws-1:repo-1:red") == []
    assert await store.get(f"PR_INDEX:byRisk:ws-1:repo-1:{result.color}") == [PR_KEY]
    snapshot = await storage.get(PR_KEY)
    assert snapshot.comment_fingerprint != ""


@pytest.mark.asyncio
async def test_deleted_comment_is_recreated(pipeline, client, storage):
    await pipeline.handle_event(payload(commit="abc123"))
    client.fetch_diffstat.return_value = SAFE_DIFF
    client.update_comment.return_value = CommentUpdate.NOT_FOUND
    client.create_comment.return_value = "9002"

    result = await pipeline.handle_event(payload(commit="def456"))

    assert result.comment_action == "recreated"
    assert (await storage.get(PR_KEY)).comment_id == "9002"


@pytest.mark.asyncio
async def test_failed_comment_keeps_old_fingerprint(pipeline, client, storage):
    await pipeline.handle_event(payload(commit="abc123"))
    first_fingerprint = (await storage.get(PR_KEY)).comment_fingerprint
    client.fetch_diffstat.return_value = SAFE_DIFF
    client.update_comment.return_value = None

    result = await pipeline.handle_event(payload(commit="def456"))

    assert result.comment_action == "failed"
    assert (await storage.get(PR_KEY)).comment_fingerprint == first_fingerprint


@pytest.mark.asyncio
async def test_diff_failure_saves_unscored_and_retries_next_time(pipeline, client, storage, gate):
    client.fetch_diffstat.return_value = None

    result = await pipeline.handle_event(payload())

    assert result.status == PipelineStatus.UNSCORED
    assert result.saved is True
    snapshot = await storage.get(PR_KEY)
    assert snapshot.risk is None
    assert snapshot.last_analyzed_at is None
    assert await gate.get("{repo-1}", 42) is None
    client.create_comment.assert_not_called()

    client.fetch_diffstat.return_value = RISKY_DIFF
    retry = await pipeline.handle_event(payload())
    assert retry.status == PipelineStatus.ANALYZED


@pytest.mark.asyncio
async def test_closing_event_clears_gate_and_saves(pipeline, client, storage, gate, store):
    await pipeline.handle_event(payload())
    client.reset_mock()

    result = await pipeline.handle_event(payload(event_type="avi:bitbucket:fulfilled:pullrequest", state="MERGED"))

    assert result.status == PipelineStatus.CLOSED
    assert await gate.get("{repo-1}", 42) is None
    snapshot = await storage.get(PR_KEY)
    assert snapshot.state.value == "merged"
    assert snapshot.merged_at is not None
    assert snapshot.risk is not None
    assert await store.get("PR_INDEX:open:ws-1:repo-1") == []
    client.fetch_diffstat.assert_not_called()
    client.create_comment.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_payload_has_no_side_effects(pipeline, client, store):
    result = await pipeline.handle_event({"eventType": "avi:bitbucket:created:pullrequest"})

    assert result.status == PipelineStatus.REJECTED
    assert store.writes == []
    client.fetch_diffstat.assert_not_called()


@pytest.mark.asyncio
async def test_missing_commit_hash_is_skipped(pipeline, client, store):
    body = payload()
    body["pullrequest"]["source"].pop("commit")

    result = await pipeline.handle_event(body)

    assert result.status == PipelineStatus.SKIPPED
    assert result.reason == "no_source_commit"
    assert store.writes == []


@pytest.mark.asyncio
async def test_missing_workspace_saves_without_scoring(pipeline, client, storage):
    body = payload()
    body.pop("workspace")

    result = await pipeline.handle_event(body)

    assert result.status == PipelineStatus.UNSCORED
    assert result.pr_key == "PR:default:repo-1:42"
    client.fetch_diffstat.assert_not_called()


@pytest.mark.asyncio
async def test_comments_can_be_disabled(gate, storage, client):
    pipeline = RiskPipeline(gate, storage, client, ScoringConfig(), post_comments=False, clock=lambda: NOW)

    result = await pipeline.handle_event(payload())

    assert result.status == PipelineStatus.ANALYZED
    assert result.comment_action is None
    client.create_comment.assert_not_called()


@pytest.mark.asyncio
async def test_storage_failure_does_not_raise(pipeline, client, store):
    store.fail_reads.add(PR_KEY)

    result = await pipeline.handle_event(payload())

    assert result.status == PipelineStatus.ANALYZED
    assert result.saved is False
    assert result.comment_action is None
    client.create_comment.assert_not_called()


@pytest.mark.asyncio
async def test_score_does_not_depend_on_processing_time(client):
    body = payload(reviewers=[], created_on="2024-06-12T14:00:00Z")
    body["timestamp"] = "2024-06-12T14:00:00Z"
    submitted = datetime(2024, 6, 12, 14, 0, tzinfo=timezone.utc)

    snapshots = []
    for delay in (timedelta(minutes=1), timedelta(hours=5)):
        store = InMemoryKeyValueStore()
        storage = PrStorage(store)
        pipeline = RiskPipeline(AnalysisStateGate(store), storage, client, ScoringConfig(), clock=lambda: submitted + delay)
        assert (await pipeline.handle_event(body)).status == PipelineStatus.ANALYZED
        snapshots.append(await storage.get(PR_KEY))

    early, late = snapshots
    assert early.risk.score == late.risk.score
    assert early.risk.factors == late.risk.factors
    assert any(f.startswith("Reviewers pending") for f in late.risk.factors)
    assert late.last_analyzed_at == submitted + timedelta(hours=5)
