from datetime import datetime, timezone

import pytest

from intake.models import EventKind, PrState, PullRequestEvent
from intake.redis_client import InMemoryKeyValueStore, StorageError


class RecordingStore(InMemoryKeyValueStore):
    """In-memory store that records writes and can be told to fail per key"""

    def __init__(self):
        super().__init__()
        self.fail_reads = set()
        self.fail_writes = set()
        self.writes = []

    async def get(self, key):
        if key in self.fail_reads:
            raise StorageError(f"read failed for {key}")
        return await super().get(key)

    async def set(self, key, value):
        if key in self.fail_writes:
            raise StorageError(f"write failed for {key}")
        self.writes.append(key)
        await super().set(key, value)

    async def delete(self, key):
        if key in self.fail_writes:
            raise StorageError(f"delete failed for {key}")
        await super().delete(key)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def make_event():
    def _make(**overrides):
        fields = dict(
            event_kind=EventKind.UPDATED,
            pr_id=7,
            title="Tighten session handling",
            author="user-1",
            repo_id="{repo-1}",
            workspace_id="{ws-1}",
            state=PrState.OPEN,
            source_branch="feature/session",
            destination_branch="main",
            source_commit_hash="c0ffee",
            reviewers=["reviewer-1"],
            timestamp=datetime(2024, 6, 12, 14, 0, tzinfo=timezone.utc),
            opened_at=datetime(2024, 6, 12, 9, 0, tzinfo=timezone.utc),
        )
        fields.update(overrides)
        return PullRequestEvent(**fields)
    return _make
