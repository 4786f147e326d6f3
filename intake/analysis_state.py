import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from .models import AnalysisState, EventKind, GateDecision
from .redis_client import KeyValueStore, StorageError, clean_id

logger = logging.getLogger(__name__)


def build_state_key(repo_id: str, pr_id: int) -> str:
    return f"pr-analysis:{clean_id(repo_id)}:{pr_id}"


class AnalysisStateGate:
    """
    Remembers the last analyzed source commit per PR so replays and
    metadata-only updates don't trigger a second scoring pass.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get(self, repo_id: str, pr_id: int) -> Optional[AnalysisState]:
        key = build_state_key(repo_id, pr_id)
        try:
            raw = await self.store.get(key)
        except StorageError as e:
            logger.error(f"Failed to read analysis state {key}: {e}")
            raise
        if raw is None:
            return None
        try:
            return AnalysisState.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed analysis state {key}: {e.error_count()} errors")
            return None

    async def should_analyze(
        self,
        repo_id: str,
        pr_id: int,
        source_commit_hash: Optional[str],
        event_kind: EventKind = EventKind.UPDATED,
    ) -> GateDecision:
        if event_kind.closes_pr:
            await self.clear(repo_id, pr_id)
            return GateDecision(proceed=False, reason="pr_closed")

        if not source_commit_hash:
            return GateDecision(proceed=False, reason="no_source_commit")

        try:
            previous = await self.get(repo_id, pr_id)
        except StorageError:
            # fail open
            return GateDecision(proceed=True, reason="state_unavailable")

        if previous and previous.last_source_commit_hash == source_commit_hash:
            logger.info(f"PR {repo_id}#{pr_id} already analyzed at {source_commit_hash[:12]}, skipping")
            return GateDecision(proceed=False, reason="unchanged_commit", previous=previous)

        return GateDecision(
            proceed=True,
            reason="new_commit" if previous else "first_analysis",
            previous=previous,
        )

    async def record(
        self,
        repo_id: str,
        pr_id: int,
        source_commit_hash: str,
        analyzed_at: Optional[datetime] = None,
    ) -> bool:
        """Store the commit that was just scored. Returns False if the write failed"""
        state = AnalysisState(
            last_source_commit_hash=source_commit_hash,
            last_analyzed_at=analyzed_at or datetime.now(timezone.utc),
        )
        key = build_state_key(repo_id, pr_id)
        try:
            await self.store.set(key, state.model_dump(mode="json"))
        except StorageError as e:
            logger.error(f"Failed to record analysis state {key}: {e}")
            return False
        return True

    async def clear(self, repo_id: str, pr_id: int) -> bool:
        key = build_state_key(repo_id, pr_id)
        try:
            await self.store.delete(key)
        except StorageError as e:
            logger.error(f"Failed to clear analysis state {key}: {e}")
            return False
        logger.debug(f"Cleared analysis state {key}")
        return True
