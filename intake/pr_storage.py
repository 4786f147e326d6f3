import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from .analysis.models import DiffMetrics, DiffStat, RiskAssessment, RiskColor
from .analysis.process_analyzer import as_utc
from .models import (
    DiffSummary, PrState, PullRequestEvent, RiskSummary,
    StatusFlags, StoredPullRequest, TelemetryCounts
)
from .redis_client import KeyValueStore, StorageError, clean_id

logger = logging.getLogger(__name__)

INDEX_BY_REPO = "byRepo"
INDEX_OPEN = "open"
INDEX_BY_RISK = "byRisk"

# Used in keys when a delivery carries no workspace
DEFAULT_WORKSPACE = "default"


def build_pr_key(workspace_id: Optional[str], repo_id: str, pr_id: int) -> str:
    workspace = clean_id(workspace_id) if workspace_id else DEFAULT_WORKSPACE
    return f"PR:{workspace}:{clean_id(repo_id)}:{pr_id}"


def build_index_key(
    index: str,
    workspace_id: Optional[str],
    repo_id: str,
    color: Optional[str] = None,
) -> str:
    workspace = clean_id(workspace_id) if workspace_id else DEFAULT_WORKSPACE
    key = f"PR_INDEX:{index}:{workspace}:{clean_id(repo_id)}"
    return f"{key}:{color}" if color else key


def summarize_diff(diff_stat: DiffStat, metrics: DiffMetrics) -> DiffSummary:
    test_files = metrics.test_files
    return DiffSummary(
        files_changed=len(diff_stat.files),
        lines_added=diff_stat.lines_added,
        lines_removed=diff_stat.lines_removed,
        lines_changed=diff_stat.lines_added + diff_stat.lines_removed,
        critical_files_touched=metrics.critical_files > 0,
        critical_paths=list(metrics.critical_paths),
        tests_touched=test_files > 0,
        test_files_changed=test_files,
        non_test_files_changed=metrics.total_files - test_files,
    )


def summarize_risk(assessment: RiskAssessment, version: str = "v2") -> RiskSummary:
    return RiskSummary(
        score=assessment.score,
        color=assessment.color.value,
        factors=list(assessment.factors),
        size_category=assessment.size_category.value if assessment.size_category else None,
        version=version,
    )


class PrStorage:
    """
    PR snapshots plus three hand-maintained index families per repository:

        PR_INDEX:byRepo:{workspace}:{repo}          every PR key seen
        PR_INDEX:open:{workspace}:{repo}            PRs currently open
        PR_INDEX:byRisk:{workspace}:{repo}:{color}  one set per risk color

    The backing store has no transactions, so every index change is an
    idempotent read-modify-write on a JSON list of keys. Replaying the
    same save never duplicates or drops an entry.
    """

    def __init__(self, store: KeyValueStore, stale_after_hours: int = 72, red_below: int = 50):
        self.store = store
        self.stale_after_hours = stale_after_hours
        self.red_below = red_below

    # ----------------------
    # Snapshots
    # ----------------------

    async def _load(self, key: str) -> Optional[StoredPullRequest]:
        """Returns None for missing snapshots; raises StorageError for unreadable or malformed ones"""
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return StoredPullRequest.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Malformed snapshot {key}: {e.error_count()} errors")
            raise StorageError(f"malformed snapshot {key}") from e

    async def get(self, key: str) -> Optional[StoredPullRequest]:
        try:
            return await self._load(key)
        except StorageError as e:
            logger.error(f"Failed to read snapshot {key}: {e}")
            return None

    async def get_pr(self, workspace_id: Optional[str], repo_id: str, pr_id: int) -> Optional[StoredPullRequest]:
        return await self.get(build_pr_key(workspace_id, repo_id, pr_id))

    async def get_many(self, keys: List[str]) -> List[StoredPullRequest]:
        """Missing or unreadable keys are left out of the result"""
        found = []
        for key in keys:
            snapshot = await self.get(key)
            if snapshot is not None:
                found.append(snapshot)
        return found

    def _build_snapshot(
        self,
        key: str,
        event: PullRequestEvent,
        existing: Optional[StoredPullRequest],
        diff: Optional[DiffSummary],
        risk: Optional[RiskSummary],
        now: datetime,
    ) -> StoredPullRequest:
        if existing:
            created_at = existing.created_at
            updated_at = max(existing.updated_at, now)
        else:
            created_at = as_utc(event.opened_at or event.timestamp)
            updated_at = now

        last_analyzed_at = existing.last_analyzed_at if existing else None
        if risk is not None:
            last_analyzed_at = max(last_analyzed_at, now) if last_analyzed_at else now

        merged_at = existing.merged_at if existing else None
        closed_at = existing.closed_at if existing else None
        if event.state == PrState.MERGED and merged_at is None:
            merged_at = as_utc(event.timestamp)
        if event.state in (PrState.MERGED, PrState.DECLINED) and closed_at is None:
            closed_at = as_utc(event.timestamp)

        diff = diff or (existing.diff if existing else DiffSummary())
        risk = risk or (existing.risk if existing else None)

        age_end = closed_at or now
        age_hours = max(0, int((age_end - created_at).total_seconds() // 3600))

        flags = StatusFlags(
            is_high_risk=bool(risk and risk.score < self.red_below),
            is_stale=event.state == PrState.OPEN and age_hours > self.stale_after_hours,
            is_blocked=existing.status_flags.is_blocked if existing else False,
        )

        return StoredPullRequest(
            key=key,
            workspace_id=clean_id(event.workspace_id) if event.workspace_id else DEFAULT_WORKSPACE,
            repo_id=clean_id(event.repo_id),
            pr_id=event.pr_id,
            title=event.title or (existing.title if existing else ""),
            author=event.author,
            state=event.state,
            source_branch=event.source_branch,
            destination_branch=event.destination_branch,
            source_commit_hash=event.source_commit_hash or (existing.source_commit_hash if existing else None),
            created_at=created_at,
            updated_at=updated_at,
            last_analyzed_at=last_analyzed_at,
            merged_at=merged_at,
            closed_at=closed_at,
            diff=diff,
            risk=risk,
            status_flags=flags,
            age_hours=age_hours,
            comment_id=existing.comment_id if existing else None,
            comment_fingerprint=existing.comment_fingerprint if existing else None,
            comment_last_posted_at=existing.comment_last_posted_at if existing else None,
        )

    async def save(
        self,
        event: PullRequestEvent,
        diff: Optional[DiffSummary] = None,
        risk: Optional[RiskSummary] = None,
        now: Optional[datetime] = None,
    ) -> Optional[StoredPullRequest]:
        """
        Upsert the snapshot for this event and bring the indexes in line.

        diff / risk are None when no scoring pass ran this cycle; the
        previous values are carried over. Returns the written snapshot, or
        None when the snapshot could not be read or written.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        key = build_pr_key(event.workspace_id, event.repo_id, event.pr_id)

        try:
            existing = await self._load(key)
        except StorageError as e:
            # never overwrite a snapshot we could not read
            logger.error(f"Not saving {key}, previous snapshot unreadable: {e}")
            return None

        snapshot = self._build_snapshot(key, event, existing, diff, risk, now)

        try:
            await self.store.set(key, snapshot.model_dump(mode="json"))
        except StorageError as e:
            logger.error(f"Failed to write snapshot {key}: {e}")
            return None

        if not await self._update_indexes(snapshot, existing):
            logger.warning(f"Snapshot {key} saved but some index updates failed")

        logger.info(
            f"Saved {key} state={snapshot.state.value} "
            f"risk={snapshot.risk.score if snapshot.risk else 'n/a'}/{snapshot.risk_color or 'none'}"
        )
        return snapshot

    async def record_comment(
        self,
        key: str,
        comment_id: str,
        fingerprint: str,
        posted_at: Optional[datetime] = None,
    ) -> bool:
        """Targeted update of the comment tracking fields only"""
        try:
            snapshot = await self._load(key)
        except StorageError as e:
            logger.error(f"Failed to read {key} for comment tracking: {e}")
            return False
        if snapshot is None:
            logger.warning(f"Cannot record comment for missing snapshot {key}")
            return False

        snapshot.comment_id = comment_id
        snapshot.comment_fingerprint = fingerprint
        snapshot.comment_last_posted_at = posted_at or datetime.now(timezone.utc)

        try:
            await self.store.set(key, snapshot.model_dump(mode="json"))
        except StorageError as e:
            logger.error(f"Failed to record comment for {key}: {e}")
            return False
        return True

    async def delete(self, workspace_id: Optional[str], repo_id: str, pr_id: int) -> bool:
        """Remove the snapshot and drop its key from every index"""
        key = build_pr_key(workspace_id, repo_id, pr_id)
        ok = True
        try:
            await self.store.delete(key)
        except StorageError as e:
            logger.error(f"Failed to delete snapshot {key}: {e}")
            ok = False

        index_keys = [
            build_index_key(INDEX_BY_REPO, workspace_id, repo_id),
            build_index_key(INDEX_OPEN, workspace_id, repo_id),
        ] + [build_index_key(INDEX_BY_RISK, workspace_id, repo_id, color.value) for color in RiskColor]

        for index_key in index_keys:
            ok = await self._remove_from_index(index_key, key) and ok

        logger.info(f"Deleted {key}")
        return ok

    # ----------------------
    # Indexes
    # ----------------------

    async def _read_index(self, index_key: str) -> List[str]:
        """Raises StorageError so callers can refuse to write over an unread index"""
        raw = await self.store.get(index_key)
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, str)]

    async def _add_to_index(self, index_key: str, pr_key: str) -> bool:
        try:
            members = await self._read_index(index_key)
        except StorageError as e:
            logger.error(f"Skipping add to {index_key}, read failed: {e}")
            return False
        if pr_key in members:
            return True
        members.append(pr_key)
        try:
            await self.store.set(index_key, members)
        except StorageError as e:
            logger.error(f"Failed to add {pr_key} to {index_key}: {e}")
            return False
        return True

    async def _remove_from_index(self, index_key: str, pr_key: str) -> bool:
        try:
            members = await self._read_index(index_key)
        except StorageError as e:
            logger.error(f"Skipping removal from {index_key}, read failed: {e}")
            return False
        if pr_key not in members:
            return True
        try:
            await self.store.set(index_key, [m for m in members if m != pr_key])
        except StorageError as e:
            logger.error(f"Failed to remove {pr_key} from {index_key}: {e}")
            return False
        return True

    async def _update_indexes(self, snapshot: StoredPullRequest, existing: Optional[StoredPullRequest]) -> bool:
        ws, repo, key = snapshot.workspace_id, snapshot.repo_id, snapshot.key
        ok = await self._add_to_index(build_index_key(INDEX_BY_REPO, ws, repo), key)

        open_key = build_index_key(INDEX_OPEN, ws, repo)
        if snapshot.state == PrState.OPEN:
            ok = await self._add_to_index(open_key, key) and ok
        else:
            ok = await self._remove_from_index(open_key, key) and ok

        old_color = existing.risk_color if existing else None
        new_color = snapshot.risk_color
        if existing is None or old_color != new_color:
            if old_color:
                ok = await self._remove_from_index(build_index_key(INDEX_BY_RISK, ws, repo, old_color), key) and ok
            if new_color:
                ok = await self._add_to_index(build_index_key(INDEX_BY_RISK, ws, repo, new_color), key) and ok
            if old_color != new_color:
                logger.debug(f"{key} risk color {old_color} -> {new_color}")

        return ok

    async def get_index(self, index: str, workspace_id: Optional[str], repo_id: str, color: Optional[str] = None) -> List[str]:
        index_key = build_index_key(index, workspace_id, repo_id, color)
        try:
            return await self._read_index(index_key)
        except StorageError as e:
            logger.error(f"Failed to read index {index_key}: {e}")
            return []

    # ----------------------
    # Queries
    # ----------------------

    async def get_telemetry_counts(self, workspace_id: Optional[str], repo_id: str) -> TelemetryCounts:
        """Counts come from the indexes only, no snapshot reads"""
        counts = {
            color.value: len(await self.get_index(INDEX_BY_RISK, workspace_id, repo_id, color.value))
            for color in RiskColor
        }
        return TelemetryCounts(
            total=len(await self.get_index(INDEX_BY_REPO, workspace_id, repo_id)),
            open=len(await self.get_index(INDEX_OPEN, workspace_id, repo_id)),
            **counts,
        )

    async def list_for_repo(self, workspace_id: Optional[str], repo_id: str, limit: int = 50) -> List[StoredPullRequest]:
        keys = await self.get_index(INDEX_BY_REPO, workspace_id, repo_id)
        return await self.get_many(keys[:limit])

    async def get_open(self, workspace_id: Optional[str], repo_id: str, limit: int = 50) -> List[StoredPullRequest]:
        keys = await self.get_index(INDEX_OPEN, workspace_id, repo_id)
        return await self.get_many(keys[:limit])

    async def get_by_risk(
        self,
        workspace_id: Optional[str],
        repo_id: str,
        color: RiskColor,
        limit: int = 50,
    ) -> List[StoredPullRequest]:
        keys = await self.get_index(INDEX_BY_RISK, workspace_id, repo_id, RiskColor(color).value)
        return await self.get_many(keys[:limit])

    async def get_high_risk(self, workspace_id: Optional[str], repo_id: str, limit: int = 50) -> List[StoredPullRequest]:
        return await self.get_by_risk(workspace_id, repo_id, RiskColor.RED, limit)
