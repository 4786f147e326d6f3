import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from outbound.comments import compute_comment_fingerprint, format_risk_comment, reconcile_comment

from .analysis import ScoringConfig, analyze_files, build_profile, calculate_risk
from .analysis_state import AnalysisStateGate
from .bitbucket import BitbucketClient
from .log_context import PipelineLogAdapter, get_event_logger, new_correlation_id
from .models import DiffSummary, PullRequestEvent, RiskSummary, StoredPullRequest
from .normalizer import normalize_event
from .pr_storage import PrStorage, summarize_diff, summarize_risk

logger = logging.getLogger(__name__)


class PipelineStatus(str, Enum):
    REJECTED = "rejected"    # payload failed validation
    CLOSED = "closed"        # merged/declined, snapshot saved without scoring
    SKIPPED = "skipped"      # nothing new to score
    UNSCORED = "unscored"    # analysis wanted but diff stats unavailable
    ANALYZED = "analyzed"


@dataclass
class PipelineResult:
    status: PipelineStatus
    correlation_id: str
    reason: str = ""
    pr_key: Optional[str] = None
    score: Optional[int] = None
    color: Optional[str] = None
    saved: bool = False
    comment_action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "correlation_id": self.correlation_id,
            "reason": self.reason,
            "pr_key": self.pr_key,
            "score": self.score,
            "color": self.color,
            "saved": self.saved,
            "comment_action": self.comment_action,
        }


class RiskPipeline:
    """
    One webhook delivery, start to finish:

        normalize -> gate -> diffstat -> analyze -> score
                  -> record gate -> save snapshot -> reconcile comment

    Every remote or storage failure degrades to skipping that step; no
    exception escapes handle_event.
    """

    def __init__(
        self,
        gate: AnalysisStateGate,
        storage: PrStorage,
        client: Optional[BitbucketClient],
        scoring_config: ScoringConfig,
        post_comments: bool = True,
        risk_model_version: str = "v2",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gate = gate
        self.storage = storage
        self.client = client
        self.scoring_config = scoring_config
        self.post_comments = post_comments
        self.risk_model_version = risk_model_version
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle_event(self, payload: Any, correlation_id: Optional[str] = None) -> PipelineResult:
        correlation_id = correlation_id or new_correlation_id()

        event = await normalize_event(payload, client=self.client, correlation_id=correlation_id)
        if event is None:
            return PipelineResult(PipelineStatus.REJECTED, correlation_id, reason="invalid_payload")

        log = get_event_logger(__name__, repo_id=event.repo_id, pr_id=event.pr_id, correlation_id=correlation_id)
        now = self.clock()

        decision = await self.gate.should_analyze(
            event.repo_id, event.pr_id, event.source_commit_hash, event.event_kind
        )

        if event.is_closing:
            log.info(f"PR closed ({event.state.value}), analysis state cleared")
            snapshot = await self.storage.save(event, now=now)
            return self._result(PipelineStatus.CLOSED, correlation_id, decision.reason, snapshot)

        if not decision.proceed:
            log.info(f"Skipping analysis: {decision.reason}")
            return PipelineResult(PipelineStatus.SKIPPED, correlation_id, reason=decision.reason)

        previous_hash = decision.previous.last_source_commit_hash if decision.previous else "none"
        log.info(f"Analysis start, commit {previous_hash} -> {event.source_commit_hash}")

        scored = await self._score(event, log)
        if scored is None:
            snapshot = await self.storage.save(event, now=now)
            return self._result(PipelineStatus.UNSCORED, correlation_id, "diff_unavailable", snapshot)

        diff, risk = scored
        await self.gate.record(event.repo_id, event.pr_id, event.source_commit_hash, analyzed_at=now)

        snapshot = await self.storage.save(event, diff=diff, risk=risk, now=now)
        result = self._result(PipelineStatus.ANALYZED, correlation_id, decision.reason, snapshot)
        result.score, result.color = risk.score, risk.color

        if snapshot is not None and self.post_comments:
            result.comment_action = await self._sync_comment(event, snapshot, log)

        return result

    async def _score(
        self,
        event: PullRequestEvent,
        log: PipelineLogAdapter,
    ) -> Optional[Tuple[DiffSummary, RiskSummary]]:
        if self.client is None or not event.workspace_id:
            log.warning("No workspace or Bitbucket client, cannot fetch diffstat")
            return None

        diff_stat = await self.client.fetch_diffstat(event.workspace_id, event.repo_id, event.pr_id, log=log)
        if diff_stat is None:
            log.warning("Proceeding without diff stats, scoring skipped this cycle")
            return None

        metrics = analyze_files(diff_stat.files)

        opened_at = event.opened_at
        if opened_at is None:
            existing = await self.storage.get_pr(event.workspace_id, event.repo_id, event.pr_id)
            opened_at = existing.created_at if existing else None

        profile = build_profile(
            metrics,
            diff_stat.lines_added,
            diff_stat.lines_removed,
            event.reviewers,
            event.timestamp,
            self.scoring_config,
            opened_at=opened_at,
        )

        if not profile.reviewers.has_reviewers:
            log.warning("PR has no reviewers")
        if profile.timing.is_outside_working_time:
            log.warning(
                f"PR {event.event_kind.value} during off-hours "
                f"(weekend={profile.timing.is_weekend}, utc_hour={profile.timing.utc_hour})"
            )

        # as of the event, not processing time
        assessment = calculate_risk(profile, self.scoring_config, now=event.timestamp)
        log.info(
            f"Analyzed {len(diff_stat.files)} files: critical={metrics.critical_files} "
            f"tests={metrics.test_files} size={profile.size_category.value} "
            f"score={assessment.score} ({assessment.color.value})"
        )
        return summarize_diff(diff_stat, metrics), summarize_risk(assessment, self.risk_model_version)

    async def _sync_comment(
        self,
        event: PullRequestEvent,
        snapshot: StoredPullRequest,
        log: PipelineLogAdapter,
    ) -> str:
        data = snapshot.model_dump(mode="json")
        fingerprint = compute_comment_fingerprint(data["risk"])

        outcome = await reconcile_comment(
            self.client,
            event.workspace_id,
            event.repo_id,
            event.pr_id,
            format_risk_comment(data),
            fingerprint,
            existing_comment_id=snapshot.comment_id,
            existing_fingerprint=snapshot.comment_fingerprint,
            logger=log,
        )

        if outcome.posted and outcome.comment_id:
            await self.storage.record_comment(snapshot.key, outcome.comment_id, outcome.fingerprint)
        return outcome.action

    @staticmethod
    def _result(
        status: PipelineStatus,
        correlation_id: str,
        reason: str,
        snapshot: Optional[StoredPullRequest],
    ) -> PipelineResult:
        return PipelineResult(
            status=status,
            correlation_id=correlation_id,
            reason=reason,
            pr_key=snapshot.key if snapshot else None,
            score=snapshot.risk.score if snapshot and snapshot.risk else None,
            color=snapshot.risk_color if snapshot else None,
            saved=snapshot is not None,
        )
