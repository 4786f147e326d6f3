import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .analysis.process_analyzer import as_utc
from .log_context import get_event_logger
from .models import EventKind, PrState, PullRequestEvent, ReviewerRef, WebhookPayload

logger = logging.getLogger(__name__)

EVENT_KIND_ALIASES: Dict[str, EventKind] = {
    "avi:bitbucket:created:pullrequest": EventKind.CREATED,
    "avi:bitbucket:updated:pullrequest": EventKind.UPDATED,
    "avi:bitbucket:fulfilled:pullrequest": EventKind.MERGED,
    "avi:bitbucket:rejected:pullrequest": EventKind.REJECTED,
    "pullrequest:created": EventKind.CREATED,
    "pullrequest:updated": EventKind.UPDATED,
    "pullrequest:fulfilled": EventKind.MERGED,
    "pullrequest:rejected": EventKind.REJECTED,
}

STATE_ALIASES: Dict[str, PrState] = {
    "OPEN": PrState.OPEN,
    "MERGED": PrState.MERGED,
    "FULFILLED": PrState.MERGED,
    "DECLINED": PrState.DECLINED,
    "REJECTED": PrState.DECLINED,
    "SUPERSEDED": PrState.DECLINED,
}


def map_event_kind(raw: Any) -> EventKind:
    if not isinstance(raw, str):
        return EventKind.UNKNOWN
    return EVENT_KIND_ALIASES.get(raw.strip().lower(), EventKind.UNKNOWN)


def map_state(raw: Optional[str], kind: EventKind) -> PrState:
    if raw:
        return STATE_ALIASES.get(raw.strip().upper(), PrState.UNKNOWN)
    if kind == EventKind.MERGED:
        return PrState.MERGED
    if kind == EventKind.REJECTED:
        return PrState.DECLINED
    return PrState.OPEN


def _reviewer_ids(reviewers) -> List[str]:
    ids = []
    for reviewer in reviewers or []:
        if isinstance(reviewer, ReviewerRef):
            reviewer = reviewer.accountId or reviewer.uuid
        if reviewer and reviewer not in ids:
            ids.append(reviewer)
    return ids


def _rejection_context(payload: Dict) -> str:
    """Just enough to find the delivery again, never the payload itself"""
    pr = payload.get("pullrequest")
    repo = payload.get("repository")
    pr_id = pr.get("id") if isinstance(pr, dict) else None
    repo_id = repo.get("uuid") if isinstance(repo, dict) else None
    event_type = payload.get("eventType")
    if isinstance(event_type, str):
        event_type = event_type[:80]
    else:
        event_type = type(event_type).__name__
    return f"eventType={event_type} pr_id={pr_id!r} repo_id={repo_id!r}"


def _format_errors(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in error.errors(include_input=False)
    )


async def normalize_event(
    payload: Any,
    client=None,
    correlation_id: Optional[str] = None,
) -> Optional[PullRequestEvent]:
    """
    Turn a raw Bitbucket webhook payload into a PullRequestEvent.

    Returns None when the payload is rejected. Nothing else in the
    pipeline runs for rejected payloads. When the title is missing and a
    client is given, the PR title is fetched from Bitbucket; a failed
    lookup leaves the title empty.
    """
    if not isinstance(payload, dict):
        logger.warning(f"Rejected webhook payload: expected an object, got {type(payload).__name__}")
        return None

    try:
        raw = WebhookPayload.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Rejected webhook payload ({_rejection_context(payload)}): {_format_errors(e)}")
        return None

    pr = raw.pullrequest
    kind = map_event_kind(raw.eventType)
    repo_id = raw.repository.uuid
    workspace_id = raw.workspace.uuid if raw.workspace else None
    log = get_event_logger(__name__, repo_id=repo_id, pr_id=pr.id, correlation_id=correlation_id)

    if kind == EventKind.UNKNOWN:
        log.info(f"Unrecognized eventType {str(raw.eventType)[:80]!r}, treating as unknown")

    title = pr.title or ""
    if not title and client is not None and workspace_id:
        log.info("Title missing from payload, fetching from Bitbucket")
        title = await client.fetch_pr_title(workspace_id, repo_id, pr.id, log=log) or ""
        if not title:
            log.warning("Title enrichment failed, continuing without a title")

    timestamp = as_utc(raw.timestamp) if raw.timestamp else datetime.now(timezone.utc)

    event = PullRequestEvent(
        event_kind=kind,
        pr_id=pr.id,
        title=title,
        author=raw.actor.accountId,
        repo_id=repo_id,
        workspace_id=workspace_id,
        state=map_state(pr.state, kind),
        source_branch=pr.source.branch_name,
        destination_branch=pr.destination.branch_name,
        source_commit_hash=(pr.source.commit.hash or None) if pr.source.commit else None,
        merge_commit_hash=(pr.mergeCommit.hash or None) if pr.mergeCommit else None,
        reviewers=_reviewer_ids(pr.reviewers),
        timestamp=timestamp,
        opened_at=as_utc(pr.created_on) if pr.created_on else None,
        correlation_id=log.extra.get("correlation_id"),
    )
    log.debug(f"Normalized {kind.value} event, state={event.state.value}")
    return event
