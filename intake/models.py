from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StringConstraints


class EventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    MERGED = "merged"
    REJECTED = "rejected"
    UNKNOWN = "unknown"

    @property
    def closes_pr(self) -> bool:
        return self in (EventKind.MERGED, EventKind.REJECTED)


class PrState(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    DECLINED = "declined"
    UNKNOWN = "unknown"


# ----------------------
# Raw webhook payload (validated before anything else runs)
# ----------------------

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class BranchRef(_Lenient):
    name: str = Field(min_length=1)


class CommitRef(_Lenient):
    hash: Optional[str] = None


class EndpointRef(_Lenient):
    # Bitbucket sends either "main" or {"name": "main"}
    branch: Union[NonEmptyStr, BranchRef]
    commit: Optional[CommitRef] = None

    @property
    def branch_name(self) -> str:
        return self.branch if isinstance(self.branch, str) else self.branch.name


class ActorRef(_Lenient):
    # Forge triggers send accountId, plain webhooks account_id
    accountId: str = Field(min_length=1, validation_alias=AliasChoices("accountId", "account_id"))
    uuid: Optional[str] = None
    display_name: Optional[str] = None


class UuidRef(_Lenient):
    uuid: str = Field(min_length=1)


class ReviewerRef(_Lenient):
    accountId: Optional[str] = Field(default=None, validation_alias=AliasChoices("accountId", "account_id"))
    uuid: Optional[str] = None


class RawPullRequest(_Lenient):
    id: StrictInt = Field(gt=0)
    title: Optional[str] = Field(default=None, max_length=500)
    state: Optional[str] = None
    source: EndpointRef
    destination: EndpointRef
    mergeCommit: Optional[CommitRef] = None
    reviewers: Optional[List[Union[ReviewerRef, str]]] = None
    created_on: Optional[datetime] = None


class WebhookPayload(_Lenient):
    timestamp: Optional[datetime] = None
    eventType: Any = None
    actor: ActorRef
    repository: UuidRef
    workspace: Optional[UuidRef] = None
    pullrequest: RawPullRequest


# ----------------------
# Internal models
# ----------------------

class PullRequestEvent(BaseModel):
    """One normalized webhook delivery"""
    event_kind: EventKind
    pr_id: int
    title: str = ""
    author: str
    repo_id: str
    workspace_id: Optional[str] = None
    state: PrState
    source_branch: str
    destination_branch: str
    source_commit_hash: Optional[str] = None
    merge_commit_hash: Optional[str] = None
    reviewers: List[str] = Field(default_factory=list)
    timestamp: datetime
    opened_at: Optional[datetime] = None
    correlation_id: Optional[str] = None

    @property
    def is_closing(self) -> bool:
        return self.event_kind.closes_pr


class AnalysisState(BaseModel):
    last_source_commit_hash: Optional[str] = None
    last_analyzed_at: datetime


class GateDecision(BaseModel):
    proceed: bool
    reason: str
    previous: Optional[AnalysisState] = None


class DiffSummary(BaseModel):
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    lines_changed: int = 0
    critical_files_touched: bool = False
    critical_paths: List[str] = Field(default_factory=list)
    tests_touched: bool = False
    test_files_changed: int = 0
    non_test_files_changed: int = 0


class RiskSummary(BaseModel):
    score: int
    color: str
    factors: List[str] = Field(default_factory=list)
    size_category: Optional[str] = None
    version: str = "v2"


class StatusFlags(BaseModel):
    is_high_risk: bool = False
    is_stale: bool = False
    is_blocked: bool = False


class StoredPullRequest(BaseModel):
    key: str
    workspace_id: str
    repo_id: str
    pr_id: int
    title: str = ""
    author: str
    state: PrState
    source_branch: str
    destination_branch: str
    source_commit_hash: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    last_analyzed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    diff: DiffSummary = Field(default_factory=DiffSummary)
    risk: Optional[RiskSummary] = None
    status_flags: StatusFlags = Field(default_factory=StatusFlags)
    age_hours: int = 0

    comment_id: Optional[str] = None
    comment_fingerprint: Optional[str] = None
    comment_last_posted_at: Optional[datetime] = None

    @property
    def risk_color(self) -> Optional[str]:
        return self.risk.color if self.risk else None


class TelemetryCounts(BaseModel):
    total: int = 0
    open: int = 0
    red: int = 0
    yellow: int = 0
    green: int = 0
