from datetime import datetime, timezone
from typing import List, Optional

from .models import (
    DiffMetrics, PullRequestProfile, ReviewerStatus,
    ScoringConfig, SizeCategory, TimingSignal
)


def as_utc(timestamp: datetime) -> datetime:
    """Naive timestamps are taken to be UTC already"""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def size_category(lines_added: int, lines_removed: int, config: ScoringConfig) -> SizeCategory:
    total_changes = lines_added + lines_removed

    if total_changes < config.very_small_max_lines:
        return SizeCategory.VERY_SMALL
    if total_changes < config.small_max_lines:
        return SizeCategory.SMALL
    if total_changes < config.medium_max_lines:
        return SizeCategory.MEDIUM
    return SizeCategory.LARGE


def reviewer_status(reviewers: List[str]) -> ReviewerStatus:
    return ReviewerStatus(has_reviewers=len(reviewers) > 0, count=len(reviewers))


def _in_off_hours(hour: int, start: int, end: int) -> bool:
    if start == end:
        return False
    if start > end:
        # window wraps midnight, e.g. 20:00-06:00
        return hour >= start or hour < end
    return start <= hour < end


def timing_signal(timestamp: datetime, config: ScoringConfig) -> TimingSignal:
    """
    Proxy for reduced review availability: weekend (Saturday/Sunday) or a
    submission inside the configured off-hours window, both in UTC.
    """
    moment = as_utc(timestamp)
    weekday = moment.weekday()
    hour = moment.hour

    return TimingSignal(
        is_weekend=weekday >= 5,
        is_off_hours=_in_off_hours(hour, config.off_hours_start, config.off_hours_end),
        utc_hour=hour,
        utc_weekday=weekday,
    )


def build_profile(
    metrics: DiffMetrics,
    lines_added: int,
    lines_removed: int,
    reviewers: List[str],
    submitted_at: datetime,
    config: ScoringConfig,
    opened_at: Optional[datetime] = None,
) -> PullRequestProfile:
    """Bundle diff metrics with size, reviewer and timing signals"""
    return PullRequestProfile(
        metrics=metrics,
        lines_added=lines_added,
        lines_removed=lines_removed,
        size_category=size_category(lines_added, lines_removed, config),
        reviewers=reviewer_status(reviewers),
        timing=timing_signal(submitted_at, config),
        opened_at=as_utc(opened_at or submitted_at),
    )
