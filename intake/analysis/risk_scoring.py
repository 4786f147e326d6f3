import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from .models import (
    DiffMetrics, PullRequestProfile, RiskAssessment,
    RiskColor, ScoringConfig, SizeCategory
)
from .process_analyzer import as_utc

_WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def classify_color(score: int, config: ScoringConfig) -> RiskColor:
    if score < config.red_below:
        return RiskColor.RED
    if score < config.yellow_below:
        return RiskColor.YELLOW
    return RiskColor.GREEN


def effective_file_count(metrics: DiffMetrics, config: ScoringConfig) -> float:
    """Code and test files count fully, everything else is discounted"""
    return (
        metrics.regular_code_files
        + metrics.test_files
        + metrics.doc_files * config.doc_file_weight
        + metrics.generated_files * config.generated_file_weight
        + metrics.rename_only_files * config.rename_file_weight
    )


def _signals_subscore(
    profile: PullRequestProfile,
    config: ScoringConfig,
    now: datetime,
) -> Tuple[float, List[str]]:
    """Sum of independent penalties, each capped at 1 and the sum capped at 1"""
    metrics = profile.metrics
    size = profile.size_category
    total = 0.0
    factors: List[str] = []

    if not profile.reviewers.has_reviewers:
        age = now - profile.opened_at
        if age < timedelta(hours=config.reviewer_grace_hours):
            factors.append(
                f"Reviewers pending (opened less than {config.reviewer_grace_hours:g}h ago, no penalty)"
            )
        else:
            penalty = min(config.no_reviewers_penalty, 1.0)
            total += penalty
            factors.append(f"No Reviewers (+{penalty:.2f})")

    if metrics.critical_files > 0:
        penalty = min(config.critical_file_penalty[size], 1.0)
        total += penalty
        paths = ", ".join(metrics.critical_paths)
        factors.append(
            f"Critical Files Modified: {metrics.critical_files} [{paths}] "
            f"(+{penalty:.2f}, {size.value} PR)"
        )

    if metrics.regular_code_files > 0 and metrics.test_files == 0:
        penalty = min(config.no_tests_penalty[size], 1.0)
        total += penalty
        factors.append(f"No Tests Detected (+{penalty:.2f}, {size.value} PR)")

    timing = profile.timing
    if timing.is_outside_working_time:
        penalty = min(config.off_hours_penalty, 1.0)
        total += penalty
        reasons = []
        if timing.is_weekend:
            reasons.append("weekend")
        if timing.is_off_hours:
            reasons.append("late hours")
        factors.append(
            f"Off-hours Submission ({', '.join(reasons)}, "
            f"{_WEEKDAYS[timing.utc_weekday]} {timing.utc_hour:02d}:00 UTC) (+{penalty:.2f})"
        )

    return min(total, 1.0), factors


def calculate_risk(
    profile: PullRequestProfile,
    config: ScoringConfig,
    now: Optional[datetime] = None,
) -> RiskAssessment:
    """
    Score a PR from 0 (riskiest) to 100 (safest).

    Three sub-scores in [0, 1], each growing with risk, are blended with
    the configured weights:
        files   - weighted effective file count / file ceiling
        lines   - total lines changed / line ceiling
        signals - reviewers, critical paths, missing tests, timing

    Special cases:
        - no files: 100 / green
        - docs-only: risk capped at docs_only_max_risk, no penalties
        - tests-only: flat bonus on the final score
        - very small PRs are never pushed below the floor score
    """
    now = as_utc(now or datetime.now(timezone.utc))
    metrics = profile.metrics
    size = profile.size_category

    if metrics.total_files == 0:
        return RiskAssessment(
            score=100,
            color=classify_color(100, config),
            factors=["No files changed (nothing to score)"],
            size_category=size,
        )

    effective_files = effective_file_count(metrics, config)
    files_score = min(effective_files / config.max_files_for_normalization, 1.0)
    lines_score = min(profile.lines_changed / config.max_lines_for_normalization, 1.0)

    factors = [
        f"Files: {files_score:.2f} ({effective_files:.1f} effective files)",
        f"Lines: {lines_score:.2f} ({profile.lines_changed} lines changed)",
    ]

    if metrics.is_docs_only:
        risk = files_score * config.files_weight + lines_score * config.lines_weight
        risk_points = min(_round_half_up(risk * 100), config.docs_only_max_risk)
        score = 100 - risk_points
        factors.append("Signals: 0.00 (not applied)")
        factors.append(f"Docs-only PR (risk capped at {config.docs_only_max_risk})")
        return RiskAssessment(
            score=score,
            color=classify_color(score, config),
            factors=factors,
            size_category=size,
        )

    signals_score, signal_factors = _signals_subscore(profile, config, now)
    factors.append(f"Signals: {signals_score:.2f}")
    factors.extend(signal_factors)

    risk = (
        files_score * config.files_weight
        + lines_score * config.lines_weight
        + signals_score * config.signals_weight
    )
    score = _round_half_up((1 - risk) * 100)

    if metrics.is_tests_only:
        score = min(100, score + config.tests_only_bonus)
        factors.append(f"Tests-only PR (+{config.tests_only_bonus} bonus)")

    if (
        size == SizeCategory.VERY_SMALL
        and profile.lines_changed <= config.very_small_floor_max_lines
        and score < config.very_small_floor_score
    ):
        score = config.very_small_floor_score
        factors.append("Very small PR (risk floor applied)")

    score = max(0, min(100, score))

    return RiskAssessment(
        score=score,
        color=classify_color(score, config),
        factors=factors,
        size_category=size,
    )
