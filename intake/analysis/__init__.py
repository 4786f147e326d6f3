# analysis/__init__.py

from .models import (
    FileChange, FileStatus, DiffStat, DiffMetrics,
    SizeCategory, RiskColor, ReviewerStatus, TimingSignal,
    PullRequestProfile, RiskAssessment, ScoringConfig
)
from .utils import FileClassifier
from .diff_analyzer import analyze_files
from .process_analyzer import size_category, reviewer_status, timing_signal, build_profile
from .risk_scoring import calculate_risk, classify_color


__all__ = [
    'FileChange',
    'FileStatus',
    'DiffStat',
    'DiffMetrics',
    'SizeCategory',
    'RiskColor',
    'ReviewerStatus',
    'TimingSignal',
    'PullRequestProfile',
    'RiskAssessment',
    'ScoringConfig',
    'FileClassifier',
    'analyze_files',
    'size_category',
    'reviewer_status',
    'timing_signal',
    'build_profile',
    'calculate_risk',
    'classify_color',
]
