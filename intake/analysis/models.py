from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class FileStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "FileStatus":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class SizeCategory(str, Enum):
    """PR size bucket, from total lines changed"""
    VERY_SMALL = "very_small"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class RiskColor(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


@dataclass
class FileChange:
    """Represents a changed file in a PR (line-delta statistics only)"""
    path: str
    status: FileStatus = FileStatus.MODIFIED
    lines_added: int = 0
    lines_removed: int = 0
    old_path: Optional[str] = None  # only meaningful when renamed

    @property
    def is_pure_rename(self) -> bool:
        return (
            self.status == FileStatus.RENAMED
            and self.lines_added == 0
            and self.lines_removed == 0
        )

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_removed


@dataclass
class DiffStat:
    """Files and line totals fetched for a PR"""
    files: List[FileChange] = field(default_factory=list)

    @property
    def lines_added(self) -> int:
        return sum(f.lines_added for f in self.files)

    @property
    def lines_removed(self) -> int:
        return sum(f.lines_removed for f in self.files)


@dataclass
class DiffMetrics:
    """
    Per-category file counts. Every file lands in exactly one of
    rename_only / generated / doc / test / regular_code. Critical files
    are a subset of regular_code.
    """
    critical_files: int = 0
    test_files: int = 0
    doc_files: int = 0
    generated_files: int = 0
    rename_only_files: int = 0
    regular_code_files: int = 0
    critical_paths: List[str] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return (
            self.test_files
            + self.doc_files
            + self.generated_files
            + self.rename_only_files
            + self.regular_code_files
        )

    @property
    def is_docs_only(self) -> bool:
        return self.doc_files > 0 and self.regular_code_files == 0 and self.test_files == 0

    @property
    def is_tests_only(self) -> bool:
        return self.test_files > 0 and self.regular_code_files == 0


@dataclass
class ReviewerStatus:
    has_reviewers: bool
    count: int


@dataclass
class TimingSignal:
    """Submission timing, all values in UTC"""
    is_weekend: bool
    is_off_hours: bool
    utc_hour: int
    utc_weekday: int  # Monday = 0 ... Sunday = 6

    @property
    def is_outside_working_time(self) -> bool:
        return self.is_weekend or self.is_off_hours


@dataclass
class PullRequestProfile:
    """Everything the risk scoring engine looks at for one PR"""
    metrics: DiffMetrics
    lines_added: int
    lines_removed: int
    size_category: SizeCategory
    reviewers: ReviewerStatus
    timing: TimingSignal
    opened_at: datetime

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_removed


@dataclass
class RiskAssessment:
    score: int  # 0-100, higher is safer
    color: RiskColor
    factors: List[str]
    size_category: Optional[SizeCategory] = None

    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "color": self.color.value,
            "factors": list(self.factors),
            "size_category": self.size_category.value if self.size_category else None,
        }


def _by_size(very_small: float, small: float, medium: float, large: float) -> Dict[SizeCategory, float]:
    return {
        SizeCategory.VERY_SMALL: very_small,
        SizeCategory.SMALL: small,
        SizeCategory.MEDIUM: medium,
        SizeCategory.LARGE: large,
    }


@dataclass
class ScoringConfig:
    """Tunable thresholds for size, timing and risk scoring"""

    # Size buckets (total lines changed, exclusive upper bounds)
    very_small_max_lines: int = 10
    small_max_lines: int = 50
    medium_max_lines: int = 200

    # Normalization ceilings (value at or above ceiling = 1.0)
    max_files_for_normalization: float = 10
    max_lines_for_normalization: float = 300

    # Composite weights, must sum to 1.0
    files_weight: float = 0.4
    lines_weight: float = 0.3
    signals_weight: float = 0.3

    # Color bands on the final score
    red_below: int = 50
    yellow_below: int = 80

    # Off-hours window in UTC hours; wraps midnight when start > end
    off_hours_start: int = 20
    off_hours_end: int = 6

    reviewer_grace_hours: float = 2.0

    # Special cases
    docs_only_max_risk: int = 20
    tests_only_bonus: int = 20
    very_small_floor_score: int = 60
    very_small_floor_max_lines: int = 10

    # Effective file count weights
    doc_file_weight: float = 0.3
    generated_file_weight: float = 0.2
    rename_file_weight: float = 0.1

    # Signal penalties, each in [0, 1]
    no_reviewers_penalty: float = 0.3
    off_hours_penalty: float = 0.1
    critical_file_penalty: Dict[SizeCategory, float] = field(
        default_factory=lambda: _by_size(0.1, 0.2, 0.3, 0.4)
    )
    no_tests_penalty: Dict[SizeCategory, float] = field(
        default_factory=lambda: _by_size(0.05, 0.1, 0.2, 0.3)
    )

    def __post_init__(self):
        total = self.files_weight + self.lines_weight + self.signals_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.4f}")
        if not (0 < self.very_small_max_lines <= self.small_max_lines <= self.medium_max_lines):
            raise ValueError("Size thresholds must be positive and non-decreasing")
        if not (0 <= self.red_below <= self.yellow_below <= 100):
            raise ValueError("Color thresholds must satisfy 0 <= red_below <= yellow_below <= 100")
        if self.max_files_for_normalization <= 0 or self.max_lines_for_normalization <= 0:
            raise ValueError("Normalization ceilings must be positive")
        for hour in (self.off_hours_start, self.off_hours_end):
            if not 0 <= hour <= 23:
                raise ValueError(f"Off-hours bounds must be UTC hours 0-23, got {hour}")
        if not 0 <= self.docs_only_max_risk <= 100:
            raise ValueError("docs_only_max_risk must be within 0-100")
        for table_name in ("critical_file_penalty", "no_tests_penalty"):
            table = getattr(self, table_name)
            missing = [c.value for c in SizeCategory if c not in table]
            if missing:
                raise ValueError(f"{table_name} is missing size categories: {missing}")
