import os
from dotenv import load_dotenv

from .analysis.models import ScoringConfig, SizeCategory
from .resilience import RetryConfig

load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    value = os.getenv(name)
    return value if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _size_table(prefix: str, very_small: float, small: float, medium: float, large: float):
    return {
        SizeCategory.VERY_SMALL: _env_float(f"{prefix}_VERY_SMALL", very_small),
        SizeCategory.SMALL: _env_float(f"{prefix}_SMALL", small),
        SizeCategory.MEDIUM: _env_float(f"{prefix}_MEDIUM", medium),
        SizeCategory.LARGE: _env_float(f"{prefix}_LARGE", large),
    }


class Config:
    REDIS_URL = _env_str("REDIS_URL", "redis://localhost:6379")
    STORE_BACKEND = _env_str("STORE_BACKEND", "redis")

    BITBUCKET_API_BASE = _env_str("BITBUCKET_API_BASE", "https://api.bitbucket.org/2.0")
    BITBUCKET_ACCESS_TOKEN = os.getenv("BITBUCKET_ACCESS_TOKEN")
    BITBUCKET_USERNAME = os.getenv("BITBUCKET_USERNAME")
    BITBUCKET_APP_PASSWORD = os.getenv("BITBUCKET_APP_PASSWORD")
    BITBUCKET_WEBHOOK_SECRET = os.getenv("BITBUCKET_WEBHOOK_SECRET")

    POST_COMMENTS = _env_bool("POST_COMMENTS", True)
    LOG_LEVEL = _env_str("LOG_LEVEL", "INFO")

    SERVICE_HOST = _env_str("SERVICE_HOST", "0.0.0.0")
    SERVICE_PORT = _env_int("SERVICE_PORT", 8000)

    STALE_AFTER_HOURS = _env_int("STALE_AFTER_HOURS", 72)
    RISK_MODEL_VERSION = _env_str("RISK_MODEL_VERSION", "v2")

    RETRY = RetryConfig(
        max_retries=_env_int("RETRY_MAX_RETRIES", 3),
        initial_backoff=_env_float("RETRY_INITIAL_BACKOFF", 1.0),
        max_backoff=_env_float("RETRY_MAX_BACKOFF", 10.0),
        backoff_multiplier=_env_float("RETRY_BACKOFF_MULTIPLIER", 2.0),
        jitter_factor=_env_float("RETRY_JITTER_FACTOR", 0.3),
        request_timeout=_env_float("RETRY_REQUEST_TIMEOUT", 30.0),
    )

    SCORING = ScoringConfig(
        very_small_max_lines=_env_int("SCORING_VERY_SMALL_MAX_LINES", 10),
        small_max_lines=_env_int("SCORING_SMALL_MAX_LINES", 50),
        medium_max_lines=_env_int("SCORING_MEDIUM_MAX_LINES", 200),
        max_files_for_normalization=_env_float("SCORING_MAX_FILES", 10),
        max_lines_for_normalization=_env_float("SCORING_MAX_LINES", 300),
        files_weight=_env_float("SCORING_FILES_WEIGHT", 0.4),
        lines_weight=_env_float("SCORING_LINES_WEIGHT", 0.3),
        signals_weight=_env_float("SCORING_SIGNALS_WEIGHT", 0.3),
        red_below=_env_int("SCORING_RED_BELOW", 50),
        yellow_below=_env_int("SCORING_YELLOW_BELOW", 80),
        off_hours_start=_env_int("SCORING_OFF_HOURS_START", 20),
        off_hours_end=_env_int("SCORING_OFF_HOURS_END", 6),
        reviewer_grace_hours=_env_float("SCORING_REVIEWER_GRACE_HOURS", 2.0),
        docs_only_max_risk=_env_int("SCORING_DOCS_ONLY_MAX_RISK", 20),
        tests_only_bonus=_env_int("SCORING_TESTS_ONLY_BONUS", 20),
        very_small_floor_score=_env_int("SCORING_VERY_SMALL_FLOOR_SCORE", 60),
        very_small_floor_max_lines=_env_int("SCORING_VERY_SMALL_FLOOR_MAX_LINES", 10),
        doc_file_weight=_env_float("SCORING_DOC_FILE_WEIGHT", 0.3),
        generated_file_weight=_env_float("SCORING_GENERATED_FILE_WEIGHT", 0.2),
        rename_file_weight=_env_float("SCORING_RENAME_FILE_WEIGHT", 0.1),
        no_reviewers_penalty=_env_float("SCORING_NO_REVIEWERS_PENALTY", 0.3),
        off_hours_penalty=_env_float("SCORING_OFF_HOURS_PENALTY", 0.1),
        critical_file_penalty=_size_table("SCORING_CRITICAL_PENALTY", 0.1, 0.2, 0.3, 0.4),
        no_tests_penalty=_size_table("SCORING_NO_TESTS_PENALTY", 0.05, 0.1, 0.2, 0.3),
    )
