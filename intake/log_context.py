import logging
import uuid
from typing import Any, Optional


class PipelineLogAdapter(logging.LoggerAdapter):
    """
    Prefix every record with the event context and expose the same values
    as record attributes (repo_id, pr_id, correlation_id) for handlers
    that emit structured output.
    """

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        prefix = " ".join(f"{key}={extra[key]}" for key in ("repo_id", "pr_id", "correlation_id") if extra.get(key) is not None)
        return (f"[{prefix}] {msg}" if prefix else msg), kwargs

    def bind(self, **context: Any) -> "PipelineLogAdapter":
        merged = dict(self.extra)
        merged.update({k: v for k, v in context.items() if v is not None})
        return PipelineLogAdapter(self.logger, merged)


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:16]


def get_event_logger(
    name: str,
    repo_id: Optional[str] = None,
    pr_id: Optional[int] = None,
    correlation_id: Optional[str] = None,
) -> PipelineLogAdapter:
    context = {
        "repo_id": repo_id,
        "pr_id": pr_id,
        "correlation_id": correlation_id or new_correlation_id(),
    }
    return PipelineLogAdapter(logging.getLogger(name), context)
