import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger(__name__)

# Timestamps are not part of the fingerprint
FINGERPRINT_FIELDS = ("score", "color", "factors", "size_category")


# Formatting helper functions (no dependencies on intake)
def format_color_badge(color: Optional[str]) -> str:
    color_emoji = {
        "green": "🟢",
        "yellow": "🟡",
        "red": "🔴",
    }
    color = (color or "").lower()
    emoji = color_emoji.get(color, "⚪")
    return f"{emoji} {color.upper() or 'UNSCORED'}"


def format_risk_comment(pr: dict) -> str:
    """Format a stored PR snapshot (as a dict) into the markdown risk report."""
    lines = []
    risk = pr.get("risk") or {}
    diff = pr.get("diff") or {}

    # Header
    lines.append("# 🚦 RiskGate PR Risk Report")
    if pr.get("title"):
        lines.append(f"**PR:** #{pr.get('pr_id')} {pr['title']}")
    lines.append("")

    # Score section
    lines.append("## 📊 Risk Score")
    if risk:
        lines.append(f"**Score:** {risk.get('score')}/100 ({format_color_badge(risk.get('color'))})")
        if risk.get("size_category"):
            lines.append(f"**Size:** {risk['size_category'].replace('_', ' ')}")
    else:
        lines.append("Not scored yet.")
    lines.append("")

    # Diff summary
    if diff.get("files_changed"):
        lines.append("## 📁 Changes")
        lines.append(
            f"**Files:** {diff['files_changed']} | "
            f"**Lines:** +{diff.get('lines_added', 0)} / -{diff.get('lines_removed', 0)}"
        )
        lines.append(f"**Tests touched:** {'yes' if diff.get('tests_touched') else 'no'}")
        critical_paths = diff.get("critical_paths") or []
        if critical_paths:
            lines.append(f"**Critical paths:** {', '.join(f'`{p}`' for p in critical_paths)}")
        lines.append("")

    # Factors
    factors = risk.get("factors") or []
    if factors:
        lines.append("## 🔍 Contributing Factors")
        for factor in factors:
            lines.append(f"- {factor}")
        lines.append("")

    lines.append("---")
    lines.append(f"*Risk model {risk.get('version', 'v2')}, updated automatically on every new commit*")

    return "\n".join(lines)


def compute_comment_fingerprint(risk: Optional[dict]) -> str:
    """sha256 over the semantically relevant risk fields, key order independent"""
    relevant = {field: (risk or {}).get(field) for field in FINGERPRINT_FIELDS}
    canonical = json.dumps(relevant, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CommentReconciliation:
    comment_id: Optional[str]
    fingerprint: str
    posted: bool
    action: str  # skipped | created | updated | recreated | failed


async def reconcile_comment(
    client,
    workspace: str,
    repo: str,
    pr_id: int,
    content: str,
    fingerprint: str,
    existing_comment_id: Optional[str] = None,
    existing_fingerprint: Optional[str] = None,
    logger=None,
) -> CommentReconciliation:
    """
    Make sure the PR carries exactly one up-to-date risk comment.

    Unchanged fingerprint: no remote call. No known comment: create.
    Known comment: update, and create a fresh one if Bitbucket says the
    old one is gone. posted is True only when Bitbucket now shows this
    content; the caller persists comment_id and fingerprint in that case.
    """
    logger = logger or log

    if existing_fingerprint and existing_fingerprint == fingerprint:
        logger.info("Comment fingerprint unchanged, skipping comment update")
        return CommentReconciliation(existing_comment_id, fingerprint, posted=False, action="skipped")

    if existing_comment_id:
        result = await client.update_comment(workspace, repo, pr_id, existing_comment_id, content, log=logger)
        if result == "updated":
            logger.info(f"Updated risk comment {existing_comment_id}")
            return CommentReconciliation(existing_comment_id, fingerprint, posted=True, action="updated")
        if result is None:
            logger.error(f"Failed to update comment {existing_comment_id}, will retry on next event")
            return CommentReconciliation(existing_comment_id, fingerprint, posted=False, action="failed")
        logger.warning(f"Comment {existing_comment_id} no longer exists, creating a new one")

    comment_id = await client.create_comment(workspace, repo, pr_id, content, log=logger)
    if comment_id is None:
        logger.error("Failed to create risk comment, will retry on next event")
        return CommentReconciliation(existing_comment_id, fingerprint, posted=False, action="failed")

    action = "recreated" if existing_comment_id else "created"
    logger.info(f"Posted risk comment {comment_id} ({action})")
    return CommentReconciliation(comment_id, fingerprint, posted=True, action=action)
