from fastapi import APIRouter, HTTPException, Header, Query, Request
from typing import Optional
import json
import hmac
import hashlib
import logging
from .analysis.models import RiskColor
from .config import Config
from .log_context import new_correlation_id
from .redis_client import clean_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook/bitbucket")
async def handle_bitbucket_webhook(
    request: Request,
    x_hub_signature: Optional[str] = Header(None),
    x_event_key: Optional[str] = Header(None),
    x_request_uuid: Optional[str] = Header(None),
):
    payload_body = await request.body()

    if Config.BITBUCKET_WEBHOOK_SECRET:
        if not verify_signature(payload_body, x_hub_signature, Config.BITBUCKET_WEBHOOK_SECRET):
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        webhook_data = json.loads(payload_body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Body is not valid JSON")

    # Bitbucket webhooks send the event key as a header, Forge triggers put it in the body
    if isinstance(webhook_data, dict) and "eventType" not in webhook_data and x_event_key:
        webhook_data["eventType"] = x_event_key

    correlation_id = clean_id(x_request_uuid) if x_request_uuid else new_correlation_id()
    result = await request.app.state.pipeline.handle_event(webhook_data, correlation_id)

    logger.info(f"[correlation_id={correlation_id}] webhook handled: {result.status.value} ({result.reason})")
    return result.to_dict()


@router.get("/repos/{workspace}/{repo}/telemetry")
async def repo_telemetry(workspace: str, repo: str, request: Request):
    counts = await request.app.state.storage.get_telemetry_counts(workspace, repo)
    return counts.model_dump()


@router.get("/repos/{workspace}/{repo}/pull-requests")
async def list_pull_requests(
    workspace: str,
    repo: str,
    request: Request,
    color: Optional[RiskColor] = None,
    open: bool = False,
    limit: int = Query(50, ge=1, le=500),
):
    storage = request.app.state.storage
    if color is not None:
        prs = await storage.get_by_risk(workspace, repo, color, limit)
    elif open:
        prs = await storage.get_open(workspace, repo, limit)
    else:
        prs = await storage.list_for_repo(workspace, repo, limit)

    if color is not None and open:
        prs = [pr for pr in prs if pr.state.value == "open"]

    return {
        "count": len(prs),
        "pull_requests": [pr.model_dump(mode="json") for pr in prs],
    }


# helpers
def verify_signature(payload_body: bytes, signature: str | None, secret: str) -> bool:
    """Verify Bitbucket webhook signature"""
    if not signature or not secret:
        return False

    hash_object = hmac.new(
        secret.encode('utf-8'),
        msg=payload_body,
        digestmod=hashlib.sha256
    )
    expected_signature = "sha256=" + hash_object.hexdigest()
    return hmac.compare_digest(expected_signature, signature)
