import json
import logging
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from config import Settings
from deploy_runner import DeployRunner
from dependencies import enforce_rate_limit, get_runner, get_settings
from event_router import Acknowledge, Ignore, InvalidPayload, route_event
from utils import script_exists, verify_signature

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_ID = "unknown"


async def read_limited_body(request: Request, max_bytes: int) -> bytes:
    """
    Read the raw body, refusing anything over max_bytes.

    The declared Content-Length is checked first; the streamed size is
    checked too since chunked requests carry no length.
    """
    declared = request.headers.get("Content-Length")
    if declared is not None:
        try:
            too_large = int(declared) > max_bytes
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Content-Length")
        if too_large:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Payload too large")

    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/githubwebhook", summary="GitHub Webhook Endpoint")
async def handle_webhook(
        request: Request,
        client: str = Depends(enforce_rate_limit),
        settings: Settings = Depends(get_settings),
        runner: DeployRunner = Depends(get_runner),
        x_hub_signature_256: str = Header(None),
        x_github_event: str = Header(None),
        x_github_delivery: str = Header(None)
):
    delivery_id = x_github_delivery or DEFAULT_DELIVERY_ID
    logger.info(f"[{delivery_id}] Webhook endpoint was called by {client} (event: {x_github_event}).")

    # 1. Capture the raw body; the signature covers these exact bytes.
    try:
        body_bytes = await read_limited_body(request, settings.max_body_bytes)
    except HTTPException as e:
        logger.warning(f"[{delivery_id}] Rejected request body: {e.detail}.")
        raise

    # 2. Parse payload. Nothing in it is trusted until the signature checks out.
    try:
        payload = json.loads(body_bytes)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"[{delivery_id}] Could not decode JSON payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload"
        )

    # 3. Verify signature against the raw bytes, not the parsed document.
    if not verify_signature(body_bytes, x_hub_signature_256, settings.webhook_secret):
        logger.warning(f"[{delivery_id}] Invalid signature.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    # 4. Decide what to do with the event.
    try:
        action = route_event(x_github_event, payload, settings, delivery_id)
    except InvalidPayload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload"
        )

    if isinstance(action, Acknowledge):
        response = {"message": action.message}
        if action.zen is not None:
            response["zen"] = action.zen
        return response

    if isinstance(action, Ignore):
        return {"message": action.message, "reason": action.reason}

    # 5. The script may have been removed since startup.
    if not script_exists(action.script_path):
        logger.error(f"[{delivery_id}] Deployment script not found: {action.script_path}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Deployment error: Script not found"
        )

    # 6. Start the deployment in the background and respond immediately.
    runner.dispatch(action.script_path, action.context)
    return {
        "message": "Deployment started",
        "repository": action.context.repository_full_name,
        "branch": action.context.branch,
    }
