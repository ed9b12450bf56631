# event_router.py decides what a verified webhook delivery should do.

import logging
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError

from config import Settings
from models.deploy_context import DeploymentContext
from models.github_webhook import PushEvent

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"

BRANCH_NOT_ALLOWED = "branch_not_allowed"
REPOSITORY_NOT_CONFIGURED = "repository_not_configured"


class InvalidPayload(Exception):
    """The event body parsed as JSON but is not a usable push payload."""


@dataclass(frozen=True)
class Acknowledge:
    message: str
    zen: Optional[str] = None


@dataclass(frozen=True)
class Ignore:
    reason: str
    message: str


@dataclass(frozen=True)
class Deploy:
    script_path: str
    context: DeploymentContext


Action = Union[Acknowledge, Ignore, Deploy]


def branch_from_ref(ref: str) -> str:
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    return ref


def route_event(event_type: Optional[str], payload, settings: Settings, delivery_id: str = "unknown") -> Action:
    """
    Map an authenticated delivery to an action.

    Unknown event types are acknowledged so GitHub does not retry them.
    """
    if event_type == "ping":
        logger.info(f"[{delivery_id}] Received ping event from GitHub.")
        zen = payload.get("zen") if isinstance(payload, dict) else None
        return Acknowledge(message="pong", zen=zen)

    if event_type != "push":
        logger.info(f"[{delivery_id}] Received {event_type} event, no action taken.")
        return Acknowledge(message=f"Received {event_type} event, no action taken")

    try:
        push = PushEvent.model_validate(payload)
    except ValidationError as e:
        logger.error(f"[{delivery_id}] Invalid push payload: {e}")
        raise InvalidPayload("Invalid push payload") from e

    repo_full_name = push.repository.full_name
    branch = branch_from_ref(push.ref)
    logger.info(f"[{delivery_id}] Received push for repo: {repo_full_name}, branch: {branch}")

    if branch not in settings.allowed_branches:
        message = f"Ignored push to {branch} branch"
        logger.info(f"[{delivery_id}] {message} of {repo_full_name}.")
        return Ignore(reason=BRANCH_NOT_ALLOWED, message=message)

    script_path = settings.resolve_script(repo_full_name)
    if script_path is None:
        message = f"No deployment configured for repository {repo_full_name}"
        logger.warning(f"[{delivery_id}] {message}.")
        return Ignore(reason=REPOSITORY_NOT_CONFIGURED, message=message)

    return Deploy(script_path=script_path, context=build_context(push, branch, delivery_id))


def build_context(push: PushEvent, branch: str, delivery_id: str) -> DeploymentContext:
    repo = push.repository
    owner_name, _, short_name = repo.full_name.partition("/")
    owner = (repo.owner.login or repo.owner.name) if repo.owner else None
    if push.head_commit is not None:
        commit = push.head_commit.id
    else:
        commit = push.after or ""
    pusher = push.pusher.name if push.pusher and push.pusher.name else ""

    return DeploymentContext(
        repository_full_name=repo.full_name,
        repository_name=repo.name or short_name,
        owner=owner or owner_name,
        branch=branch,
        commit=commit,
        pusher=pusher,
        delivery_id=delivery_id,
    )
