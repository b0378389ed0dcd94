"""
Webhook routes called by VCS providers and CI jobs.

Providers deliver push events to /hook/<provider>/<endpoint id>. The CI job
set up in a linked repository posts pull request details to
/hook/sql-review/<endpoint id> and prints the report it gets back.

Request bodies are read raw: the GitHub signature is computed over the exact
bytes received. Pipeline work is blocking (storage and provider calls), so it
runs in the threadpool.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from backend.dependencies import get_provider_factory, get_push_processor, get_sql_review_service, get_store
from gitops.push_processor import ProviderFactory, PushEventProcessor
from gitops.sql_review import SQLReviewService
from gitops.webhook_auth import (
    RepositoryPredicate,
    filter_repositories,
    github_signature_predicate,
    gitlab_token_predicate,
    push_event_predicate,
)
from models.vcs_models import VCSSQLReviewRequest, VCSType
from utils.errors import GitOpsError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/hook", tags=["webhook"])

GITLAB_PUSH_EVENT = "push"
GITHUB_PUSH_EVENT = "push"


def _parse_json(body: bytes, what: str) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail=f"Malformed {what}")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail=f"Malformed {what}")
    return payload


def _handle_push(
    store,
    processor: PushEventProcessor,
    provider_factory: ProviderFactory,
    vcs_type: VCSType,
    endpoint_id: str,
    payload: Dict[str, Any],
    trust: RepositoryPredicate,
) -> str:
    push_event = provider_factory(vcs_type).to_push_event(payload)
    repositories = filter_repositories(
        store, endpoint_id, push_event.repository_id, push_event_predicate(trust, push_event.ref),
    )
    if not repositories:
        logger.debug(f"No repository link accepted the push to {push_event.repository_full_path}, ignoring")
        return "OK"

    created_messages = processor.process_push_event(repositories, push_event)
    return "\n".join(created_messages)


async def _run_push(
    store,
    processor: PushEventProcessor,
    provider_factory: ProviderFactory,
    vcs_type: VCSType,
    endpoint_id: str,
    payload: Dict[str, Any],
    trust: RepositoryPredicate,
) -> PlainTextResponse:
    try:
        text = await run_in_threadpool(
            _handle_push, store, processor, provider_factory, vcs_type, endpoint_id, payload, trust,
        )
        return PlainTextResponse(text)
    except GitOpsError as e:
        logger.warning(f"Push event to endpoint {endpoint_id} rejected ({e.status_code}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to respond webhook event for endpoint {endpoint_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to respond webhook event for endpoint: {endpoint_id}")


@router.post("/gitlab/{endpoint_id}", response_class=PlainTextResponse)
async def gitlab_webhook(
    endpoint_id: str,
    request: Request,
    x_gitlab_token: str = Header(default=""),
    store=Depends(get_store),
    processor: PushEventProcessor = Depends(get_push_processor),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
):
    """
    GitLab push hook.

    Headers:
    - X-Gitlab-Token: Webhook secret of the repository link

    Returns:
    - One "Created issue ..." line per created issue group, or "OK"
    """
    payload = _parse_json(await request.body(), "push event")
    object_kind = payload.get("object_kind")
    if object_kind != GITLAB_PUSH_EVENT:
        logger.debug(f"Ignoring GitLab {object_kind} event for endpoint {endpoint_id}")
        return PlainTextResponse("OK")

    return await _run_push(
        store, processor, provider_factory, VCSType.GITLAB_SELF_HOST, endpoint_id, payload,
        gitlab_token_predicate(x_gitlab_token),
    )


@router.post("/github/{endpoint_id}", response_class=PlainTextResponse)
async def github_webhook(
    endpoint_id: str,
    request: Request,
    x_github_event: str = Header(default=""),
    x_hub_signature_256: str = Header(default=""),
    store=Depends(get_store),
    processor: PushEventProcessor = Depends(get_push_processor),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
):
    """
    GitHub push webhook.

    GitHub sends a ping right after the webhook is created; it and any
    other non-push event are acknowledged with "OK".

    Headers:
    - X-GitHub-Event: Event name
    - X-Hub-Signature-256: HMAC-SHA256 of the body with the webhook secret
    """
    if x_github_event != GITHUB_PUSH_EVENT:
        logger.debug(f"Ignoring GitHub {x_github_event or 'unknown'} event for endpoint {endpoint_id}")
        return PlainTextResponse("OK")

    body = await request.body()
    payload = _parse_json(body, "push event")

    return await _run_push(
        store, processor, provider_factory, VCSType.GITHUB_COM, endpoint_id, payload,
        github_signature_predicate(x_hub_signature_256, body),
    )


@router.post("/sql-review/{endpoint_id}")
async def sql_review_webhook(
    endpoint_id: str,
    request: Request,
    x_sql_review_token: str = Header(default=""),
    service: SQLReviewService = Depends(get_sql_review_service),
):
    """
    SQL review for a pull request, called by the CI job.

    Headers:
    - X-SQL-Review-Token: Webhook secret of the repository link

    Returns:
    - status: SUCCESS, WARN or ERROR
    - content: Report lines in the CI system's format
    """
    payload = _parse_json(await request.body(), "SQL review request")
    try:
        review_request = VCSSQLReviewRequest.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Malformed SQL review request: {e.error_count()} invalid fields")

    try:
        result = await run_in_threadpool(service.review_pull_request, endpoint_id, review_request, x_sql_review_token)
    except GitOpsError as e:
        logger.warning(f"SQL review request to endpoint {endpoint_id} failed ({e.status_code}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to review pull request {review_request.pull_request_id} for endpoint {endpoint_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to take SQL review for endpoint: {endpoint_id}")

    logger.info(
        f"SQL review for {review_request.repository_id}#{review_request.pull_request_id}: "
        f"{result.status.value}, {len(result.content)} report lines"
    )
    return result.model_dump(mode="json")
