"""
Webhook API endpoints.

Provides REST API for managing a tenant's webhooks, sending test
deliveries, browsing delivery history and rotating signing secrets.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from pydantic import BaseModel

from ...shared.schemas import (
    PaginationInfo, WebhookCreate, WebhookUpdate, WebhookResponse,
    WebhookDetailResponse, WebhookSecretResponse, WebhookDeliveryResponse
)
from ...storage.repositories import RepositoryFactory
from ...webhooks.delivery import WebhookDeliveryService
from ...webhooks.events import DeliveryStatus, WebhookPlatform, event_catalog
from ...webhooks.security import WebhookSecurity
from ...webhooks.validation import WebhookValidator
from ..dependencies import (
    get_current_user, get_delivery_service, get_repository_factory, require_webhook_admin
)

logger = logging.getLogger(__name__)
router = APIRouter()


# Request/Response models
class RetryConfigRequest(BaseModel):
    """Retry policy as submitted by clients."""
    max_retries: Optional[int] = None
    retry_delay_ms: Optional[int] = None


class CreateWebhookRequest(BaseModel):
    """Request model for creating a webhook."""
    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[List[str]] = None
    platform: str = WebhookPlatform.GENERIC.value
    headers: Dict[str, Any] = {}
    retry_config: Optional[RetryConfigRequest] = None
    is_active: bool = True


class UpdateWebhookRequest(BaseModel):
    """Request model for updating a webhook. Omitted fields are unchanged."""
    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[List[str]] = None
    platform: Optional[str] = None
    headers: Optional[Dict[str, Any]] = None
    retry_config: Optional[RetryConfigRequest] = None
    is_active: Optional[bool] = None


class WebhookListResponse(BaseModel):
    """Paginated webhook list."""
    data: List[WebhookResponse]
    pagination: PaginationInfo


class DeliveryListResponse(BaseModel):
    """Paginated delivery history."""
    data: List[WebhookDeliveryResponse]
    pagination: PaginationInfo


class TestWebhookResponse(BaseModel):
    """Response model for webhook test."""
    success: bool
    message: str
    delivery_id: UUID
    status: DeliveryStatus
    response_status: Optional[int] = None
    error: Optional[str] = None


class SecretResponse(BaseModel):
    """New signing secret, shown once."""
    id: UUID
    secret: str
    message: str


class EventTypeResponse(BaseModel):
    event: str
    resource: str
    description: str


def _bad_request(errors: List[str]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": "; ".join(errors), "details": errors}
    )


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Webhook not found"
    )


@router.get("/events", response_model=List[EventTypeResponse])
async def list_event_types(user: Dict[str, Any] = Depends(get_current_user)):
    """List every event a webhook can subscribe to."""
    return event_catalog()


@router.post("", response_model=WebhookSecretResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    request: CreateWebhookRequest,
    user: Dict[str, Any] = Depends(require_webhook_admin),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """Create a webhook. The signing secret is returned only in this response."""
    retry = request.retry_config or RetryConfigRequest()

    is_valid, errors = WebhookValidator.validate_webhook(
        name=request.name,
        url=request.url,
        events=request.events,
        platform=request.platform,
        headers=request.headers,
        max_retries=retry.max_retries,
        retry_delay_ms=retry.retry_delay_ms
    )
    if not is_valid:
        raise _bad_request(errors)

    secret = WebhookSecurity.generate_secret()
    obj_in = WebhookCreate(
        tenant_id=user["tenant_id"],
        name=request.name.strip(),
        url=request.url,
        events=request.events,
        secret=secret,
        platform=request.platform,
        headers=request.headers,
        is_active=request.is_active,
        **retry.model_dump(exclude_none=True)
    )

    try:
        webhook = await repos.webhooks.create_webhook(obj_in)
    except ValueError as e:
        logger.warning(f"Rejected webhook for tenant {user['tenant_id']}: {e}")
        raise _bad_request([str(e)])
    except Exception as e:
        logger.error(f"Error creating webhook: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create webhook"
        )

    logger.info(f"Created webhook {webhook.id} for tenant {user['tenant_id']}")
    return WebhookSecretResponse(
        **WebhookResponse.from_model(webhook).model_dump(),
        secret=webhook.secret
    )


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_active: Optional[bool] = Query(None),
    platform: Optional[WebhookPlatform] = Query(None),
    user: Dict[str, Any] = Depends(get_current_user),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """List the tenant's webhooks. Secrets are never included."""
    platform_value = platform.value if platform else None
    try:
        webhooks = await repos.webhooks.list_for_tenant(
            user["tenant_id"],
            skip=(page - 1) * limit,
            limit=limit,
            is_active=is_active,
            platform=platform_value
        )
        total = await repos.webhooks.count_for_tenant(
            user["tenant_id"], is_active=is_active, platform=platform_value
        )
    except Exception as e:
        logger.error(f"Error listing webhooks: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list webhooks"
        )

    return WebhookListResponse(
        data=[WebhookResponse.from_model(webhook) for webhook in webhooks],
        pagination=PaginationInfo.build(page, limit, total)
    )


@router.get("/{webhook_id}", response_model=WebhookDetailResponse)
async def get_webhook(
    webhook_id: UUID,
    user: Dict[str, Any] = Depends(get_current_user),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """Get a webhook with its secret masked."""
    webhook = await repos.webhooks.get_for_tenant(webhook_id, user["tenant_id"])
    if not webhook:
        raise _not_found()

    return WebhookDetailResponse(
        **WebhookResponse.from_model(webhook).model_dump(),
        secret_preview=WebhookSecurity.mask_secret(webhook.secret)
    )


@router.put("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: UUID,
    request: UpdateWebhookRequest,
    user: Dict[str, Any] = Depends(require_webhook_admin),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """Partially update a webhook. Changing the URL re-validates it."""
    changes = request.model_dump(exclude_none=True, exclude={"retry_config"})
    if request.retry_config:
        changes.update(request.retry_config.model_dump(exclude_none=True))

    errors = []
    if "name" in changes:
        name_error = WebhookValidator.validate_name(changes["name"])
        if name_error:
            errors.append(name_error)
        else:
            changes["name"] = changes["name"].strip()
    if "url" in changes:
        url_valid, url_error = WebhookValidator.validate_url(changes["url"])
        if not url_valid:
            errors.append(f"Invalid URL: {url_error}")
    if "events" in changes:
        errors.extend(WebhookValidator.validate_events(changes["events"]))
    if "platform" in changes:
        errors.extend(WebhookValidator.validate_platform(changes["platform"]))
    if "headers" in changes:
        errors.extend(WebhookValidator.validate_headers(changes["headers"]))
    errors.extend(WebhookValidator.validate_retry_config(
        changes.get("max_retries"), changes.get("retry_delay_ms")
    ))
    if errors:
        raise _bad_request(errors)

    try:
        webhook = await repos.webhooks.update_for_tenant(
            webhook_id, user["tenant_id"], WebhookUpdate(**changes)
        )
    except ValueError as e:
        raise _bad_request([str(e)])
    except Exception as e:
        logger.error(f"Error updating webhook {webhook_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update webhook"
        )

    if not webhook:
        raise _not_found()

    return WebhookResponse.from_model(webhook)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: UUID,
    user: Dict[str, Any] = Depends(require_webhook_admin),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """Delete a webhook. Its delivery history is kept."""
    try:
        deleted = await repos.webhooks.delete_for_tenant(webhook_id, user["tenant_id"])
    except Exception as e:
        logger.error(f"Error deleting webhook {webhook_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete webhook"
        )

    if not deleted:
        raise _not_found()

    logger.info(f"Deleted webhook {webhook_id} for tenant {user['tenant_id']}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{webhook_id}/test", response_model=TestWebhookResponse)
async def test_webhook(
    webhook_id: UUID,
    user: Dict[str, Any] = Depends(require_webhook_admin),
    repos: RepositoryFactory = Depends(get_repository_factory),
    delivery_service: WebhookDeliveryService = Depends(get_delivery_service)
):
    """Send a webhook.test event through the normal delivery path."""
    webhook = await repos.webhooks.get_for_tenant(webhook_id, user["tenant_id"])
    if not webhook:
        raise _not_found()

    # The delivery opens its own short sessions; do not hold this one across the POST
    await repos.release()

    result = await delivery_service.test_webhook(webhook)

    if result.success:
        message = f"Test successful (HTTP {result.response_status})"
    else:
        message = f"Test failed: {result.error or 'Unknown error'}"

    return TestWebhookResponse(
        success=result.success,
        message=message,
        delivery_id=result.delivery_id,
        status=result.status,
        response_status=result.response_status,
        error=result.error
    )


@router.get("/{webhook_id}/deliveries", response_model=DeliveryListResponse)
async def list_deliveries(
    webhook_id: UUID,
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """Delivery history of a webhook, newest first."""
    webhook = await repos.webhooks.get_for_tenant(webhook_id, user["tenant_id"])
    if not webhook:
        raise _not_found()

    status_value = status_filter.value if status_filter else None
    try:
        deliveries = await repos.deliveries.list_for_webhook(
            webhook_id, user["tenant_id"],
            status=status_value,
            skip=(page - 1) * limit,
            limit=limit
        )
        total = await repos.deliveries.count_for_webhook(
            webhook_id, user["tenant_id"], status=status_value
        )
    except Exception as e:
        logger.error(f"Error listing deliveries for webhook {webhook_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list deliveries"
        )

    return DeliveryListResponse(
        data=[WebhookDeliveryResponse.model_validate(delivery) for delivery in deliveries],
        pagination=PaginationInfo.build(page, limit, total)
    )


@router.post("/{webhook_id}/regenerate-secret", response_model=SecretResponse)
async def regenerate_secret(
    webhook_id: UUID,
    user: Dict[str, Any] = Depends(require_webhook_admin),
    repos: RepositoryFactory = Depends(get_repository_factory)
):
    """Replace the signing secret. The old secret stops being used immediately."""
    secret = WebhookSecurity.generate_secret()

    try:
        webhook = await repos.webhooks.rotate_secret(webhook_id, user["tenant_id"], secret)
    except Exception as e:
        logger.error(f"Error regenerating secret for webhook {webhook_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to regenerate secret"
        )

    if not webhook:
        raise _not_found()

    logger.info(f"Regenerated secret for webhook {webhook_id}")
    return SecretResponse(
        id=webhook.id,
        secret=secret,
        message="Store this secret now; it will not be shown again"
    )
