"""
Shared Schemas - Pydantic Models for Validation and Serialization
Data models shared by the storage, delivery and API layers of Hookline.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator, conint, constr

from ..webhooks.events import WebhookPlatform, DeliveryStatus


# Base schemas
class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    class Config:
        from_attributes = True
        use_enum_values = True
        validate_assignment = True


class RetryConfig(BaseModel):
    """Per-webhook retry policy."""
    max_retries: conint(ge=0, le=10) = Field(3, description="Maximum delivery attempts for transient failures")
    retry_delay_ms: conint(ge=100, le=60000) = Field(1000, description="Base backoff delay in milliseconds")


# Webhook schemas
class WebhookCreate(BaseSchema):
    """Schema for persisting a new webhook."""
    tenant_id: constr(min_length=1, max_length=64)
    name: constr(min_length=1, max_length=100)
    url: constr(min_length=1, max_length=2048)
    events: List[str] = Field(..., min_length=1)
    secret: constr(min_length=16)
    platform: WebhookPlatform = WebhookPlatform.GENERIC
    headers: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = True
    max_retries: conint(ge=0, le=10) = 3
    retry_delay_ms: conint(ge=100, le=60000) = 1000

    @field_validator("events")
    @classmethod
    def dedupe_events(cls, v):
        return list(dict.fromkeys(v))


class WebhookUpdate(BaseSchema):
    """Schema for updating webhooks; only set fields are written."""
    name: Optional[constr(min_length=1, max_length=100)] = None
    url: Optional[constr(min_length=1, max_length=2048)] = None
    events: Optional[List[str]] = Field(None, min_length=1)
    platform: Optional[WebhookPlatform] = None
    headers: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None
    max_retries: Optional[conint(ge=0, le=10)] = None
    retry_delay_ms: Optional[conint(ge=100, le=60000)] = None

    @field_validator("events")
    @classmethod
    def dedupe_events(cls, v):
        if v is None:
            return v
        return list(dict.fromkeys(v))


class WebhookStats(BaseModel):
    """Rolling delivery statistics of a webhook."""
    success_count: int = 0
    failure_count: int = 0
    last_triggered: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None


class WebhookResponse(BaseSchema):
    """Schema for webhook responses. The secret is never included."""
    id: uuid.UUID = Field(..., description="Webhook ID")
    name: str = Field(..., description="Webhook name")
    url: str = Field(..., description="Target URL")
    events: List[str] = Field(..., description="Subscribed events")
    platform: WebhookPlatform = Field(..., description="Receiver platform")
    headers: Dict[str, str] = Field(default_factory=dict, description="Custom headers")
    is_active: bool = Field(..., description="Active status")
    retry_config: RetryConfig = Field(..., description="Retry policy")
    stats: WebhookStats = Field(..., description="Delivery statistics")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @classmethod
    def from_model(cls, webhook) -> "WebhookResponse":
        return cls(
            id=webhook.id,
            name=webhook.name,
            url=webhook.url,
            events=list(webhook.events or []),
            platform=webhook.platform,
            headers=dict(webhook.headers or {}),
            is_active=webhook.is_active,
            retry_config=RetryConfig(
                max_retries=webhook.max_retries,
                retry_delay_ms=webhook.retry_delay_ms,
            ),
            stats=WebhookStats(
                success_count=webhook.success_count or 0,
                failure_count=webhook.failure_count or 0,
                last_triggered=webhook.last_triggered,
                last_success=webhook.last_success,
                last_failure=webhook.last_failure,
            ),
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class WebhookDetailResponse(WebhookResponse):
    """Single webhook view with a masked secret."""
    secret_preview: str = Field(..., description="Masked signing secret")


class WebhookSecretResponse(WebhookResponse):
    """Returned on creation only; carries the plaintext secret."""
    secret: str = Field(..., description="Signing secret, shown once")


# Delivery schemas
class WebhookDeliveryResponse(BaseSchema):
    """Schema for delivery audit records."""
    id: uuid.UUID = Field(..., description="Delivery ID")
    webhook_id: uuid.UUID = Field(..., description="Webhook ID")
    event: str = Field(..., description="Event name")
    payload: Any = Field(None, description="Event data")
    status: DeliveryStatus = Field(..., description="Delivery status")
    response_status: Optional[int] = Field(None, description="HTTP status of the latest attempt")
    response_body: Optional[str] = Field(None, description="Truncated response body")
    error_message: Optional[str] = Field(None, description="Latest error")
    attempt_count: int = Field(..., description="Attempts made")
    max_attempts: int = Field(..., description="Attempt budget")
    next_retry_at: Optional[datetime] = Field(None, description="Next scheduled retry")
    delivered_at: Optional[datetime] = Field(None, description="Completion time of the terminal round trip")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")


# API Response schemas
class PaginationInfo(BaseModel):
    """Pagination information."""
    page: conint(ge=1) = Field(..., description="Current page number")
    limit: conint(ge=1, le=100) = Field(..., description="Items per page")
    total: conint(ge=0) = Field(..., description="Total number of results")
    pages: conint(ge=0) = Field(..., description="Total number of pages")

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationInfo":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)

