"""
Storage - Database Models

Webhook subscriptions and their delivery audit trail.
"""
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Boolean,
    Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Webhook(Base):
    """
    Tenant-owned webhook subscription.
    Holds the target URL, subscribed events, signing secret, retry policy
    and rolling delivery statistics.
    """
    __tablename__ = "webhooks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    url = Column(Text, nullable=False)

    # Subscribed event names, e.g. ["invoice.created", "payment.received"]
    events = Column(JSONB, nullable=False, default=list)

    # HMAC signing key; replaced only by explicit regeneration
    secret = Column(String(128), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    platform = Column(String(20), default='generic', nullable=False)
    headers = Column(JSONB, default=dict, nullable=False)

    # Retry policy
    max_retries = Column(Integer, default=3, nullable=False)
    retry_delay_ms = Column(Integer, default=1000, nullable=False)

    # Rolling statistics
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    last_triggered = Column(DateTime(timezone=True))
    last_success = Column(DateTime(timezone=True))
    last_failure = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("platform IN ('generic', 'n8n', 'zapier', 'make', 'custom')", name='valid_webhook_platform'),
        CheckConstraint('max_retries >= 0 AND max_retries <= 10', name='valid_max_retries'),
        CheckConstraint('retry_delay_ms >= 100 AND retry_delay_ms <= 60000', name='valid_retry_delay'),
        CheckConstraint('success_count >= 0 AND failure_count >= 0', name='non_negative_webhook_counters'),
        Index('ix_webhooks_tenant_active', 'tenant_id', 'is_active'),
        Index('ix_webhooks_events', 'events', postgresql_using='gin'),
        Index('ix_webhooks_platform', 'platform'),
    )

    def __repr__(self):
        return f"<Webhook(id={self.id}, tenant='{self.tenant_id}', name='{self.name}', active={self.is_active})>"


class WebhookDelivery(Base):
    """
    One delivery of one event to one webhook.
    Created when the first attempt begins and updated in place by every
    later attempt. Rows outlive their webhook.
    """
    __tablename__ = "webhook_deliveries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Plain reference; deleting a webhook keeps its history
    webhook_id = Column(UUID(as_uuid=True), nullable=False)
    tenant_id = Column(String(64), nullable=False)
    event = Column(String(100), nullable=False)

    # Event data as supplied by the producer
    payload = Column(JSONB, nullable=False)

    # Exact body and signature of the latest attempt
    request_body = Column(Text)
    signature = Column(String(64))

    status = Column(String(20), default='pending', nullable=False)
    response_status = Column(Integer)
    response_body = Column(Text)
    error_message = Column(Text)

    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)
    next_retry_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'success', 'failed', 'retrying')", name='valid_delivery_status'),
        CheckConstraint('attempt_count >= 0 AND attempt_count <= max_attempts', name='attempts_within_budget'),
        CheckConstraint('max_attempts >= 1', name='positive_max_attempts'),
        Index('ix_webhook_deliveries_webhook_status', 'webhook_id', 'status'),
        Index('ix_webhook_deliveries_tenant_created', 'tenant_id', created_at.desc()),
        Index('ix_webhook_deliveries_status_next_retry', 'status', 'next_retry_at'),
    )

    def __repr__(self):
        return f"<WebhookDelivery(id={self.id}, event='{self.event}', status='{self.status}', attempts={self.attempt_count}/{self.max_attempts})>"
