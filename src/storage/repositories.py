"""
Storage - Repository Pattern for Data Access

This module implements the repository pattern for webhook subscriptions and
their delivery records. Every write commits its own unit of work.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Generic, TypeVar, Tuple, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.exc import IntegrityError
from pydantic import BaseModel
import structlog

from .models import Webhook, WebhookDelivery
from ..shared.schemas import WebhookCreate, WebhookUpdate
from ..webhooks.events import DeliveryStatus

logger = structlog.get_logger(__name__)

# Generic type for model classes
ModelType = TypeVar("ModelType")

# Lease taken on a retry when the caller does not give one
DEFAULT_CLAIM_LEASE_SECONDS = 90


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseRepository(Generic[ModelType]):
    """
    Base repository class with common CRUD operations.
    Provides a consistent interface for all data access operations.
    """

    def __init__(self, session: AsyncSession, model: type[ModelType]):
        self.session = session
        self.model = model

    async def create(self, obj_in: Union[BaseModel, Dict[str, Any]]) -> ModelType:
        """Create a new record."""
        try:
            if isinstance(obj_in, BaseModel):
                obj_data = obj_in.model_dump(exclude_unset=False)
            else:
                obj_data = dict(obj_in)
            db_obj = self.model(**obj_data)

            self.session.add(db_obj)
            await self.session.commit()
            await self.session.refresh(db_obj)

            logger.info(f"Created {self.model.__name__}", id=getattr(db_obj, 'id', None))
            return db_obj

        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Integrity error creating {self.model.__name__}", error=str(e))
            raise ValueError(f"Data integrity violation: {str(e)}")
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error creating {self.model.__name__}", error=str(e))
            raise

    async def get(self, id: uuid.UUID) -> Optional[ModelType]:
        """Get a record by ID."""
        try:
            result = await self.session.execute(
                select(self.model).where(self.model.id == id)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error(f"Error getting {self.model.__name__}", id=id, error=str(e))
            raise


class WebhookRepository(BaseRepository[Webhook]):
    """Repository for tenant-scoped webhook subscriptions."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Webhook)

    async def create_webhook(self, obj_in: WebhookCreate) -> Webhook:
        return await self.create(obj_in)

    async def get_for_tenant(self, webhook_id: uuid.UUID, tenant_id: str) -> Optional[Webhook]:
        """Get a webhook only if it belongs to the tenant."""
        try:
            result = await self.session.execute(
                select(Webhook).where(
                    and_(Webhook.id == webhook_id, Webhook.tenant_id == tenant_id)
                )
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Error getting webhook", webhook_id=webhook_id, tenant_id=tenant_id, error=str(e))
            raise

    def _tenant_filters(self, tenant_id: str, is_active: Optional[bool], platform: Optional[str]):
        conditions = [Webhook.tenant_id == tenant_id]
        if is_active is not None:
            conditions.append(Webhook.is_active == is_active)
        if platform is not None:
            conditions.append(Webhook.platform == platform)
        return conditions

    async def list_for_tenant(
        self,
        tenant_id: str,
        skip: int = 0,
        limit: int = 10,
        is_active: Optional[bool] = None,
        platform: Optional[str] = None
    ) -> List[Webhook]:
        """List a tenant's webhooks, newest first."""
        try:
            result = await self.session.execute(
                select(Webhook)
                .where(and_(*self._tenant_filters(tenant_id, is_active, platform)))
                .order_by(Webhook.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return result.scalars().all()
        except Exception as e:
            logger.error("Error listing webhooks", tenant_id=tenant_id, error=str(e))
            raise

    async def count_for_tenant(
        self,
        tenant_id: str,
        is_active: Optional[bool] = None,
        platform: Optional[str] = None
    ) -> int:
        try:
            result = await self.session.execute(
                select(func.count(Webhook.id))
                .where(and_(*self._tenant_filters(tenant_id, is_active, platform)))
            )
            return result.scalar() or 0
        except Exception as e:
            logger.error("Error counting webhooks", tenant_id=tenant_id, error=str(e))
            raise

    async def update_for_tenant(
        self,
        webhook_id: uuid.UUID,
        tenant_id: str,
        obj_in: WebhookUpdate
    ) -> Optional[Webhook]:
        """Apply a partial update to a tenant's webhook."""
        try:
            db_obj = await self.get_for_tenant(webhook_id, tenant_id)
            if not db_obj:
                return None

            for field, value in obj_in.model_dump(exclude_unset=True).items():
                if hasattr(db_obj, field):
                    setattr(db_obj, field, value)

            await self.session.commit()
            await self.session.refresh(db_obj)

            logger.info("Updated Webhook", id=webhook_id)
            return db_obj

        except Exception as e:
            await self.session.rollback()
            logger.error("Error updating webhook", id=webhook_id, error=str(e))
            raise

    async def delete_for_tenant(self, webhook_id: uuid.UUID, tenant_id: str) -> bool:
        """Delete a tenant's webhook. Its delivery records are kept."""
        try:
            result = await self.session.execute(
                delete(Webhook).where(
                    and_(Webhook.id == webhook_id, Webhook.tenant_id == tenant_id)
                )
            )
            await self.session.commit()

            deleted = result.rowcount > 0
            if deleted:
                logger.info("Deleted Webhook", id=webhook_id)

            return deleted

        except Exception as e:
            await self.session.rollback()
            logger.error("Error deleting webhook", id=webhook_id, error=str(e))
            raise

    async def find_subscribed(self, tenant_id: str, event: str) -> List[Webhook]:
        """Active webhooks of the tenant whose event list contains ``event``."""
        try:
            result = await self.session.execute(
                select(Webhook).where(
                    and_(
                        Webhook.tenant_id == tenant_id,
                        Webhook.is_active.is_(True),
                        Webhook.events.contains([event])
                    )
                )
            )
            return result.scalars().all()
        except Exception as e:
            logger.error("Error finding subscribed webhooks", tenant_id=tenant_id, event=event, error=str(e))
            raise

    async def rotate_secret(self, webhook_id: uuid.UUID, tenant_id: str, secret: str) -> Optional[Webhook]:
        """Replace the signing secret; later deliveries sign with the new one."""
        try:
            result = await self.session.execute(
                update(Webhook)
                .where(and_(Webhook.id == webhook_id, Webhook.tenant_id == tenant_id))
                .values(secret=secret, updated_at=func.now())
            )
            await self.session.commit()
            if result.rowcount == 0:
                return None

            logger.info("Rotated webhook secret", id=webhook_id)
            return await self.get_for_tenant(webhook_id, tenant_id)

        except Exception as e:
            await self.session.rollback()
            logger.error("Error rotating webhook secret", id=webhook_id, error=str(e))
            raise

    async def record_outcome(
        self,
        webhook_id: uuid.UUID,
        success: Optional[bool],
        at: Optional[datetime] = None
    ) -> bool:
        """
        Roll a delivery outcome onto the webhook's statistics.

        ``success`` of None only touches ``last_triggered`` (an attempt that
        will be retried). Counters are incremented in SQL so concurrent
        deliveries never lose updates.
        """
        at = at or _utcnow()
        values: Dict[str, Any] = {"last_triggered": at}
        if success is True:
            values.update(success_count=Webhook.success_count + 1, last_success=at)
        elif success is False:
            values.update(failure_count=Webhook.failure_count + 1, last_failure=at)

        try:
            result = await self.session.execute(
                update(Webhook).where(Webhook.id == webhook_id).values(**values)
            )
            await self.session.commit()
            return result.rowcount > 0
        except Exception as e:
            await self.session.rollback()
            logger.error("Error recording webhook outcome", webhook_id=webhook_id, error=str(e))
            raise


class WebhookDeliveryRepository(BaseRepository[WebhookDelivery]):
    """Repository for the delivery audit trail."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WebhookDelivery)

    async def save_attempt(self, delivery_id: uuid.UUID, **values: Any) -> bool:
        """Persist the outcome of one attempt onto the delivery row."""
        try:
            result = await self.session.execute(
                update(WebhookDelivery)
                .where(WebhookDelivery.id == delivery_id)
                .values(updated_at=func.now(), **values)
            )
            await self.session.commit()
            return result.rowcount > 0
        except Exception as e:
            await self.session.rollback()
            logger.error("Error saving delivery attempt", delivery_id=delivery_id, error=str(e))
            raise

    async def get_due_for_retry(
        self,
        now: Optional[datetime] = None,
        limit: int = 100
    ) -> List[Tuple[WebhookDelivery, Optional[Webhook]]]:
        """Retrying deliveries whose time has come, oldest first, with their webhook."""
        now = now or _utcnow()
        try:
            result = await self.session.execute(
                select(WebhookDelivery, Webhook)
                .outerjoin(Webhook, Webhook.id == WebhookDelivery.webhook_id)
                .where(
                    and_(
                        WebhookDelivery.status == DeliveryStatus.RETRYING.value,
                        WebhookDelivery.next_retry_at <= now
                    )
                )
                .order_by(WebhookDelivery.next_retry_at.asc())
                .limit(limit)
            )
            return [(row[0], row[1]) for row in result.all()]
        except Exception as e:
            logger.error("Error getting deliveries due for retry", error=str(e))
            raise

    async def claim_for_retry(
        self,
        delivery_id: uuid.UUID,
        now: Optional[datetime] = None,
        lease_until: Optional[datetime] = None
    ) -> bool:
        """
        Atomically take a lease on a due retry.

        The row stays retrying but its next_retry_at moves to ``lease_until``,
        only if it is still retrying and due. Two scanners can never resend
        the same delivery, and a retry whose outcome is never saved becomes
        due again once the lease runs out.
        """
        now = now or _utcnow()
        lease_until = lease_until or now + timedelta(seconds=DEFAULT_CLAIM_LEASE_SECONDS)
        try:
            result = await self.session.execute(
                update(WebhookDelivery)
                .where(
                    and_(
                        WebhookDelivery.id == delivery_id,
                        WebhookDelivery.status == DeliveryStatus.RETRYING.value,
                        WebhookDelivery.next_retry_at <= now
                    )
                )
                .values(
                    next_retry_at=lease_until,
                    updated_at=func.now()
                )
            )
            await self.session.commit()
            return result.rowcount == 1
        except Exception as e:
            await self.session.rollback()
            logger.error("Error claiming delivery for retry", delivery_id=delivery_id, error=str(e))
            raise

    def _webhook_filters(self, webhook_id: uuid.UUID, tenant_id: str, status: Optional[str]):
        conditions = [
            WebhookDelivery.webhook_id == webhook_id,
            WebhookDelivery.tenant_id == tenant_id,
        ]
        if status is not None:
            conditions.append(WebhookDelivery.status == status)
        return conditions

    async def list_for_webhook(
        self,
        webhook_id: uuid.UUID,
        tenant_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20
    ) -> List[WebhookDelivery]:
        """Delivery history of one webhook, newest first."""
        try:
            result = await self.session.execute(
                select(WebhookDelivery)
                .where(and_(*self._webhook_filters(webhook_id, tenant_id, status)))
                .order_by(WebhookDelivery.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return result.scalars().all()
        except Exception as e:
            logger.error("Error listing deliveries", webhook_id=webhook_id, error=str(e))
            raise

    async def count_for_webhook(
        self,
        webhook_id: uuid.UUID,
        tenant_id: str,
        status: Optional[str] = None
    ) -> int:
        try:
            result = await self.session.execute(
                select(func.count(WebhookDelivery.id))
                .where(and_(*self._webhook_filters(webhook_id, tenant_id, status)))
            )
            return result.scalar() or 0
        except Exception as e:
            logger.error("Error counting deliveries", webhook_id=webhook_id, error=str(e))
            raise


class RepositoryFactory:
    """Factory for creating repository instances."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def webhooks(self) -> WebhookRepository:
        return WebhookRepository(self.session)

    @property
    def deliveries(self) -> WebhookDeliveryRepository:
        return WebhookDeliveryRepository(self.session)

    async def release(self) -> None:
        """End the current transaction and hand the connection back to the pool."""
        await self.session.close()
