"""
API dependencies

Dependency injection for FastAPI endpoints: database sessions,
repositories, the authenticated user and the delivery service.
"""
import logging
from typing import Dict, Any, AsyncGenerator

from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..shared.config import get_settings
from ..storage.database import get_db_session
from ..storage.repositories import RepositoryFactory
from ..webhooks.delivery import WebhookDeliveryService, get_webhook_delivery_service

logger = logging.getLogger(__name__)


async def get_db_session_dependency() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency for FastAPI endpoints.

    Yields:
        Database session
    """
    async for session in get_db_session():
        yield session


def get_repository_factory(
    session: AsyncSession = Depends(get_db_session_dependency)
) -> RepositoryFactory:
    """
    Repository factory dependency.

    Args:
        session: Database session

    Returns:
        RepositoryFactory instance
    """
    return RepositoryFactory(session)


def get_delivery_service() -> WebhookDeliveryService:
    """Webhook delivery service dependency."""
    return get_webhook_delivery_service()


def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Get current authenticated user from request state.

    Args:
        request: FastAPI request object

    Returns:
        User information dictionary with user_id, tenant_id and role

    Raises:
        HTTPException: If user is not authenticated
    """
    user = getattr(request.state, "user", None)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )

    return user


def require_webhook_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """
    Require a role allowed to manage webhooks.

    Raises:
        HTTPException: 403 if the user's role may not change webhooks
    """
    allowed_roles = get_settings().security.webhook_admin_roles

    if user.get("role") not in allowed_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"This action requires one of the roles: {', '.join(allowed_roles)}"
        )

    return user
