"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from tributary.errors.exceptions import AuthenticationError
from tributary.integrations.registry import ProviderRegistry
from tributary.services.connection_service import ConnectionService
from tributary.services.sync_orchestrator import SyncOrchestrator
from tributary.services.webhook_receiver import WebhookReceiver


def get_current_user_id(request: Request) -> str:
    """Return the caller's user id forwarded by the upstream gateway, or raise 401."""
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        raise AuthenticationError("Missing X-User-Id header")
    return user_id


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_connection_service(request: Request) -> ConnectionService:
    return request.app.state.connections


def get_webhook_receiver(request: Request) -> WebhookReceiver:
    return request.app.state.webhook_receiver


# Type aliases for dependency injection
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
Registry = Annotated[ProviderRegistry, Depends(get_registry)]
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Connections = Annotated[ConnectionService, Depends(get_connection_service)]
Receiver = Annotated[WebhookReceiver, Depends(get_webhook_receiver)]
