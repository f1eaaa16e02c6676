"""Integration connect, configuration and sync routes."""

from typing import Any

from fastapi import APIRouter, Body, Query
from pydantic import BaseModel, ConfigDict, Field

from tributary.dependencies import Connections, CurrentUserId, Orchestrator, Registry
from tributary.integrations.config import IntegrationDefinition
from tributary.models.sync import SyncOptions, SyncResult, SyncStatusView

router = APIRouter(prefix="/integrations", tags=["Integrations"])


# --- Request models ---


class ApiKeyConnectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str = Field(..., min_length=1)
    metadata: dict[str, Any] | None = None


class MetadataUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metadata: dict[str, Any]


def _connection_dict(row) -> dict:
    return {
        "integration_id": row.integration_id,
        "provider": row.provider,
        "account_id": row.account_id,
        "account_name": row.account_name,
        "account_email": row.account_email,
        "metadata": row.provider_metadata or {},
    }


# --- Catalog and connections ---


@router.get("/definitions", response_model=list[IntegrationDefinition])
async def list_definitions(registry: Registry, include_unavailable: bool = Query(True)):
    return registry.list_definitions(include_unavailable=include_unavailable)


@router.get("")
async def list_connections(user_id: CurrentUserId, connections: Connections) -> list[dict]:
    return await connections.list_connections(user_id)


@router.get("/{provider}/authorize")
async def authorize(provider: str, user_id: CurrentUserId, connections: Connections) -> dict:
    return connections.authorization_url(user_id, provider)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    connections: Connections,
    code: str = Query(...),
    state: str = Query(...),
) -> dict:
    row = await connections.complete_oauth(provider, code, state)
    return {"connected": True, **_connection_dict(row)}


@router.post("/{provider}/connect", status_code=201)
async def connect_api_key(
    provider: str,
    body: ApiKeyConnectRequest,
    user_id: CurrentUserId,
    connections: Connections,
) -> dict:
    row = await connections.connect_api_key(user_id, provider, body.api_key, body.metadata)
    return {"connected": True, **_connection_dict(row)}


@router.patch("/{provider}")
async def update_integration(
    provider: str,
    body: MetadataUpdateRequest,
    user_id: CurrentUserId,
    connections: Connections,
) -> dict:
    row = await connections.update_metadata(user_id, provider, body.metadata)
    return _connection_dict(row)


@router.delete("/{provider}")
async def disconnect(provider: str, user_id: CurrentUserId, connections: Connections) -> dict:
    await connections.disconnect(user_id, provider)
    return {"disconnected": True, "provider": provider}


# --- Sync ---


@router.post("/sync-all", response_model=list[SyncResult])
async def sync_all(user_id: CurrentUserId, orchestrator: Orchestrator):
    return await orchestrator.sync_all_integrations(user_id)


@router.post("/{provider}/sync", response_model=SyncResult)
async def trigger_sync(
    provider: str,
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
    options: SyncOptions | None = Body(None),
):
    return await orchestrator.sync_integration(user_id, provider, options)


@router.get("/{provider}/sync", response_model=SyncStatusView)
async def sync_status(provider: str, user_id: CurrentUserId, orchestrator: Orchestrator):
    return await orchestrator.get_sync_status(user_id, provider)


@router.post("/{provider}/pause")
async def pause(provider: str, user_id: CurrentUserId, connections: Connections) -> dict:
    await connections.set_paused(user_id, provider, True)
    return {"provider": provider, "paused": True}


@router.post("/{provider}/resume")
async def resume(provider: str, user_id: CurrentUserId, connections: Connections) -> dict:
    await connections.set_paused(user_id, provider, False)
    return {"provider": provider, "paused": False}


# --- Webhook subscriptions ---


@router.post("/{provider}/webhooks", status_code=201)
async def register_webhook(provider: str, user_id: CurrentUserId, connections: Connections) -> dict:
    subscription = await connections.register_webhook(user_id, provider)
    return {
        "subscription_id": subscription.subscription_id,
        "provider": subscription.provider,
        "webhook_id": subscription.webhook_id,
        "webhook_url": subscription.webhook_url,
        "events": subscription.events or [],
        "is_active": subscription.is_active,
    }
