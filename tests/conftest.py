"""Shared test fixtures."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tributary.config import Settings
from tributary.db.base import Base
# Import all models to register with Base.metadata
import tributary.db.models  # noqa: F401
from tributary.errors.exceptions import TokenRefreshError
from tributary.integrations.adapters.base import ProviderAdapter, SyncContext
from tributary.integrations.adapters.granola import GranolaAdapter
from tributary.integrations.catalog import build_catalog
from tributary.integrations.config import (
    IntegrationDefinition,
    IntegrationFeatures,
    IntegrationTokens,
)
from tributary.integrations.normalized import IngestItemMetadata, StandardIngestItem
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import (
    AuthMethod,
    IngestItemType,
    IntegrationCategory,
    IntegrationProvider,
    SyncMethod,
)
from tributary.repositories.integration_repo import IntegrationRepository
from tributary.repositories.sync_state_repo import SyncStateRepository
from tributary.services.connection_service import ConnectionService
from tributary.services.sync_orchestrator import SyncOrchestrator
from tributary.services.webhook_receiver import WebhookReceiver

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_item(
    source_id: str,
    title: str = "A note",
    content: str = "Body",
    *,
    minutes: int = 0,
    provider: IntegrationProvider = IntegrationProvider.NOTION,
    item_type: IngestItemType = IngestItemType.NOTE,
    tags: list[str] | None = None,
) -> StandardIngestItem:
    """Normalized item stamped ``minutes`` after ``BASE_TIME``."""
    ts = BASE_TIME + timedelta(minutes=minutes)
    return StandardIngestItem(
        source_provider=provider,
        source_id=source_id,
        type=item_type,
        title=title,
        content=content,
        metadata=IngestItemMetadata(timestamp=ts, updated_at=ts, tags=tags or []),
    )


class FakeAdapter(ProviderAdapter):
    """Scriptable adapter standing in for an OAuth provider with expiring tokens."""

    definition = IntegrationDefinition(
        id=IntegrationProvider.NOTION,
        name="Notion",
        description="Fake provider for tests",
        category=IntegrationCategory.KNOWLEDGE_READING,
        auth_method=AuthMethod.OAUTH2,
        sync_method=SyncMethod.HYBRID,
        supported_types=[IngestItemType.NOTE],
        default_sync_interval=30,
        features=IntegrationFeatures(incremental_sync=True, webhooks=True),
    )
    webhook_signature_header = "x-fake-signature"

    def __init__(self, settings):
        super().__init__(settings)
        self.items: list[StandardIngestItem] = []
        self.next_cursor: str | None = None
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.calls: list[tuple[SyncContext, object]] = []
        self.refresh_calls: list[str] = []
        self.refresh_result: IntegrationTokens | Exception | None = None
        self.registered: list[tuple[str, str]] = []
        self.unregistered: list[str] = []

    async def validate_connection(self, tokens):
        return True

    async def refresh_access_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if isinstance(self.refresh_result, Exception):
            raise self.refresh_result
        if self.refresh_result is None:
            raise TokenRefreshError(self.provider.value, "not scripted")
        return self.refresh_result

    async def sync(self, context, options):
        self.calls.append((context, options))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        context.next_cursor = self.next_cursor
        return list(self.items)

    async def handle_webhook(self, payload, signature=None):
        return [
            make_item(entry["id"], entry.get("title", "A note"), entry.get("content", "Body"), minutes=entry.get("minutes", 0))
            for entry in payload.get("items", [])
        ]

    async def register_webhook(self, context, url, secret):
        self.registered.append((url, secret))
        return {"webhook_id": "hook_1", "events": ["page.updated"]}

    async def unregister_webhook(self, context, webhook_id):
        self.unregistered.append(webhook_id)


def _granola_handler(request: httpx.Request) -> httpx.Response:
    if request.headers.get("authorization") != "Bearer good-key":
        return httpx.Response(401, json={"error": "unauthorized"})
    if request.url.path.endswith("/user"):
        return httpx.Response(200, json={"id": "u_1", "name": "Ada", "email": "ada@example.com"})
    if request.url.path.endswith("/meetings"):
        return httpx.Response(200, json={"meetings": [], "has_more": False})
    return httpx.Response(404)


@pytest.fixture
def settings():
    return Settings(
        local_mode=True,
        scheduler_enabled=False,
        app_url="http://test",
        oauth_state_secret="test-state-secret",
        http_max_retries=2,
        http_backoff_base_seconds=0.0,
        http_backoff_max_seconds=0.0,
        readwise_client_id="rw-client",
        readwise_client_secret="rw-secret",
        readwise_webhook_secret="rw-hook-secret",
        github_client_id="gh-client",
        github_client_secret="gh-secret",
        github_webhook_secret="gh-hook-secret",
        stripe_client_id="ca_test",
        stripe_secret_key="sk_test",
        stripe_webhook_secret="whsec_test",
    )


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tributary_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_adapter(settings):
    return FakeAdapter(settings)


@pytest.fixture
def registry(settings, fake_adapter):
    reg = ProviderRegistry(catalog=build_catalog())
    reg.register(fake_adapter)
    reg.register(GranolaAdapter(settings, transport=httpx.MockTransport(_granola_handler)))
    return reg.freeze()


@pytest.fixture
def orchestrator(registry, session_factory, settings):
    return SyncOrchestrator(registry, session_factory, settings)


@pytest.fixture
def receiver(registry, session_factory, settings):
    return WebhookReceiver(registry, session_factory, settings)


@pytest.fixture
def connections(registry, session_factory, settings):
    return ConnectionService(registry, session_factory, settings)


@pytest.fixture
def connect(session_factory):
    """Factory that stores an integration plus its pending sync state."""

    async def _connect(
        user_id: str = "user_1",
        provider: IntegrationProvider = IntegrationProvider.NOTION,
        tokens: IntegrationTokens | None = None,
        metadata: dict | None = None,
    ):
        tokens = tokens or IntegrationTokens(access_token="access-1", refresh_token="refresh-1")
        async with session_factory() as session:
            row = await IntegrationRepository(session).upsert(user_id, provider.value, tokens, metadata=metadata)
            await SyncStateRepository(session).ensure(row.integration_id, user_id, provider.value)
            await session.commit()
        return row

    return _connect


@pytest.fixture
def app(db_engine, session_factory, settings, registry, orchestrator, receiver, connections):
    """Create a test application wired to the test database and registry."""
    from tributary.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.settings = settings
    _app.state.registry = registry
    _app.state.orchestrator = orchestrator
    _app.state.connections = connections
    _app.state.webhook_receiver = receiver
    _app.state.scheduler_task = None
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
